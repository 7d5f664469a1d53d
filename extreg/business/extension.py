import abc
import typing
import fastapi
import sqlalchemy
import sqlmodel
from typing import Optional as Opt
from extreg.logger import logger
from extreg.schemas.extension import (
    BOOTSTRAP_HOOKS, ExtensionID, ExtensionModel, ExtensionRecord, HookName, ListKind,
    RawDescriptor,
)
from extreg.settings import Config, config as default_config
from .descriptor import DescriptorStore
from .hooks import (
    DispatchMode, ErrorSink, ExtensionLoader, HookDispatcher, HookIndex, HookTable,
    LoggingErrorSink, declared_hooks,
)
from .lifecycle import LifecycleController
from .migrator import SchemaMigrator, TableSchemaMigrator
from .registry import ExtensionRegistry, ExtensionStore
from .resolver import DependencyGraph


ConfigTV = typing.TypeVar("ConfigTV", bound=sqlmodel.SQLModel)
class ExtensionBase(abc.ABC, typing.Generic[ConfigTV]):
    """Code side of an extension.

    Subclasses are declared with `ext_id=` and mark hook implementations
    with `@implements(...)`:

        class Extension(ExtensionBase, ext_id="node"):

            @classmethod
            @implements("modules_enabled")
            def on_modules_enabled(cls, ext_ids): ...
    """

    config: ConfigTV
    __extid__: ExtensionID
    __configcls__: Opt[type[ConfigTV]]
    __hookimpls__: dict[HookName, str]

    def __init_subclass__(
        cls,
        ext_id: ExtensionID,
        config_cls: Opt[type[ConfigTV]] = None,
        **kwargs
    ) -> None:
        cls.__extid__ = ext_id
        cls.__configcls__ = config_cls
        impls: dict[HookName, str] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, attr in vars(klass).items():
                for hook in declared_hooks(attr):
                    impls[hook] = attr_name
        cls.__hookimpls__ = impls
        return super().__init_subclass__(**kwargs)

    @classmethod
    def on_start(cls, router: fastapi.APIRouter, config: dict):
        if cls.__configcls__ is not None:
            cls.config = cls.__configcls__(**config)
        cls._register_apis(router)

    @classmethod
    async def on_close(cls, manager: "ExtensionManager"):
        if cls.__configcls__ is not None and hasattr(cls, "config"):
            manager.save_config(ext_id=cls.__extid__, config=cls.config)

    @classmethod
    def _register_apis(cls, router: fastapi.APIRouter):
        ...


class ExtensionManager:
    """Entry point of the extension registry.

    - Scan descriptors and keep records in sync
    - Install, enable, disable and uninstall extensions
    - Dispatch hooks to enabled extensions
    - Start and close extension code inside the API app
    """

    def __init__(
        self,
        descriptor_store: DescriptorStore,
        store: ExtensionStore,
        hooks: HookTable,
        migrator: Opt[SchemaMigrator] = None,
        error_sink: Opt[ErrorSink] = None,
    ) -> None:
        self.descriptor_store = descriptor_store
        self.hooks = hooks
        self.registry = ExtensionRegistry(store)
        error_sink = error_sink or LoggingErrorSink()
        self.index = HookIndex(self.registry, hooks, error_sink)
        self.dispatcher = HookDispatcher(self.index, hooks, error_sink)
        self.lifecycle = LifecycleController(self.registry, descriptor_store, self.dispatcher, migrator)
        self.started: list[type[ExtensionBase]] = []

    @classmethod
    def from_config(
        cls, config: Config = default_config, engine: Opt[sqlalchemy.Engine] = None
    ) -> "ExtensionManager":
        if engine is None:
            from extreg.engine import SQLDB_ENGINE, SessionLocal
            engine, session_factory = SQLDB_ENGINE, SessionLocal
        else:
            session_factory = lambda: sqlmodel.Session(engine, expire_on_commit=False)
        ExtensionModel.__table__.create(engine, checkfirst=True)  # type: ignore[attr-defined]
        hooks = HookTable(loader=ExtensionLoader(config.extensions_package))
        return cls(
            descriptor_store=DescriptorStore(
                config.extensions_dir,
                profiles_dir=config.profiles_dir,
                profile=config.install_profile,
            ),
            store=ExtensionStore(session_factory),
            hooks=hooks,
            migrator=TableSchemaMigrator(engine, hooks),
        )

    def rebuild(self) -> dict[ExtensionID, RawDescriptor]:
        """Rescan descriptors and merge them into the registry."""
        if not self.registry.records():
            self.registry.load()
        descriptors = self.descriptor_store.scan_all()
        self.registry.sync(
            descriptors,
            bootstrap=lambda ext_id: [h for h in BOOTSTRAP_HOOKS if self.hooks.implements(ext_id, h)],
        )
        logger.info("Extension registry rebuilt, {} extensions known", len(descriptors))
        return descriptors

    # ========== queries ==========

    def get(self, ext_id: ExtensionID) -> Opt[ExtensionRecord]:
        return self.registry.get(ext_id)

    def get_extensions(self, enabled_only: bool = True) -> tuple[ExtensionRecord, ...]:
        """Get known extensions, ordered by weight then id."""
        records = sorted(self.registry.records().values(), key=lambda r: r.sort_key)
        return tuple(r for r in records if r.enabled or not enabled_only)

    def list_enabled(self, kind: ListKind = ListKind.ALL) -> tuple[ExtensionID, ...]:
        return self.registry.list_enabled(kind)

    def exists(self, ext_id: ExtensionID) -> bool:
        """Whether an extension is enabled."""
        record = self.registry.get(ext_id)
        return record is not None and record.enabled

    def requires(self, ext_id: ExtensionID) -> set[ExtensionID]:
        return DependencyGraph(self.descriptor_store.descriptors).requires(ext_id)

    def required_by(self, ext_id: ExtensionID) -> set[ExtensionID]:
        return DependencyGraph(self.descriptor_store.descriptors).required_by(ext_id)

    def implementers_of(self, hook: HookName) -> tuple[ExtensionID, ...]:
        return self.index.implementers_of(hook)

    # ========== lifecycle ==========

    def install(self, ext_id: ExtensionID) -> bool:
        return self.lifecycle.install(ext_id)

    def enable(self, ext_ids: typing.Iterable[ExtensionID], resolve_dependencies: bool = True) -> list[ExtensionID]:
        return self.lifecycle.enable(ext_ids, resolve_dependencies=resolve_dependencies)

    def disable(self, ext_ids: typing.Iterable[ExtensionID], cascade: bool = False) -> list[ExtensionID]:
        return self.lifecycle.disable(ext_ids, cascade=cascade)

    def uninstall(self, ext_ids: typing.Iterable[ExtensionID]) -> list[ExtensionID]:
        return self.lifecycle.uninstall(ext_ids)

    def set_weight(self, ext_id: ExtensionID, weight: int) -> None:
        self.registry.set_weight(ext_id, weight)

    def save_config(self, ext_id: ExtensionID, config: Opt[sqlmodel.SQLModel] = None) -> None:
        self.registry.save_config(ext_id, config.model_dump() if config is not None else None)

    # ========== hooks ==========

    def invoke(self, ext_id: ExtensionID, hook: HookName, *args, **kwargs) -> typing.Any:
        return self.dispatcher.invoke(ext_id, hook, *args, **kwargs)

    def dispatch(self, hook: HookName, *args, mode: DispatchMode = DispatchMode.COLLECT, **kwargs) -> typing.Any:
        return self.dispatcher.dispatch(hook, *args, mode=mode, **kwargs)

    def alter(
        self,
        types: typing.Union[str, typing.Iterable[str]],
        value: typing.Any,
        *context: typing.Any,
        target: Opt[str] = None,
    ) -> typing.Any:
        return self.dispatcher.alter(types, value, *context, target=target)

    # ========== runtime ==========

    def start_all(self, app: fastapi.FastAPI):
        """Start enabled extensions."""
        for ext_id in self.list_enabled():
            extension_class = self.hooks.extension_class(ext_id)
            if extension_class is None:
                continue
            record = typing.cast(ExtensionRecord, self.registry.get(ext_id))

            extension_router = fastapi.APIRouter(prefix=f"/{ext_id}")
            extension_class.on_start(router=extension_router, config=record.config or {})
            app.include_router(extension_router, tags=["extension", ext_id])
            self.started.append(extension_class)

        self.dispatch("boot")

    async def close_all(self):
        """Close all started extensions.

        It could involve closing connections, so asynchronous.
        """
        for extension_class in self.started:
            await extension_class.on_close(self)
        self.started.clear()
        self.dispatch("exit")


_MANAGER: Opt[ExtensionManager] = None

def get_extension_manager() -> ExtensionManager:
    """Process-wide manager built from the environment."""
    global _MANAGER
    if _MANAGER is None:
        _MANAGER = ExtensionManager.from_config()
    return _MANAGER
