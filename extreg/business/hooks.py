"""Hook implementations, their per-hook index and dispatch.

A hook is a named extension point. Extensions register callables for hooks in
a `HookTable`; the `HookIndex` keeps, per hook, the enabled extensions that
implement it; the `HookDispatcher` calls them in that order.
"""

import enum
import importlib
import threading
import typing
from typing import Optional as Opt
from extreg.errors import HookImplementerFailure
from extreg.logger import logger
from extreg.schemas.extension import ExtensionID, HookName
from extreg.utils.base import unique

if typing.TYPE_CHECKING:
    from extreg.business.extension import ExtensionBase
    from extreg.business.registry import ExtensionRegistry


IMPLEMENTERS_ALTER: HookName = "implementers_alter"
"""Lets extensions reorder the implementers of any other hook."""


def implements(*hooks: HookName) -> typing.Callable:
    """Mark an `ExtensionBase` method as the implementation of hooks.

    Put it under `@classmethod`.
    """
    def decorator(func):
        func.__hooks__ = tuple(getattr(func, "__hooks__", ())) + hooks
        return func
    return decorator


def declared_hooks(attr: typing.Any) -> tuple[HookName, ...]:
    func = attr.__func__ if isinstance(attr, (classmethod, staticmethod)) else attr
    return tuple(getattr(func, "__hooks__", ()))


class ExtensionLoader:
    """Import the code package of an extension.

    An extension without a package implements nothing.
    """

    def __init__(self, package: str = "extensions") -> None:
        self._package = package

    def __call__(self, ext_id: ExtensionID) -> Opt[type["ExtensionBase"]]:
        module_name = f"{self._package}.{ext_id}"
        try:
            module = importlib.import_module(module_name)
        except ModuleNotFoundError as e:
            if e.name in (self._package, module_name):
                logger.debug("Extension [{}] has no code package", ext_id)
                return None
            logger.opt(exception=e).warning("Extension [{}] code failed to load", ext_id)
            return None
        except Exception as e:
            logger.opt(exception=e).warning("Extension [{}] code failed to load", ext_id)
            return None
        return getattr(module, "Extension", None)


class HookTable:
    """Capability table mapping (extension, hook) to a callable.

    Extension code is loaded on the first probe of that extension.
    """

    def __init__(self, loader: Opt[typing.Callable[[ExtensionID], Opt[type["ExtensionBase"]]]] = None) -> None:
        self._loader = loader
        self._table: dict[ExtensionID, dict[HookName, typing.Callable]] = {}
        self._classes: dict[ExtensionID, type["ExtensionBase"]] = {}
        self._loaded: set[ExtensionID] = set()
        self._lock = threading.RLock()

    def register(self, ext_id: ExtensionID, hook: HookName, func: typing.Callable) -> None:
        with self._lock:
            self._table.setdefault(ext_id, {})[hook] = func
        logger.debug("Hook [{}] registered for extension [{}]", hook, ext_id)

    def register_extension(self, extension_cls: type["ExtensionBase"]) -> None:
        ext_id = extension_cls.__extid__
        with self._lock:
            self._classes[ext_id] = extension_cls
            self._loaded.add(ext_id)
            for hook, attr_name in extension_cls.__hookimpls__.items():
                self.register(ext_id, hook, getattr(extension_cls, attr_name))

    def unregister(self, ext_id: ExtensionID) -> None:
        with self._lock:
            self._table.pop(ext_id, None)
            self._classes.pop(ext_id, None)
            self._loaded.discard(ext_id)

    def _ensure_loaded(self, ext_id: ExtensionID) -> None:
        if self._loader is None or ext_id in self._loaded:
            return
        with self._lock:
            if ext_id in self._loaded:
                return
            self._loaded.add(ext_id)
            extension_cls = self._loader(ext_id)
            if extension_cls is None:
                return
            if extension_cls.__extid__ != ext_id:
                logger.warning(
                    "Extension [{}] declares ext_id [{}], code ignored",
                    ext_id, extension_cls.__extid__,
                )
                return
            self.register_extension(extension_cls)

    def extension_class(self, ext_id: ExtensionID) -> Opt[type["ExtensionBase"]]:
        self._ensure_loaded(ext_id)
        return self._classes.get(ext_id)

    def hooks_of(self, ext_id: ExtensionID) -> set[HookName]:
        self._ensure_loaded(ext_id)
        return set(self._table.get(ext_id, ()))

    def implements(self, ext_id: ExtensionID, hook: HookName) -> bool:
        self._ensure_loaded(ext_id)
        return hook in self._table.get(ext_id, ())

    def invoke(self, ext_id: ExtensionID, hook: HookName, *args, **kwargs) -> typing.Any:
        self._ensure_loaded(ext_id)
        return self._table[ext_id][hook](*args, **kwargs)


class ErrorSink(typing.Protocol):

    def report(self, error: BaseException) -> None:
        ...


class LoggingErrorSink:
    """Report failures to the log."""

    def report(self, error: BaseException) -> None:
        logger.opt(exception=error).error("{}", error)


def report_failure(sink: ErrorSink, ext_id: ExtensionID, hook: HookName, error: Exception) -> None:
    failure = HookImplementerFailure(ext_id, hook, error)
    failure.__cause__ = error
    sink.report(failure)


class HookIndex:
    """Per-hook ordered implementers among the enabled extensions.

    Built lazily and kept until the registry signals a change.
    """

    def __init__(
        self, registry: "ExtensionRegistry", probe: HookTable, error_sink: Opt[ErrorSink] = None
    ) -> None:
        self._registry = registry
        self._probe = probe
        self._error_sink = error_sink or LoggingErrorSink()
        self._cache: dict[HookName, tuple[ExtensionID, ...]] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        registry.subscribe(self.invalidate)

    @property
    def epoch(self) -> int:
        return self._epoch

    def invalidate(self) -> None:
        with self._lock:
            self._epoch += 1
            self._cache = {}
        logger.debug("Hook index invalidated (epoch {})", self._epoch)

    def implementers_of(self, hook: HookName) -> tuple[ExtensionID, ...]:
        cached = self._cache.get(hook)
        if cached is not None:
            return cached

        epoch = self._epoch
        implementers = [
            ext_id for ext_id in self._registry.list_enabled()
            if self._probe.implements(ext_id, hook)
        ]
        if hook != IMPLEMENTERS_ALTER:
            for ext_id in self.implementers_of(IMPLEMENTERS_ALTER):
                altered = list(implementers)
                try:
                    self._probe.invoke(ext_id, IMPLEMENTERS_ALTER, altered, hook)
                except Exception as e:
                    report_failure(self._error_sink, ext_id, IMPLEMENTERS_ALTER, e)
                    continue
                implementers = altered
        result = tuple(implementers)

        with self._lock:
            # a concurrent invalidation makes this result stale
            if epoch == self._epoch:
                self._cache[hook] = result
        return result

    def sort(self, ext_ids: typing.Iterable[ExtensionID]) -> list[ExtensionID]:
        """Order extensions the way `list_enabled` does."""
        position = {ext_id: i for i, ext_id in enumerate(self._registry.list_enabled())}
        return sorted(ext_ids, key=lambda i: position.get(i, len(position)))


class DispatchMode(enum.Enum):
    COLLECT = "collect"
    ALTER = "alter"


class HookDispatcher:

    def __init__(self, index: HookIndex, probe: HookTable, error_sink: Opt[ErrorSink] = None) -> None:
        self._index = index
        self._probe = probe
        self._error_sink = error_sink or LoggingErrorSink()

    def invoke(self, ext_id: ExtensionID, hook: HookName, *args, **kwargs) -> typing.Any:
        """Call one extension's implementation, None if it has none.

        Errors propagate to the caller.
        """
        if not self._probe.implements(ext_id, hook):
            return None
        return self._probe.invoke(ext_id, hook, *args, **kwargs)

    def invoke_all(self, hook: HookName, *args, **kwargs) -> list[typing.Any]:
        """Call every implementer in index order and collect non-None results.

        A failing implementer is reported and skipped.
        """
        results = []
        for ext_id in self._index.implementers_of(hook):
            try:
                result = self._probe.invoke(ext_id, hook, *args, **kwargs)
            except Exception as e:
                report_failure(self._error_sink, ext_id, hook, e)
                continue
            if result is not None:
                results.append(result)
        return results

    def dispatch(self, hook: HookName, *args, mode: DispatchMode = DispatchMode.COLLECT, **kwargs) -> typing.Any:
        if mode == DispatchMode.ALTER:
            value, *context = args
            return self.alter(hook, value, *context, **kwargs)
        return self.invoke_all(hook, *args, **kwargs)

    def alter(
        self,
        types: typing.Union[str, typing.Iterable[str]],
        value: typing.Any,
        *context: typing.Any,
        target: Opt[str] = None,
    ) -> typing.Any:
        """Let implementers of `<type>_alter` mutate `value` in turn.

        Every implementer sees what the previous ones did. One returning
        something other than None replaces the value for the rest.

        With several types, an extension implementing more than one of them
        runs once, with its implementation of the first type listed. With a
        `target`, an extension's `<type>_<target>_alter` runs right after its
        generic implementation.

        A failing implementer stops the chain; the failure is reported and the
        value is returned as altered so far.
        """
        types = (types,) if isinstance(types, str) else unique(types)
        if not types:
            return value
        generic = [f"{t}_alter" for t in types]
        specific = [f"{t}_{target}_alter" for t in types] if target else []

        implementers = list(self._index.implementers_of(generic[0]))
        extra = [
            ext_id
            for hook in generic[1:] + specific
            for ext_id in self._index.implementers_of(hook)
            if ext_id not in implementers
        ]
        if extra:
            implementers = self._index.sort(unique(implementers + extra))

        for ext_id in implementers:
            for candidates in (generic, specific):
                hook = next((h for h in candidates if self._probe.implements(ext_id, h)), None)
                if hook is None:
                    continue
                try:
                    result = self._probe.invoke(ext_id, hook, value, *context)
                except Exception as e:
                    report_failure(self._error_sink, ext_id, hook, e)
                    return value
                if result is not None:
                    value = result
        return value
