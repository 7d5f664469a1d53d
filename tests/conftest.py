import json
import typing
import pytest
import sqlmodel
from pathlib import Path
from sqlalchemy.pool import StaticPool
from extreg.business.descriptor import DescriptorStore
from extreg.business.extension import ExtensionManager
from extreg.business.hooks import HookTable
from extreg.business.registry import ExtensionStore
from extreg.schemas.extension import ExtensionModel


class RecordingSink:
    def __init__(self) -> None:
        self.errors: list[BaseException] = []

    def report(self, error: BaseException) -> None:
        self.errors.append(error)


class RecordingMigrator:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def install(self, ext_id: str, version: int) -> None:
        self.calls.append(("install", ext_id, version))

    def uninstall(self, ext_id: str) -> None:
        self.calls.append(("uninstall", ext_id))


@pytest.fixture
def engine():
    engine = sqlmodel.create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    ExtensionModel.__table__.create(engine)  # type: ignore[attr-defined]
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> ExtensionStore:
    return ExtensionStore(lambda: sqlmodel.Session(engine, expire_on_commit=False))


@pytest.fixture
def extensions_dir(tmp_path: Path) -> Path:
    root = tmp_path / "extensions"
    root.mkdir()
    return root


@pytest.fixture
def write_extension(extensions_dir: Path):
    def write(ext_id: str, **descriptor: typing.Any) -> Path:
        descriptor.setdefault("name", ext_id.title())
        directory = extensions_dir / ext_id
        directory.mkdir(parents=True, exist_ok=True)
        (directory / "extension.json").write_text(json.dumps(descriptor))
        return directory
    return write


@pytest.fixture
def hooks() -> HookTable:
    return HookTable()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def migrator() -> RecordingMigrator:
    return RecordingMigrator()


@pytest.fixture
def make_manager(extensions_dir, tmp_path, store, hooks, sink, migrator):
    def make(profile: typing.Optional[str] = None) -> ExtensionManager:
        manager = ExtensionManager(
            descriptor_store=DescriptorStore(
                extensions_dir, profiles_dir=tmp_path / "profiles", profile=profile
            ),
            store=store,
            hooks=hooks,
            migrator=migrator,
            error_sink=sink,
        )
        manager.rebuild()
        return manager
    return make
