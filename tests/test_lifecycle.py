import shutil
import threading
import pytest
from extreg.business.registry import ExtensionRegistry
from extreg.errors import (
    CyclicDependency, DependentsStillEnabled, MissingDependency, RequiredExtension,
    UninstallBlocked, UnknownExtension, UnmetDependency,
)
from extreg.schemas.extension import SCHEMA_UNINSTALLED, ExtensionStatus

LIFECYCLE_HOOKS = ("install", "enable", "disable", "uninstall")


@pytest.fixture
def events():
    return []


@pytest.fixture
def track(hooks, events):
    """Record lifecycle hooks of the given extensions."""
    def track(*ext_ids):
        for ext_id in ext_ids:
            for hook in LIFECYCLE_HOOKS:
                hooks.register(ext_id, hook, lambda e=ext_id, h=hook: events.append((h, e)))
    return track


@pytest.fixture
def two_level(write_extension, track):
    """`a` depends on `b`."""
    write_extension("a", dependencies=["b"], schema_version=3)
    write_extension("b", schema_version=1)
    track("a", "b")


def test_enable_resolves_dependencies(two_level, make_manager, events, hooks):
    batches = []
    hooks.register("b", "modules_enabled", lambda ids: batches.append(list(ids)))
    manager = make_manager()

    assert manager.enable(["a"]) == ["b", "a"]

    assert manager.get("a").status == ExtensionStatus.ENABLED
    assert manager.get("b").status == ExtensionStatus.ENABLED
    assert events == [("install", "b"), ("enable", "b"), ("install", "a"), ("enable", "a")]
    assert batches == [["b", "a"]]
    assert manager.get("a").schema_version == 3


def test_enable_again_is_a_no_op(two_level, make_manager, events):
    manager = make_manager()
    manager.enable(["a"])
    events.clear()

    assert manager.enable(["a", "b"]) == []
    assert events == []


def test_enable_verbatim_requires_dependencies(two_level, make_manager):
    manager = make_manager()

    with pytest.raises(UnmetDependency) as exc_info:
        manager.enable(["a"], resolve_dependencies=False)
    assert exc_info.value.dependency == "b"
    assert manager.list_enabled() == ()

    with pytest.raises(UnmetDependency):
        manager.enable(["a", "b"], resolve_dependencies=False)

    assert manager.enable(["b", "a"], resolve_dependencies=False) == ["b", "a"]


def test_enable_unknown_extension(make_manager):
    manager = make_manager()
    with pytest.raises(UnknownExtension):
        manager.enable(["ghost"])


def test_enable_failure_rolls_back(two_level, make_manager, hooks, migrator, store):
    def explode():
        raise RuntimeError("enable failed")
    hooks.register("a", "enable", explode)
    manager = make_manager()

    with pytest.raises(RuntimeError):
        manager.enable(["a"])

    assert manager.list_enabled() == ()
    assert manager.get("b").schema_version == SCHEMA_UNINSTALLED
    assert migrator.calls == [
        ("install", "b", 1), ("install", "a", 3), ("uninstall", "a"), ("uninstall", "b"),
    ]
    reloaded = ExtensionRegistry(store)
    reloaded.load()
    assert reloaded.get("b").status == ExtensionStatus.DISABLED
    assert not reloaded.get("b").installed


def test_enable_cycle_leaves_registry_unchanged(write_extension, make_manager, store):
    write_extension("a", dependencies=["b"])
    write_extension("b", dependencies=["a"])
    manager = make_manager()
    before = {i: r.model_dump() for i, r in manager.registry.records().items()}

    with pytest.raises(CyclicDependency) as exc_info:
        manager.enable(["a"])

    assert {"a", "b"} <= set(exc_info.value.cycle)
    assert {i: r.model_dump() for i, r in manager.registry.records().items()} == before


def test_enable_missing_dependency(write_extension, make_manager):
    write_extension("a", dependencies=["ghost"])
    manager = make_manager()

    with pytest.raises(MissingDependency) as exc_info:
        manager.enable(["a"])
    assert exc_info.value.dependency == "ghost"


def test_install_requires_installed_dependencies(two_level, make_manager, events):
    manager = make_manager()

    with pytest.raises(MissingDependency):
        manager.install("a")

    assert manager.install("b") is True
    assert manager.install("b") is False
    assert manager.install("a") is True
    assert events == [("install", "b"), ("install", "a")]
    assert manager.list_enabled() == ()


def test_reinstall_reaches_same_schema_version(two_level, make_manager, events):
    manager = make_manager()
    manager.install("b")
    first = manager.get("b").schema_version

    assert manager.uninstall(["b"]) == ["b"]
    assert manager.get("b").schema_version == SCHEMA_UNINSTALLED
    manager.install("b")

    assert manager.get("b").schema_version == first == 1
    assert events == [("install", "b"), ("uninstall", "b"), ("install", "b")]


def test_disable_with_enabled_dependents(two_level, make_manager, events):
    manager = make_manager()
    manager.enable(["a"])
    events.clear()

    with pytest.raises(DependentsStillEnabled) as exc_info:
        manager.disable(["b"])
    assert exc_info.value.dependents == ("a",)
    assert manager.list_enabled() == ("a", "b")

    assert manager.disable(["b"], cascade=True) == ["a", "b"]
    assert manager.list_enabled() == ()
    assert events == [("disable", "a"), ("disable", "b")]


def test_disable_dependent_and_dependency_together(two_level, make_manager):
    manager = make_manager()
    manager.enable(["a"])

    assert manager.disable(["b", "a"]) == ["a", "b"]


def test_required_extension_cannot_be_disabled(write_extension, make_manager):
    write_extension("system", required=True)
    write_extension("node", dependencies=["system"])
    manager = make_manager()
    manager.enable(["node"])

    for cascade in (False, True):
        with pytest.raises(RequiredExtension):
            manager.disable(["system"], cascade=cascade)
    with pytest.raises(RequiredExtension):
        manager.uninstall(["system"])
    assert manager.exists("system")


def test_cascade_stops_at_required_dependent(write_extension, make_manager):
    write_extension("base")
    write_extension("core", dependencies=["base"], required=True)
    manager = make_manager()
    manager.enable(["core"])

    with pytest.raises(RequiredExtension):
        manager.disable(["base"], cascade=True)
    assert manager.list_enabled() == ("base", "core")


def test_uninstall_requires_disabled(two_level, make_manager):
    manager = make_manager()
    manager.enable(["b"])

    with pytest.raises(UninstallBlocked):
        manager.uninstall(["b"])


def test_uninstall_blocked_by_installed_dependent(two_level, make_manager, migrator):
    manager = make_manager()
    manager.enable(["a"])
    manager.disable(["a", "b"])

    with pytest.raises(UninstallBlocked) as exc_info:
        manager.uninstall(["b"])
    assert exc_info.value.dependents == ("a",)
    assert manager.get("b").installed

    assert manager.uninstall(["b", "a"]) == ["a", "b"]
    assert migrator.calls[-2:] == [("uninstall", "a"), ("uninstall", "b")]


def test_batch_hooks_reach_enabled_implementers(two_level, make_manager, hooks):
    seen = []
    for hook in ("modules_installed", "modules_enabled", "modules_disabled", "modules_uninstalled"):
        hooks.register("b", hook, lambda ids, h=hook: seen.append((h, list(ids))))
    manager = make_manager()

    manager.enable(["a"])
    manager.disable(["a"])
    # b no longer receives hooks once disabled
    manager.disable(["b"])
    manager.uninstall(["a", "b"])

    assert seen == [
        ("modules_installed", ["b", "a"]),
        ("modules_enabled", ["b", "a"]),
        ("modules_disabled", ["a"]),
    ]


def test_uninstall_failure_keeps_schemas(write_extension, make_manager, hooks, migrator, store):
    write_extension("a", schema_version=1)
    write_extension("b", schema_version=1)

    def explode():
        raise RuntimeError("uninstall failed")
    hooks.register("a", "uninstall", explode)
    manager = make_manager()
    manager.install("a")
    manager.install("b")
    migrator.calls.clear()

    with pytest.raises(RuntimeError):
        manager.uninstall(["a", "b"])

    assert migrator.calls == []
    assert manager.get("a").installed
    assert manager.get("b").installed
    reloaded = ExtensionRegistry(store)
    reloaded.load()
    assert reloaded.get("b").schema_version == 1


def test_uninstall_drops_schemas_after_records_commit(two_level, make_manager, migrator, store):
    manager = make_manager()
    manager.enable(["a"])
    manager.disable(["a", "b"])
    seen = []
    migrator.uninstall = lambda ext_id: seen.append((ext_id, store.all()[ext_id].installed))

    manager.uninstall(["a", "b"])

    assert seen == [("a", False), ("b", False)]


def test_concurrent_enables_do_not_interleave(write_extension, make_manager, hooks):
    write_extension("a")
    write_extension("b")
    inside, release = threading.Event(), threading.Event()
    steps = []

    def enable_a():
        steps.append("a:start")
        inside.set()
        release.wait(5)
        steps.append("a:end")
    hooks.register("a", "enable", enable_a)
    hooks.register("b", "enable", lambda: steps.append("b"))
    manager = make_manager()

    first = threading.Thread(target=manager.enable, args=(["a"],))
    second = threading.Thread(target=manager.enable, args=(["b"],))
    first.start()
    assert inside.wait(5)
    second.start()
    second.join(0.2)
    assert second.is_alive()
    assert manager.get("b").status == ExtensionStatus.DISABLED

    release.set()
    first.join(5)
    second.join(5)
    assert steps == ["a:start", "a:end", "b"]
    assert manager.list_enabled() == ("a", "b")


def test_disable_sees_dependents_whose_descriptor_vanished(two_level, make_manager, extensions_dir):
    manager = make_manager()
    manager.enable(["a"])
    shutil.rmtree(extensions_dir / "a")
    manager.rebuild()
    assert manager.get("a").enabled

    with pytest.raises(DependentsStillEnabled) as exc_info:
        manager.disable(["b"])
    assert exc_info.value.dependents == ("a",)

    assert manager.disable(["b"], cascade=True) == ["a", "b"]
    with pytest.raises(UninstallBlocked):
        manager.uninstall(["b"])
    assert manager.uninstall(["a", "b"]) == ["a", "b"]
