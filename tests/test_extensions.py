"""Bundled extensions and the HTTP API, against an in-memory database."""

import fastapi
import pytest
import sqlalchemy
from fastapi.testclient import TestClient
from extreg import api_app
from extreg.business.descriptor import DescriptorStore
from extreg.business.extension import ExtensionManager, get_extension_manager
from extreg.business.hooks import ExtensionLoader, HookTable
from extreg.business.migrator import TableSchemaMigrator
from extreg.schemas.extension import ExtensionType, ListKind
from extreg.settings import REPO_DIR


@pytest.fixture
def manager(engine, store, sink) -> ExtensionManager:
    hooks = HookTable(loader=ExtensionLoader("extensions"))
    manager = ExtensionManager(
        descriptor_store=DescriptorStore(
            REPO_DIR / "extensions",
            profiles_dir=REPO_DIR / "profiles",
            profile="standard",
        ),
        store=store,
        hooks=hooks,
        migrator=TableSchemaMigrator(engine, hooks),
        error_sink=sink,
    )
    manager.rebuild()
    return manager


def test_rebuild_reads_bundled_descriptors(manager):
    assert {"system", "node", "comment", "standard"} <= {
        r.id for r in manager.get_extensions(enabled_only=False)
    }
    profile = manager.get("standard")
    assert profile.type == ExtensionType.PROFILE
    assert profile.weight == 1000
    assert manager.get("node").info["configure"] == "/node/types"
    assert manager.get("node").owner == "Core"
    assert manager.get("system").bootstrap == ["boot", "exit"]


def test_enable_profile(manager, engine):
    order = manager.enable(["standard"])

    assert order == ["system", "node", "comment", "standard"]
    assert manager.list_enabled() == ("system", "comment", "node", "standard")
    assert manager.list_enabled(ListKind.BOOTSTRAP) == ("system",)
    assert manager.get("node").schema_version == 2
    assert sqlalchemy.inspect(engine).has_table("node")
    assert manager.exists("comment")
    assert manager.requires("comment") == {"node", "system"}
    assert manager.required_by("node") == {"comment", "standard"}


def test_uninstall_drops_schema(manager, engine):
    manager.enable(["comment"])

    assert manager.disable(["node"], cascade=True) == ["comment", "node"]
    assert manager.uninstall(["node", "comment"]) == ["comment", "node"]
    assert not sqlalchemy.inspect(engine).has_table("node")
    assert not manager.get("node").installed


def test_node_view_alter(manager):
    manager.enable(["comment"])

    page = manager.alter("node_view", {}, {"type": "page"}, target="page")
    article = manager.alter("node_view", {}, {"type": "article"}, target="article")

    assert page == {"links": ["comment-add"]}
    assert article == {"links": ["comment-add"], "comments": []}


def test_collect_node_types(manager):
    manager.enable(["node"])

    assert manager.dispatch("node_types") == [["page", "article"]]


@pytest.mark.asyncio
async def test_start_and_close(manager):
    from extensions.system import Extension as SystemExtension
    manager.enable(["standard"])
    app = fastapi.FastAPI()

    manager.start_all(app)
    assert SystemExtension.booted == 1
    response = TestClient(app).get("/node/types")
    assert response.status_code == 200
    assert response.json() == {"types": ["page", "article"]}

    await manager.close_all()
    assert manager.started == []
    assert SystemExtension.booted == 0
    assert manager.get("node").config["default_type"] == "page"


@pytest.fixture
def client(manager):
    api_app.dependency_overrides[get_extension_manager] = lambda: manager
    yield TestClient(api_app)
    api_app.dependency_overrides.clear()


def test_api_lifecycle(client):
    response = client.post("/extensions/enable", json={"ids": ["comment"]})
    assert response.status_code == 200
    assert response.json() == {"changed": ["system", "node", "comment"]}

    response = client.get("/extensions/enabled")
    assert response.json() == ["system", "comment", "node"]

    response = client.get("/extensions/node")
    assert response.status_code == 200
    assert response.json()["status"] == "enabled"
    assert response.json()["schema_version"] == 2

    response = client.post("/extensions/disable", json={"ids": ["node"]})
    assert response.status_code == 409
    assert response.json()["error"] == "DependentsStillEnabled"

    response = client.post("/extensions/disable", json={"ids": ["node"], "cascade": True})
    assert response.json() == {"changed": ["comment", "node"]}


def test_api_errors(client):
    response = client.get("/extensions/nope")
    assert response.status_code == 404
    assert response.json()["error"] == "UnknownExtension"

    response = client.post("/extensions/disable", json={"ids": ["system"]})
    assert response.status_code == 409
    assert response.json()["error"] == "RequiredExtension"


def test_api_listing(client):
    response = client.get("/extensions", params={"enabled_only": True})
    assert response.json() == []

    response = client.post("/extensions/rebuild")
    assert "standard" in response.json()
