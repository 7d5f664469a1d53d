import fastapi
import sqlmodel
from extreg.business.extension import ExtensionBase
from extreg.business.hooks import implements


class NodeExtensionConfig(sqlmodel.SQLModel):
    default_type: str = "page"
    types: tuple[str, ...] = ("page", "article")


class Extension(
    ExtensionBase[NodeExtensionConfig],
    ext_id="node",
    config_cls=NodeExtensionConfig,
):

    @classmethod
    @implements("schema")
    def schema(cls):
        from .schema import NodeModel
        return [NodeModel]

    @classmethod
    @implements("node_types")
    def node_types(cls):
        return list(cls.config.types) if hasattr(cls, "config") else ["page", "article"]

    @classmethod
    def _register_apis(cls, router: fastapi.APIRouter):
        router.get("/types")(lambda: {"types": list(cls.config.types)})
