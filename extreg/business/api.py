__all__ = [
    "EXTENSION_ROUTER",
    "extension_error_handler",
]

import fastapi
import fastapi.responses
import pydantic
from extreg.errors import ExtensionError, UnknownExtension
from extreg.schemas.extension import ExtensionID, ExtensionRecord, ListKind
from .extension import ExtensionManager, get_extension_manager

EXTENSION_ROUTER = fastapi.APIRouter(
    prefix="/extensions", tags=["extensions"]
)


class EnableRequest(pydantic.BaseModel):
    ids: list[ExtensionID]
    resolve_dependencies: bool = True

class DisableRequest(pydantic.BaseModel):
    ids: list[ExtensionID]
    cascade: bool = False

class UninstallRequest(pydantic.BaseModel):
    ids: list[ExtensionID]

class InstallRequest(pydantic.BaseModel):
    id: ExtensionID

class ChangedResponse(pydantic.BaseModel):
    changed: list[ExtensionID]


async def extension_error_handler(
    request: fastapi.Request, exc: Exception
) -> fastapi.responses.JSONResponse:
    status_code = (
        fastapi.status.HTTP_404_NOT_FOUND if isinstance(exc, UnknownExtension)
        else fastapi.status.HTTP_409_CONFLICT
    )
    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@EXTENSION_ROUTER.get("")
def list_extensions(
    enabled_only: bool = False,
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> list[ExtensionRecord]:
    return list(manager.get_extensions(enabled_only=enabled_only))

@EXTENSION_ROUTER.get("/enabled")
def list_enabled(
    kind: ListKind = ListKind.ALL,
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> list[ExtensionID]:
    """Enabled extensions in hook dispatch order."""
    return list(manager.list_enabled(kind))

@EXTENSION_ROUTER.get("/{ext_id}")
def get_extension(
    ext_id: ExtensionID,
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> ExtensionRecord:
    record = manager.get(ext_id)
    if record is None:
        raise UnknownExtension(ext_id)
    return record

@EXTENSION_ROUTER.post("/rebuild")
def rebuild(
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> list[ExtensionID]:
    """Rescan extension descriptors."""
    return sorted(manager.rebuild())

@EXTENSION_ROUTER.post("/install")
def install(
    body: InstallRequest,
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> ChangedResponse:
    return ChangedResponse(changed=[body.id] if manager.install(body.id) else [])

@EXTENSION_ROUTER.post("/enable")
def enable(
    body: EnableRequest,
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> ChangedResponse:
    return ChangedResponse(
        changed=manager.enable(body.ids, resolve_dependencies=body.resolve_dependencies)
    )

@EXTENSION_ROUTER.post("/disable")
def disable(
    body: DisableRequest,
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> ChangedResponse:
    return ChangedResponse(changed=manager.disable(body.ids, cascade=body.cascade))

@EXTENSION_ROUTER.post("/uninstall")
def uninstall(
    body: UninstallRequest,
    manager: ExtensionManager = fastapi.Depends(get_extension_manager),
) -> ChangedResponse:
    return ChangedResponse(changed=manager.uninstall(body.ids))
