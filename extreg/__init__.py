"""Extension registry API service.
"""

import contextlib
import fastapi
from .errors import ExtensionError
from .business.api import EXTENSION_ROUTER, extension_error_handler
from .business.extension import get_extension_manager


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    manager = get_extension_manager()
    manager.rebuild()
    manager.start_all(app)
    yield
    await manager.close_all()

api_app = fastapi.FastAPI(title="extreg", lifespan=lifespan)

@api_app.get("/heartbeat")
def heartbeat():
    """Check if the API is running."""
    return {"status": "ok"}

api_app.add_exception_handler(ExtensionError, extension_error_handler)
api_app.include_router(EXTENSION_ROUTER)
