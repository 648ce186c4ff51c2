"""
KohakuPort FastAPI Application.

Builds the HTTP API around an already wired PortServices. The application
does no wiring of its own; ``kohakuport.server.supervisor`` is the
composition root.

Responsibilities:
    - Tunnel lifecycle API (create, list, remove)
    - Intent API (list, cancel)
    - Convergence trigger and status
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from kohakuport import __version__
from kohakuport.server.endpoints import intents, status, tunnels
from kohakuport.server.state import PortServices
from kohakuport.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)


def create_app(services: PortServices) -> FastAPI:
    """
    Create the API application.

    Args:
        services: Shared store, session cache and manager.

    Returns:
        FastAPI application with all routers under ``/api``.
    """
    app = FastAPI(
        title="KohakuPort",
        description="Expose container ports through managed ngrok tunnels",
        version=__version__,
    )
    app.state.services = services

    app.include_router(tunnels.router, prefix="/api", tags=["Tunnels"])
    app.include_router(intents.router, prefix="/api", tags=["Intents"])
    app.include_router(status.router, prefix="/api", tags=["Status"])

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error(f"HTTP error on {request.method} {request.url.path}: {exc}")
        logger.debug(format_traceback(exc))
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    return app
