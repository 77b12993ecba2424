"""FastAPI admin application wrapped around a control server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request

from . import __version__
from .admin import config as admin_config
from .admin import health as admin_health
from .admin import stats as admin_stats
from .server import RemoteControlServer


def create_app(server: RemoteControlServer) -> FastAPI:
    """Build the admin application; its lifespan owns the control server."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.control_server = server
        await server.start()
        try:
            yield
        finally:
            await server.shutdown()

    app = FastAPI(
        title="remotectl admin",
        version=__version__,
        docs_url="/docs",
        lifespan=lifespan,
    )
    app.state.control_server = server

    app.include_router(admin_health.router)
    app.include_router(admin_stats.router)
    app.include_router(admin_config.router)

    @app.get("/", tags=["meta"])
    async def root(control: RemoteControlServer = Depends(get_control_server)) -> dict[str, Any]:
        return {
            "service": "remotectl",
            "version": app.version,
            "control_port": control.bound_port,
            "methods": sorted(control.registered_methods()),
        }

    return app


def get_control_server(request: Request) -> RemoteControlServer:
    return request.app.state.control_server
