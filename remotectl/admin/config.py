"""Expose the active policy snapshot for debugging. Secrets are never returned."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..server import RemoteControlServer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_server(request: Request) -> RemoteControlServer:
    return request.app.state.control_server


@router.get("/config")
async def config(server: RemoteControlServer = Depends(_get_server)) -> dict:
    settings = server.config
    return {
        "port": server.bound_port or settings.port,
        "max_connections": settings.max_connections,
        "max_clock_skew_ms": settings.max_clock_skew_ms,
        "nonce_retention_seconds": settings.nonce_retention_seconds,
        "allowed_hosts": [str(addr) for addr in settings.auth.allowed_hosts],
        "client_ids": sorted(settings.auth.clients),
        "methods": sorted(server.registered_methods()),
    }
