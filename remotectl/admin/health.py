"""Admin health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from ..transport.timestamps import now_ms

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health")
async def health(request: Request) -> dict[str, int | str]:
    server = request.app.state.control_server
    started_at = server.started_at_ms
    uptime = (now_ms() - started_at) // 1000 if started_at and server.running else 0
    return {
        "status": "running" if server.running else "stopped",
        "uptime_seconds": uptime,
        "version": request.app.version,
        "live_sessions": len(server.live_sessions),
    }
