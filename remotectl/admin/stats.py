"""Operational stats endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ..server import RemoteControlServer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_server(request: Request) -> RemoteControlServer:
    return request.app.state.control_server


@router.get("/stats")
async def stats(server: RemoteControlServer = Depends(_get_server)) -> dict[str, Any]:
    counters = server.stats.as_dict()
    sessions = [
        {
            "name": session.name,
            "peer": str(session.peer[0]) if session.peer else "",
            "state": session.state.value,
        }
        for session in server.live_sessions
    ]
    return {**counters, "nonces_cached": len(server.nonce_cache), "sessions": sessions}
