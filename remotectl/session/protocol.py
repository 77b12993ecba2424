"""Line protocol vocabulary and the session authentication state machine."""

from __future__ import annotations

from enum import Enum

CONNECTED = "CONNECTED"
ERROR = "ERROR"

DISCONNECT_COMMAND = "."
LIST_COMMANDS_COMMAND = "?"
EXEC_COMMAND = "#"
ID_COMMAND = "id"
NONCE_COMMAND = "nonce"
HASH_COMMAND = "hash"
TIME_COMMAND = "time"

COMMANDS = (
    DISCONNECT_COMMAND,
    LIST_COMMANDS_COMMAND,
    EXEC_COMMAND,
    ID_COMMAND,
    NONCE_COMMAND,
    HASH_COMMAND,
    TIME_COMMAND,
)

COMMANDS_LINE = "commands: " + " | ".join(COMMANDS)
METHODS_PREFIX = "methods: "


class SessionState(str, Enum):
    OPEN = "open"
    PARTIAL_AUTH = "partial_auth"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


def derive_state(
    *,
    running: bool,
    hash_verified: bool,
    client_id: str | None,
    nonce: str | None,
    time_ms: int,
    offered_hash: str | None,
) -> SessionState:
    if not running:
        return SessionState.CLOSED
    if hash_verified:
        return SessionState.AUTHENTICATED
    if client_id is None and nonce is None and not time_ms and offered_hash is None:
        return SessionState.OPEN
    return SessionState.PARTIAL_AUTH


def error_line(diagnostic: str) -> str:
    return f"{ERROR} {diagnostic}"


def methods_line(names: list[str]) -> str:
    return METHODS_PREFIX + " ".join(names)
