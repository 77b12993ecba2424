"""Authenticated line-protocol control channel for host applications."""

from __future__ import annotations

__version__ = "1.0.0"

from .config import ServerConfig, get_server_config, load_server_config  # noqa: E402
from .registry import HandlerRegistry, RegistrationError  # noqa: E402
from .server import RemoteControlServer, ServerStartError  # noqa: E402

__all__ = [
    "HandlerRegistry",
    "RegistrationError",
    "RemoteControlServer",
    "ServerConfig",
    "ServerStartError",
    "get_server_config",
    "load_server_config",
    "__version__",
]
