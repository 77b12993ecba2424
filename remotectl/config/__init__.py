"""Configuration snapshot and loader for the remote control server."""

from __future__ import annotations

import ipaddress
import os
import socket
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Union

import yaml
from jsonschema import ValidationError

from ..validation.validator import describe_error, get_schema_registry

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"

RESERVED_TOKEN = "."

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ConfigError(ValueError):
    """Raised when configuration values are missing, malformed or out of range."""


@dataclass(frozen=True)
class ListenConfig:
    host: str | None = None
    port: int = 5859
    max_connections: int = 10


@dataclass(frozen=True)
class AuthConfig:
    nonce_retention_seconds: int = 180
    max_clock_skew_ms: int = 10000
    allowed_hosts: tuple[IPAddress, ...] = ()
    clients: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class EventLogConfig:
    path: str | None = None


@dataclass(frozen=True)
class ServerConfig:
    listen: ListenConfig = field(default_factory=ListenConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    event_log: EventLogConfig = field(default_factory=EventLogConfig)

    def __post_init__(self) -> None:
        _validate(self)

    @property
    def port(self) -> int:
        return self.listen.port

    @property
    def max_connections(self) -> int:
        return self.listen.max_connections

    @property
    def max_clock_skew_ms(self) -> int:
        return self.auth.max_clock_skew_ms

    @property
    def nonce_retention_seconds(self) -> int:
        return self.auth.nonce_retention_seconds

    def secret_for(self, client_id: str) -> str | None:
        return self.auth.clients.get(client_id)

    def is_allowed_peer(self, address: IPAddress) -> bool:
        return address in self.auth.allowed_hosts

    def with_allowed_host(self, host: str) -> "ServerConfig":
        resolved = [addr for addr in resolve_host(host) if addr not in self.auth.allowed_hosts]
        auth = replace(self.auth, allowed_hosts=self.auth.allowed_hosts + tuple(resolved))
        return replace(self, auth=auth)

    def with_secret(self, client_id: str, secret: str) -> "ServerConfig":
        clients = dict(self.auth.clients)
        clients[client_id] = secret
        auth = replace(self.auth, clients=MappingProxyType(clients))
        return replace(self, auth=auth)

    def with_port(self, port: int) -> "ServerConfig":
        return replace(self, listen=replace(self.listen, port=port))


def resolve_host(host: str) -> list[IPAddress]:
    """Resolve a literal address or host name to every address it maps to."""
    try:
        return [ipaddress.ip_address(host)]
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise ConfigError(f"cannot resolve allowed host {host!r}: {exc}") from exc
    addresses: list[IPAddress] = []
    for _family, _type, _proto, _canon, sockaddr in infos:
        addr = ipaddress.ip_address(str(sockaddr[0]).split("%", 1)[0])
        if addr not in addresses:
            addresses.append(addr)
    return addresses


def resolve_hosts(hosts: Iterable[str]) -> tuple[IPAddress, ...]:
    resolved: list[IPAddress] = []
    for host in hosts:
        for addr in resolve_host(host):
            if addr not in resolved:
                resolved.append(addr)
    return tuple(resolved)


def _validate(config: ServerConfig) -> None:
    if not 0 <= config.listen.port <= 65535:
        raise ConfigError(f"port {config.listen.port} out of range")
    if config.listen.max_connections < 1:
        raise ConfigError("max_connections must be positive")
    if config.auth.nonce_retention_seconds < 1:
        raise ConfigError("nonce_retention_seconds must be positive")
    if config.auth.max_clock_skew_ms < 0:
        raise ConfigError("max_clock_skew_ms must not be negative")
    for client_id, secret in config.auth.clients.items():
        if not client_id or client_id == RESERVED_TOKEN or any(ch.isspace() for ch in client_id):
            raise ConfigError(f"invalid client id {client_id!r}")
        if not secret:
            raise ConfigError(f"empty secret for client id {client_id!r}")


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def build_server_config(data: Mapping[str, Any]) -> ServerConfig:
    try:
        get_schema_registry().validate("server_config", data)
    except ValidationError as exc:
        raise ConfigError(describe_error(exc)) from exc
    listen = data.get("listen") or {}
    auth = data.get("auth") or {}
    event_log = data.get("event_log") or {}
    clients = {str(key): str(value) for key, value in (auth.get("clients") or {}).items()}
    return ServerConfig(
        listen=ListenConfig(
            host=listen.get("host"),
            port=int(listen.get("port", 5859)),
            max_connections=int(listen.get("max_connections", 10)),
        ),
        auth=AuthConfig(
            nonce_retention_seconds=int(auth.get("nonce_retention_seconds", 180)),
            max_clock_skew_ms=int(auth.get("max_clock_skew_ms", 10000)),
            allowed_hosts=resolve_hosts(auth.get("allowed_hosts") or ()),
            clients=MappingProxyType(clients),
        ),
        event_log=EventLogConfig(path=event_log.get("path")),
    )


def load_server_config(path: Path) -> ServerConfig:
    return build_server_config(_load_yaml(path))


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    path = Path(os.getenv("REMOTECTL_CONFIG_PATH", _DEFAULT_SERVER_CONFIG))
    return load_server_config(path)
