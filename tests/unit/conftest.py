"""Shared fixtures: a control server on an ephemeral loopback port and a line client."""

from __future__ import annotations

import asyncio
from types import MappingProxyType

import pytest
import pytest_asyncio

from remotectl.config import AuthConfig, ListenConfig, ServerConfig, resolve_hosts
from remotectl.demo import DemoApplication, register_demo_handlers
from remotectl.server import RemoteControlServer
from remotectl.transport.signing import compute_request_hash
from remotectl.transport.timestamps import now_ms

READ_TIMEOUT = 3.0


class LineClient:
    """Minimal protocol client used to drive the server in tests."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer

    @classmethod
    async def connect(cls, port: int, host: str = "127.0.0.1") -> "LineClient":
        reader, writer = await asyncio.open_connection(host, port)
        return cls(reader, writer)

    async def send(self, *lines: str) -> None:
        for line in lines:
            self.writer.write(f"{line}\r\n".encode())
        await self.writer.drain()

    async def read_line(self, timeout: float = READ_TIMEOUT) -> str | None:
        """Next line without its terminator, or None at EOF."""
        try:
            raw = await asyncio.wait_for(self.reader.readline(), timeout)
        except ConnectionResetError:
            return None
        if not raw:
            return None
        return raw.decode().rstrip("\r\n")

    async def read_lines(self, count: int) -> list[str | None]:
        return [await self.read_line() for _ in range(count)]

    async def read_until_eof(self) -> list[str]:
        lines = []
        while (line := await self.read_line()) is not None:
            lines.append(line)
        return lines

    async def is_silent(self, timeout: float = 0.3) -> bool:
        try:
            await asyncio.wait_for(self.reader.readline(), timeout)
        except asyncio.TimeoutError:
            return True
        return False

    async def authenticate(
        self,
        client_id: str = "jim",
        secret: str = "jim",
        nonce: str = "N1",
        time_ms: int | None = None,
    ) -> None:
        time_ms = now_ms() if time_ms is None else time_ms
        await self.send(
            f"id {client_id}",
            f"nonce {nonce}",
            f"time {time_ms}",
            f"hash {compute_request_hash(client_id, nonce, time_ms, secret)}",
        )

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            pass


def make_config(allowed_hosts=("127.0.0.1",), **listen_overrides) -> ServerConfig:
    listen = {"host": "127.0.0.1", "port": 0, **listen_overrides}
    return ServerConfig(
        listen=ListenConfig(**listen),
        auth=AuthConfig(
            nonce_retention_seconds=180,
            max_clock_skew_ms=10000,
            allowed_hosts=resolve_hosts(allowed_hosts),
            clients=MappingProxyType({"jim": "jim"}),
        ),
    )


@pytest.fixture
def server_config():
    return make_config()


@pytest.fixture
def demo_app():
    return DemoApplication()


@pytest_asyncio.fixture
async def control_server(server_config, demo_app):
    server = RemoteControlServer(server_config)
    register_demo_handlers(server, demo_app)
    await server.start()
    try:
        yield server
    finally:
        await server.shutdown()


@pytest_asyncio.fixture
async def client(control_server):
    line_client = await LineClient.connect(control_server.bound_port)
    assert await line_client.read_line() == "CONNECTED"
    try:
        yield line_client
    finally:
        await line_client.close()


@pytest_asyncio.fixture
async def connect_client(control_server):
    """Factory opening extra raw connections; greeting is left unread."""
    opened: list[LineClient] = []

    async def _connect() -> LineClient:
        line_client = await LineClient.connect(control_server.bound_port)
        opened.append(line_client)
        return line_client

    try:
        yield _connect
    finally:
        for line_client in opened:
            await line_client.close()
