"""Listener and supervisor for control sessions.

The server only admits peers from the allow-list, spawns one session task per
accepted connection, owns the nonce cache shared by those sessions, and tears
everything down on shutdown.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from dataclasses import asdict, dataclass
from typing import Any

from .config import ServerConfig
from .events.log import EventLog, build_event_log
from .registry import Handler, HandlerRegistry
from .session.engine import ControlSession
from .transport.nonces import NonceCache, NonceError, nonce_key
from .transport.signing import SignatureError, verify_request_hash
from .transport.timestamps import TimestampError, assert_within_skew, now_ms

logger = logging.getLogger(__name__)

SWEEPER_LABEL = "RemoteControl.usedNonces"


class ServerStartError(RuntimeError):
    """Raised when the listening socket cannot be bound."""


@dataclass
class ServerStats:
    connections_accepted: int = 0
    connections_rejected: int = 0
    auth_failures: int = 0
    replays_blocked: int = 0
    methods_invoked: int = 0
    handler_errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class RemoteControlServer:
    def __init__(
        self,
        config: ServerConfig | None = None,
        registry: HandlerRegistry | None = None,
        event_log: EventLog | None = None,
    ) -> None:
        self._config = config or ServerConfig()
        self.registry = registry or HandlerRegistry()
        self.event_log = event_log or build_event_log(self._config.event_log)
        self.stats = ServerStats()
        self.nonce_cache = NonceCache(self._config.nonce_retention_seconds)
        self._sessions: dict[ControlSession, asyncio.Task[None]] = {}
        self._listener: asyncio.Server | None = None
        self._started = False
        self._shutting_down = False
        self._closed = asyncio.Event()
        self._shutdown_task: asyncio.Future[None] | None = None
        self.started_at_ms: int | None = None

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._started and not self._shutting_down

    @property
    def bound_port(self) -> int | None:
        if self._listener is None or not self._listener.sockets:
            return None
        return self._listener.sockets[0].getsockname()[1]

    @property
    def live_sessions(self) -> list[ControlSession]:
        return list(self._sessions)

    # Configuration before start ------------------------------------------

    def allow_host(self, host: str) -> None:
        self._assert_not_started("allow_host")
        self._config = self._config.with_allowed_host(host)

    def set_secret(self, client_id: str, secret: str) -> None:
        self._assert_not_started("set_secret")
        self._config = self._config.with_secret(client_id, secret)

    def _assert_not_started(self, operation: str) -> None:
        if self._started:
            raise RuntimeError(f"{operation} is not allowed after the server has started")

    # Registry ------------------------------------------------------------

    def register(self, name: str, handler: Handler) -> None:
        self.registry.register(name, handler)

    def register_method(self, obj: Any, attribute: str, name: str | None = None) -> None:
        self.registry.register_method(obj, attribute, name)

    def unregister(self, name: str) -> None:
        self.registry.unregister(name)

    def registered_methods(self) -> list[str]:
        return self.registry.list_names()

    # Authentication checks used by sessions ------------------------------

    async def check_nonce(self, nonce: str, client_id: str) -> bool:
        """Return True when the nonce is fresh for this id, recording it as used."""
        try:
            await self.nonce_cache.assert_fresh(nonce_key(nonce, client_id))
        except NonceError as exc:
            self.stats.replays_blocked += 1
            logger.info("rejected nonce for id %s: %s", client_id, exc)
            return False
        return True

    def valid_time(self, time_ms: int) -> bool:
        try:
            assert_within_skew(time_ms, max_skew_ms=self._config.max_clock_skew_ms)
        except TimestampError as exc:
            logger.info("rejected client time %d: %s", time_ms, exc)
            return False
        return True

    def validate_hash(self, client_id: str, nonce: str, time_ms: int, offered_hash: str) -> bool:
        try:
            verify_request_hash(
                client_id, nonce, time_ms, offered_hash, self._config.secret_for(client_id)
            )
        except SignatureError as exc:
            self.stats.auth_failures += 1
            self.event_log.add_event("hash validation failed", client_id=client_id, reason=str(exc))
            return False
        return True

    # Lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        if self._shutting_down:
            raise RuntimeError("server has been shut down")
        listen = self._config.listen
        try:
            self._listener = await asyncio.start_server(self._accept, listen.host, listen.port)
        except OSError as exc:
            self.event_log.add_event("listen failed", port=listen.port, error=str(exc))
            raise ServerStartError(f"cannot listen on port {listen.port}: {exc}") from exc
        self._started = True
        self.started_at_ms = now_ms()
        self.nonce_cache.start_sweeper(self._config.nonce_retention_seconds, SWEEPER_LABEL)
        self.event_log.add_event("remote control starting", port=self.bound_port)
        logger.info("remote control listening on port %s", self.bound_port)

    async def serve_forever(self) -> None:
        await self.start()
        await self._closed.wait()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop accepting, stop the sweeper, then stop and join every session.

        Repeated and concurrent calls share one shutdown. A call made from a
        session's own handler returns at once; that session is joined after
        its handler returns.
        """
        self._shutting_down = True
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown(timeout))
        if asyncio.current_task() in self._sessions.values():
            return
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self, timeout: float) -> None:
        if not self._started:
            self._closed.set()
            return
        self.event_log.add_event("remote control terminating")
        if self._listener is not None:
            self._listener.close()
        await self.nonce_cache.stop_sweeper()
        for session, task in list(self._sessions.items()):
            self.event_log.add_event("shutting down session", session=session.name)
            session.shutdown()
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout)
            except asyncio.TimeoutError:
                logger.warning("%s did not stop within %.1fs; aborting", session.name, timeout)
                session.abort()
                await asyncio.wait({task}, timeout=timeout)
        if self._listener is not None:
            try:
                await asyncio.wait_for(self._listener.wait_closed(), timeout)
            except asyncio.TimeoutError:
                logger.warning("listener did not close within %.1fs", timeout)
        self._closed.set()
        logger.info("remote control stopped")

    async def __aenter__(self) -> "RemoteControlServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # Connections ---------------------------------------------------------

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        host = str(peer[0]) if peer else ""
        self.event_log.add_event("connection attempt", peer=host)
        if self._shutting_down:
            await self._refuse(writer, host, "server shutting down")
            return
        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            await self._refuse(writer, host, "unparseable peer address")
            return
        if not self._config.is_allowed_peer(address):
            await self._refuse(writer, host, "unauthorized host")
            return
        if len(self._sessions) >= self._config.max_connections:
            await self._refuse(writer, host, "connection limit reached")
            return

        session = ControlSession(reader, writer, self)
        self.stats.connections_accepted += 1
        self.event_log.add_event("accepted connection", peer=host, session=session.name)
        task = asyncio.current_task()
        assert task is not None
        self._sessions[session] = task
        await session.run()

    async def _refuse(self, writer: asyncio.StreamWriter, host: str, reason: str) -> None:
        self.stats.connections_rejected += 1
        self.event_log.add_event("rejected connection", peer=host, reason=reason)
        logger.info("rejected connection from %s: %s", host, reason)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    def delist_session(self, session: ControlSession) -> None:
        self._sessions.pop(session, None)
