"""Per-connection protocol engine.

A session greets the client, then processes one command per line in arrival
order. Authentication facts (id, nonce, time, hash) accumulate in any order;
``#`` checks them, verifies the hash once per distinct hash value, and runs
the requested handler with the session's output sink. Protocol problems are
reported as ``ERROR ...`` lines; only a replayed nonce ends the session.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from ..registry import Handler
from ..transport.lines import LineSink, decode_line, tokenize
from ..transport.timestamps import TimestampError, parse_time_ms
from . import protocol as p

if TYPE_CHECKING:  # pragma: no cover
    from ..server import RemoteControlServer

logger = logging.getLogger(__name__)

READ_POLL_INTERVAL = 0.2

_session_ids = itertools.count(1)


class ControlSession:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        server: "RemoteControlServer",
        *,
        poll_interval: float = READ_POLL_INTERVAL,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._server = server
        self._poll_interval = poll_interval
        self.name = f"session-{next(_session_ids)}"
        self.peer = writer.get_extra_info("peername")

        self.client_id: str | None = None
        self.nonce: str | None = None
        self.time_ms = 0
        self.offered_hash: str | None = None
        self.hash_verified = False

        self._running = True
        self._stop = asyncio.Event()
        self._pending_read: asyncio.Future[bytes] | None = None
        self._sink: LineSink | None = None
        self._torn_down = False
        self._commands: dict[str, Callable[[list[str]], Awaitable[None]]] = {
            p.ID_COMMAND: self._set_id,
            p.NONCE_COMMAND: self._set_nonce,
            p.TIME_COMMAND: self._set_time,
            p.HASH_COMMAND: self._set_hash,
            p.LIST_COMMANDS_COMMAND: self._list_commands,
            p.EXEC_COMMAND: self._execute,
            p.DISCONNECT_COMMAND: self._disconnect,
        }

    @property
    def running(self) -> bool:
        return self._running

    @property
    def state(self) -> p.SessionState:
        return p.derive_state(
            running=self._running,
            hash_verified=self.hash_verified,
            client_id=self.client_id,
            nonce=self.nonce,
            time_ms=self.time_ms,
            offered_hash=self.offered_hash,
        )

    def shutdown(self) -> None:
        """Ask the read loop to stop; an in-flight handler is left to finish."""
        self._running = False
        self._stop.set()

    def abort(self) -> None:
        self.shutdown()
        transport = self._writer.transport
        if transport is not None:
            transport.abort()

    async def run(self) -> None:
        self._sink = LineSink(self._writer, asyncio.get_running_loop())
        try:
            self._sink.write_line(p.CONNECTED)
            await self._sink.drain()
            while self._running:
                try:
                    raw = await self._next_line()
                except (OSError, ValueError) as exc:
                    logger.warning("%s read from %s failed: %s", self.name, self.peer, exc)
                    break
                if raw is None:
                    continue
                if not raw:
                    logger.debug("%s peer %s closed the connection", self.name, self.peer)
                    break
                await self.handle_line(decode_line(raw))
                await self._sink.drain()
        except OSError as exc:
            logger.warning("%s write to %s failed: %s", self.name, self.peer, exc)
        finally:
            self._running = False
            await self._teardown()

    async def handle_line(self, line: str) -> None:
        command, args = tokenize(line)
        if command is None:
            return
        action = self._commands.get(command)
        if action is None:
            return
        await action(args)

    async def _next_line(self) -> bytes | None:
        """Wait up to one poll interval for a line; None means nothing arrived yet."""
        if self._pending_read is None:
            self._pending_read = asyncio.ensure_future(self._reader.readline())
        stop_wait = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {self._pending_read, stop_wait},
                timeout=self._poll_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_wait.cancel()
        if self._pending_read in done:
            read, self._pending_read = self._pending_read, None
            return read.result()
        return None

    async def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        read, self._pending_read = self._pending_read, None
        if read is not None and not read.done():
            read.cancel()
            try:
                await read
            except (asyncio.CancelledError, OSError, ValueError):
                pass
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as exc:
            logger.debug("%s close raised %s", self.name, exc)
        self._server.delist_session(self)
        self._server.event_log.add_event("session closed", session=self.name, peer=_host(self.peer))

    # Protocol commands -----------------------------------------------------

    def _reply(self, text: str) -> None:
        assert self._sink is not None
        self._sink.write_line(text)

    def _reply_error(self, diagnostic: str) -> None:
        self._reply(p.error_line(diagnostic))

    def _single_argument(self, command: str, args: Sequence[str]) -> str | None:
        if not args:
            self._reply_error(f"'{command}' requires a value")
            return None
        return args[0]

    async def _set_id(self, args: list[str]) -> None:
        value = self._single_argument(p.ID_COMMAND, args)
        if value is not None:
            self.client_id = value

    async def _set_nonce(self, args: list[str]) -> None:
        value = self._single_argument(p.NONCE_COMMAND, args)
        if value is None:
            return
        if self.client_id is None:
            self._reply_error("'id' is required before setting nonce")
            return
        if not await self._server.check_nonce(value, self.client_id):
            self._reply_error(f"nonce:{value} is not unique. Replay prohibited.")
            self._server.event_log.add_event(
                "nonce replay", session=self.name, client_id=self.client_id, nonce=value
            )
            self.shutdown()
            return
        self.nonce = value

    async def _set_time(self, args: list[str]) -> None:
        value = self._single_argument(p.TIME_COMMAND, args)
        if value is None:
            return
        try:
            time_ms = parse_time_ms(value)
        except TimestampError:
            self._reply_error("'time' value was not valid")
            return
        if not self._server.valid_time(time_ms):
            self._reply_error("'time' value was not valid. Max clock skew limit exceeded.")
            return
        self.time_ms = time_ms

    async def _set_hash(self, args: list[str]) -> None:
        value = self._single_argument(p.HASH_COMMAND, args)
        if value is not None:
            self.offered_hash = value
            self.hash_verified = False

    async def _list_commands(self, args: list[str]) -> None:
        self._reply(p.COMMANDS_LINE)
        self._reply(p.methods_line(self._server.registered_methods()))

    async def _disconnect(self, args: list[str]) -> None:
        self.shutdown()

    async def _execute(self, args: list[str]) -> None:
        if self.offered_hash is None:
            self._reply_error("'hash' is required")
            return
        if self.nonce is None:
            self._reply_error("'nonce' is required")
            return
        if self.client_id is None:
            self._reply_error("'id' is required")
            return
        if self.time_ms == 0:
            self._reply_error("'time' is required")
            return
        if not args:
            self._reply_error(f"{p.EXEC_COMMAND} must include the method to run")
            return
        if not self.hash_verified:
            if not self._server.validate_hash(
                self.client_id, self.nonce, self.time_ms, self.offered_hash
            ):
                self._reply_error("'hash' did not validate")
                return
            self.hash_verified = True

        method = args[0]
        handler = self._server.registry.lookup(method)
        if handler is None:
            self._server.event_log.add_event("method not found", session=self.name, method=method)
            self._reply_error(f"Method {method} not found. Cannot invoke")
            return
        self._server.event_log.add_event(
            "invoking method", session=self.name, client_id=self.client_id, method=method
        )
        self._server.stats.methods_invoked += 1
        try:
            await self._invoke(handler, list(args))
        except Exception as exc:
            logger.warning("%s method %s raised %r", self.name, method, exc)
            self._server.stats.handler_errors += 1
            self._reply_error(str(exc) or type(exc).__name__)

    async def _invoke(self, handler: Handler, args: list[str]) -> None:
        assert self._sink is not None
        if _is_async(handler):
            await handler(self._sink, args)
            return
        result = await asyncio.to_thread(handler, self._sink, args)
        if inspect.isawaitable(result):
            await result


def _is_async(handler: Handler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


def _host(peer: object) -> str:
    if isinstance(peer, tuple) and peer:
        return str(peer[0])
    return str(peer)
