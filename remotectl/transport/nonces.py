"""Time-bounded nonce cache used for replay prevention."""

from __future__ import annotations

import asyncio
import logging

from .timestamps import now_ms

logger = logging.getLogger(__name__)


class NonceError(ValueError):
    """Raised when a nonce is missing or reused."""


def nonce_key(nonce: str, client_id: str) -> str:
    return f"{nonce}.{client_id}"


class NonceCache:
    """Set of used tokens, each remembered until its expiry timestamp.

    ``try_insert`` is the only operation correctness depends on: an entry
    found past its expiry is treated as absent, so a late or stopped
    sweeper only costs memory.
    """

    def __init__(self, retention_seconds: int) -> None:
        self._retention_ms = int(retention_seconds) * 1000
        self._entries: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def retention_ms(self) -> int:
        return self._retention_ms

    async def try_insert(self, key: str, expiry_ms: int, *, now_ms: int | None = None) -> bool:
        """Insert ``key`` unless it is already present and unexpired.

        Returns True when the key was fresh, False on replay.
        """
        current = _now(now_ms)
        async with self._lock:
            existing = self._entries.get(key)
            if existing is not None and existing > current:
                return False
            self._entries[key] = expiry_ms
            return True

    async def assert_fresh(self, key: str) -> None:
        if not key:
            raise NonceError("nonce missing")
        current = now_ms()
        if not await self.try_insert(key, current + self._retention_ms, now_ms=current):
            raise NonceError("nonce already seen")

    async def sweep(self, now_ms: int | None = None) -> int:
        current = _now(now_ms)
        async with self._lock:
            expired = [key for key, expiry in self._entries.items() if expiry <= current]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def start_sweeper(self, period_seconds: float, label: str = "nonce-sweeper") -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(period_seconds, label), name=label
        )

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_forever(self, period_seconds: float, label: str) -> None:
        while True:
            await asyncio.sleep(period_seconds)
            removed = await self.sweep()
            if removed:
                logger.debug("%s removed %d expired nonces", label, removed)


def _now(value: int | None) -> int:
    return now_ms() if value is None else value
