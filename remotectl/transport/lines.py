"""CRLF line framing for asyncio streams."""

from __future__ import annotations

import asyncio

CRLF = "\r\n"
ENCODING = "utf-8"


def decode_line(raw: bytes) -> str:
    """Decode one received line, dropping a trailing CRLF or bare LF."""
    return raw.decode(ENCODING, errors="replace").rstrip("\r\n")


def encode_line(text: str) -> bytes:
    return f"{text}{CRLF}".encode(ENCODING)


def tokenize(line: str) -> tuple[str | None, list[str]]:
    """Split a command line into a lower-cased command and its arguments.

    Whitespace-only lines return ``(None, [])``.
    """
    tokens = line.split()
    if not tokens:
        return None, []
    return tokens[0].lower(), tokens[1:]


class LineSink:
    """Line-oriented output handed to handlers for the duration of one call.

    Writes may come from the event loop or from the worker thread running a
    plain handler. A worker thread blocks on each line until the loop has
    written and drained it, so a chatty handler is held to the client's pace.
    """

    def __init__(self, writer: asyncio.StreamWriter, loop: asyncio.AbstractEventLoop) -> None:
        self._writer = writer
        self._loop = loop

    def write_line(self, text: object = "") -> None:
        lines = str(text).splitlines() or [""]
        for line in lines:
            self._write(encode_line(line))

    def _write(self, data: bytes) -> None:
        if self._on_loop():
            self._writer.write(data)
        else:
            asyncio.run_coroutine_threadsafe(self._write_and_drain(data), self._loop).result()

    async def _write_and_drain(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    async def drain(self) -> None:
        await self._writer.drain()
