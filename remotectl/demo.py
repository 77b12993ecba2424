"""Sample host application exposing a few methods over the control channel."""

from __future__ import annotations

import asyncio
from typing import Sequence

from .registry import OutputSink
from .server import RemoteControlServer


class DemoApplication:
    def __init__(self) -> None:
        self.stopped = asyncio.Event()

    def say_hello(self, sink: OutputSink, args: Sequence[str]) -> None:
        sink.write_line("Hello")

    def stream_text(self, sink: OutputSink, args: Sequence[str]) -> None:
        for i in range(10):
            sink.write_line(f"line:{i}")
        sink.write_line("args, if any:")
        for arg in args:
            sink.write_line(arg)

    async def shutdown(self, sink: OutputSink, args: Sequence[str]) -> None:
        self.stopped.set()


def register_demo_handlers(server: RemoteControlServer, app: DemoApplication) -> None:
    server.register_method(app, "say_hello", "sayHello")
    server.register_method(app, "stream_text", "streamText")
    server.register_method(app, "shutdown")
