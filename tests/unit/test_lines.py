"""Unit tests for CRLF framing helpers."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from remotectl.transport.lines import LineSink, decode_line, encode_line, tokenize


class TestFraming:
    @pytest.mark.parametrize("raw", [b"id jim\r\n", b"id jim\n", b"id jim"])
    def test_decode_tolerates_lf_only(self, raw):
        assert decode_line(raw) == "id jim"

    def test_encode_appends_crlf(self):
        assert encode_line("CONNECTED") == b"CONNECTED\r\n"

    def test_tokenize_lowercases_command_only(self):
        assert tokenize("ID Jim") == ("id", ["Jim"])
        assert tokenize("#  sayHello   a  b") == ("#", ["sayHello", "a", "b"])

    @pytest.mark.parametrize("line", ["", "   ", "\t"])
    def test_tokenize_blank_lines(self, line):
        assert tokenize(line) == (None, [])


class TestLineSink:
    @pytest.mark.asyncio
    async def test_writes_on_the_loop_directly(self):
        writer = MagicMock()
        sink = LineSink(writer, asyncio.get_running_loop())

        sink.write_line("Hello")
        sink.write_line("a\nb")
        sink.write_line()

        assert [call.args[0] for call in writer.write.call_args_list] == [
            b"Hello\r\n",
            b"a\r\n",
            b"b\r\n",
            b"\r\n",
        ]

    @pytest.mark.asyncio
    async def test_writes_from_worker_threads_keep_order(self):
        writer = MagicMock()
        writer.drain = AsyncMock()
        sink = LineSink(writer, asyncio.get_running_loop())

        def produce():
            assert threading.current_thread() is not threading.main_thread()
            for i in range(5):
                sink.write_line(f"line:{i}")

        await asyncio.to_thread(produce)

        assert [call.args[0] for call in writer.write.call_args_list] == [
            f"line:{i}\r\n".encode() for i in range(5)
        ]
        assert writer.drain.await_count == 5

    @pytest.mark.asyncio
    async def test_worker_thread_waits_for_each_drain(self):
        writer = MagicMock()
        release = asyncio.Event()
        writer.drain = AsyncMock(side_effect=release.wait)
        sink = LineSink(writer, asyncio.get_running_loop())

        worker = asyncio.ensure_future(asyncio.to_thread(sink.write_line, "blocked"))
        await asyncio.sleep(0.05)
        assert not worker.done()
        assert writer.write.call_count == 1

        release.set()
        await asyncio.wait_for(worker, 1.0)
