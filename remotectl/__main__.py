"""Run the control server with the demo handlers: ``python -m remotectl``."""

from __future__ import annotations

import asyncio
import logging

from .config import get_server_config
from .demo import DemoApplication, register_demo_handlers
from .server import RemoteControlServer

logger = logging.getLogger("remotectl")


async def run() -> None:
    server = RemoteControlServer(get_server_config())
    app = DemoApplication()
    register_demo_handlers(server, app)
    await server.start()
    try:
        await app.stopped.wait()
        logger.info("shutdown requested by a remote client")
    finally:
        await server.shutdown()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("interrupted")


if __name__ == "__main__":
    main()
