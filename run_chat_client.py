"""Standalone script to chat with a running WebBot server from the terminal.

Start the server first:
    uvicorn webbot.main:app --port 8787

Then run:
    python run_chat_client.py
"""

import asyncio
import logging
import sys

import httpx

from webbot.client.cli import TerminalChat
from webbot.client.controller import ChatController
from webbot.client.health import HealthMonitor
from webbot.client.store import SessionStore
from webbot.config import settings

# Log to a file so the conversation output stays readable
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.FileHandler("webbot_client.log")],
)

logger = logging.getLogger(__name__)


async def main():
    """Run the terminal chat client."""
    logger.info("Starting WebBot terminal client against %s", settings.api_url)

    # The agent may run for minutes before the first frame arrives
    timeout = httpx.Timeout(None, connect=10.0)
    async with httpx.AsyncClient(timeout=timeout) as client:
        health = HealthMonitor(
            client,
            settings.health_url,
            timeout=settings.health_timeout,
            interval=settings.health_interval,
        )
        controller = ChatController(client, SessionStore(settings.store_path), health=health)
        await controller.start()
        try:
            await TerminalChat(controller).run()
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            sys.exit(1)
        finally:
            await controller.aclose()
            logger.info("Client shut down cleanly")


if __name__ == "__main__":
    asyncio.run(main())
