"""Backend liveness polling for the online/offline indicator."""

import asyncio
import logging
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class BackendStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    CHECKING = "checking"


class HealthMonitor:
    """Polls the health endpoint with its own short timeout."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        timeout: float = 5.0,
        interval: float = 30.0,
    ) -> None:
        self._client = client
        self._url = url
        self._timeout = timeout
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self.status = BackendStatus.CHECKING

    async def check(self) -> BackendStatus:
        try:
            response = await self._client.get(self._url, timeout=self._timeout)
            response.raise_for_status()
            status = BackendStatus.ONLINE
        except httpx.HTTPError as exc:
            logger.debug("Health check against %s failed: %s", self._url, exc)
            status = BackendStatus.OFFLINE

        if status != self.status:
            logger.info("Backend is now %s", status.value)
        self.status = status
        return status

    async def _poll(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._poll())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.wait({self._task})
        self._task = None
