"""Periodic ingestion of phone uploads into the capture session."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from services.broker_client import BrokerClient
from services.capture_session import CaptureSessionStore

LOGGER = logging.getLogger(__name__)

PHONE_UPLOAD_METADATA = {"url": "phone-upload", "title": "Phone Upload"}


class UploadPoller:
    """Poll one broker session and copy new images into the capture store.

    Only one broker session is followed at a time; `start` on a new id stops
    the previous loop. A failed tick (transport error, malformed response) is
    logged and skipped; the next tick retries from the first image not yet
    ingested.
    """

    def __init__(
        self,
        client: BrokerClient,
        store: CaptureSessionStore,
        interval: float = 2.0,
        on_ingest: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        """
        Args:
            client: Broker client used for info and image requests.
            store: Capture store the images are added to.
            interval: Seconds between ticks.
            on_ingest: Awaited after a tick that added images, e.g. to persist the store.
        """
        self.client = client
        self.store = store
        self.interval = interval
        self.on_ingest = on_ingest
        self.session_id: Optional[str] = None
        self.ingested = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, session_id: str) -> None:
        await self.stop()
        self.session_id = session_id
        self.ingested = 0
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"upload-poller-{session_id}")
        LOGGER.info("Polling upload session %s every %.1fs", session_id, self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            LOGGER.exception("Upload poller for %s had already failed", self.session_id)
        LOGGER.info("Stopped polling upload session %s", self.session_id)

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except httpx.HTTPError as exc:
                LOGGER.warning("Upload poll for %s failed, retrying next tick: %s", self.session_id, exc)
            except Exception:
                LOGGER.exception("Upload poll for %s failed, retrying next tick", self.session_id)
            await asyncio.sleep(self.interval)

    async def poll_once(self) -> int:
        """Ingest images added since the last tick and return how many were new."""
        info = await self.client.get_info(self.session_id)
        available = int(info.get("imageCount") or 0)
        start = self.ingested
        try:
            for index in range(start, available):
                image = await self.client.get_image(self.session_id, index)
                data_url = image.get("dataUrl")
                if data_url:
                    result = self.store.add_image(data_url, PHONE_UPLOAD_METADATA)
                    if not result.success:
                        LOGGER.warning("Phone upload %d not added: %s", index, result.error.value)
                self.ingested = index + 1
        finally:
            # Images added before a failed fetch are still saved.
            if self.ingested > start and self.on_ingest is not None:
                await self.on_ingest()
        return self.ingested - start
