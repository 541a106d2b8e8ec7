"""Serialized background text recognition.

One worker task pulls recognition jobs from an `asyncio.Queue` in
submission order, so the shared recognition backend never sees more than one
call at a time no matter how many captures arrive. A timed-out call is
cancelled and the worker waits for the engine to wind it down before taking
the next job. Jobs name their target by a stable key and resolve it only
when they run; results for targets that disappeared in the meantime are
dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Hashable, Optional, Protocol

from models.capture_models import RecognitionAnnotation
from services.recognition.engine import RecognitionEngine, run_blocking
from services.recognition.image_prep import prepare_for_recognition

LOGGER = logging.getLogger(__name__)


class RecognitionTarget(Protocol):
    """Where a recognition job reads its image and writes its annotation."""

    def load_recognition_payload(self, key) -> Optional[bytes]:
        ...

    def store_recognition(self, key, annotation: RecognitionAnnotation) -> bool:
        ...


@dataclass
class RecognitionJob:
    target: RecognitionTarget
    key: Hashable


class RecognitionQueue:
    """Single-consumer queue in front of a recognition engine.

    Args:
        engine: Backend used for every job; None disables recognition.
        timeout: Seconds allowed for one engine call before it is abandoned.
        min_dimension: Shorter-side floor applied before recognition.
    """

    def __init__(
        self,
        engine: Optional[RecognitionEngine],
        timeout: float = 30.0,
        min_dimension: int = 1000,
    ) -> None:
        self.engine = engine
        self.timeout = timeout
        self.min_dimension = min_dimension
        self._queue: "asyncio.Queue[RecognitionJob]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self.in_flight = 0

    @property
    def enabled(self) -> bool:
        return self.engine is not None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker on the running event loop (idempotent)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="recognition-worker")

    async def stop(self) -> None:
        """Cancel the worker; queued jobs are discarded."""
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        if self.engine is not None:
            await self.engine.aclose()

    async def join(self) -> None:
        """Wait until every submitted job has been processed."""
        await self._queue.join()

    def submit(self, target: RecognitionTarget, key: Hashable) -> bool:
        """Queue a job without waiting for it. Returns False when recognition is disabled."""
        if self.engine is None:
            return False
        self._queue.put_nowait(RecognitionJob(target=target, key=key))
        return True

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            except Exception:
                # A broken target must not stall the jobs behind it.
                LOGGER.exception("Recognition job for %r failed unexpectedly", job.key)
            finally:
                self._queue.task_done()

    async def _process(self, job: RecognitionJob) -> None:
        payload = job.target.load_recognition_payload(job.key)
        if payload is None:
            LOGGER.debug("Recognition target %r no longer exists; skipping", job.key)
            return

        self.in_flight += 1
        try:
            annotation = await self._recognize(payload, job.key)
        finally:
            self.in_flight -= 1

        job.target.store_recognition(job.key, annotation)

    async def _recognize(self, payload: bytes, key: Hashable) -> RecognitionAnnotation:
        try:
            prepared = await run_blocking(prepare_for_recognition, payload, self.min_dimension)
            result = await asyncio.wait_for(
                self.engine.recognize(prepared.png, prepared.width, prepared.height),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Recognition for %r timed out after %.1fs", key, self.timeout)
            return RecognitionAnnotation.failed()
        except Exception as exc:
            LOGGER.warning("Recognition for %r failed: %s", key, exc)
            return RecognitionAnnotation.failed()

        return RecognitionAnnotation(
            text=result.text or "",
            words=list(result.words),
            source_width=prepared.width,
            source_height=prepared.height,
            attempted=True,
        )
