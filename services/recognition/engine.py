"""Recognition engine interface shared by the OpenAI and tesseract backends."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, TypeVar

from models.capture_models import RecognizedWord

T = TypeVar("T")


class RecognitionError(RuntimeError):
    """Raised by an engine when the backend returns no usable result."""


@dataclass
class RecognitionResult:
    text: str
    words: List[RecognizedWord] = field(default_factory=list)


class RecognitionEngine(ABC):
    """
    Interface for text recognition backends.

    Engines receive a PNG already prepared for recognition together with its
    pixel size, and must report word boxes in that same pixel space.

    Cancelling `recognize` must stop the backend call before the coroutine
    returns; the recognition queue relies on this to keep one call in flight.
    Blocking work goes through `run_blocking`.
    """

    name = "engine"

    @abstractmethod
    async def recognize(self, image_png: bytes, width: int, height: int) -> RecognitionResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release backend resources; most engines hold none."""
        return None


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run `func` in a worker thread and hold cancellation until it returns.

    A thread cannot be interrupted, so a cancelled caller waits for it to
    finish before the cancellation propagates.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.gather(task, return_exceptions=True)
        raise
