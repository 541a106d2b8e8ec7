"""Single-slot, time-bounded holder for the most recently deleted image."""

from __future__ import annotations

import time
from typing import Callable, Optional

from models.capture_models import CapturedImage, CaptureSession, UndoEntry


class UndoBuffer:
    """Keep at most one deleted image; each new deletion overwrites it."""

    def __init__(self, timeout: float = 5.0, clock: Callable[[], float] = time.time) -> None:
        self.timeout = timeout
        self._clock = clock
        self._entry: Optional[UndoEntry] = None

    def hold(self, image: CapturedImage, session_snapshot: CaptureSession) -> UndoEntry:
        self._entry = UndoEntry(image=image, session_snapshot=session_snapshot, removed_at=self._clock())
        return self._entry

    def peek(self) -> Optional[UndoEntry]:
        return self._entry

    def is_expired(self) -> bool:
        if self._entry is None:
            return False
        return self._clock() - self._entry.removed_at >= self.timeout

    def clear(self) -> None:
        self._entry = None

    def restore_entry(self, entry: Optional[UndoEntry]) -> None:
        """Reinstate an entry loaded from persistence."""
        self._entry = entry
