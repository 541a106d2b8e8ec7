"""Capture session state machine.

The store owns one session at a time (`idle -> active <-> paused -> idle`),
its ordered image ids and the byte/count bookkeeping. Every operation is
synchronous and returns a `StoreResult`; failures carry an `ErrorCode` and
leave the store untouched.

Images live in a `BlobStore`; the most recent deletion is parked in an
`UndoBuffer`. Accepted images are handed to the recognition queue without
waiting for it.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from models.capture_models import (
    MEMORY_WARNING,
    CapturedImage,
    CaptureSession,
    CaptureSnapshot,
    ErrorCode,
    SessionStatus,
    StoreResult,
)
from services.blob_store import BlobStore
from services.document_exporter import DocumentExporter, sanitize_filename
from services.recognition.queue import RecognitionQueue
from services.thumbnail_generator import ThumbnailGenerator
from services.undo_buffer import UndoBuffer
from utils.media_validation import coerce_image_payload
from utils.settings import Settings

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "Untitled Session"


class CaptureSessionStore:
    """In-memory capture session with blob, undo and recognition wiring.

    Args:
        max_images: Largest number of images one session may hold.
        memory_limit: Largest cumulative image size (bytes) one session may hold.
        warning_threshold: Fraction of `memory_limit` above which adds carry MEMORY_WARNING.
        undo_timeout: Seconds a deleted image can be restored.
        recognition: Queue receiving each accepted image; None skips recognition.
        exporter: PDF exporter used by `export_document`.
        thumbnails: Thumbnail generator used by `get_thumbnails`.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        max_images: int = 100,
        memory_limit: int = 200 * 1024 * 1024,
        warning_threshold: float = 0.8,
        undo_timeout: float = 5.0,
        recognition: Optional[RecognitionQueue] = None,
        exporter: Optional[DocumentExporter] = None,
        thumbnails: Optional[ThumbnailGenerator] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_images = max_images
        self.memory_limit = memory_limit
        self.warning_threshold = warning_threshold
        self.recognition = recognition
        self.exporter = exporter or DocumentExporter()
        self.thumbnails = thumbnails or ThumbnailGenerator()
        self._clock = clock
        self.blobs = BlobStore()
        self.undo = UndoBuffer(timeout=undo_timeout, clock=clock)
        self._session: Optional[CaptureSession] = None

    @classmethod
    def from_settings(cls, settings: Settings, recognition: Optional[RecognitionQueue] = None) -> "CaptureSessionStore":
        return cls(
            max_images=settings.max_images,
            memory_limit=settings.memory_limit,
            warning_threshold=settings.memory_warning_threshold,
            undo_timeout=settings.undo_timeout,
            recognition=recognition,
            exporter=DocumentExporter(
                margin=settings.page_margin,
                min_page_size=settings.min_page_size,
                min_word_box=settings.min_word_box,
            ),
        )

    # Lifecycle

    def get_session(self) -> Optional[CaptureSession]:
        return self._session.copy() if self._session is not None else None

    def start(self, name: Optional[str] = None) -> StoreResult:
        """Open a fresh active session unless one is active or paused."""
        current = self._session
        if current is not None and current.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
            return StoreResult.fail(ErrorCode.SESSION_ACTIVE, current.copy())

        # An ended session's images go away with it.
        self._discard_all()
        self._session = CaptureSession(
            id=uuid.uuid4().hex,
            name=(name or "").strip() or DEFAULT_SESSION_NAME,
            status=SessionStatus.ACTIVE,
            created_at=self._clock(),
        )
        LOGGER.info("Started capture session %s (%s)", self._session.id, self._session.name)
        return StoreResult(session=self._session.copy())

    def force_start(self, name: Optional[str] = None) -> StoreResult:
        """Discard whatever session exists, then start a new one."""
        if self._session is not None:
            LOGGER.info("Discarding capture session %s for a forced restart", self._session.id)
        self._discard_all()
        return self.start(name)

    def end(self) -> StoreResult:
        if self._session is None:
            return StoreResult.fail(ErrorCode.NO_SESSION)
        self._session.status = SessionStatus.IDLE
        return StoreResult(session=self._session.copy())

    def clear(self) -> StoreResult:
        """Free the session, its images and the undo buffer."""
        self._discard_all()
        return StoreResult()

    def pause(self) -> StoreResult:
        if self._session is None:
            return StoreResult.fail(ErrorCode.NO_SESSION)
        if self._session.status != SessionStatus.ACTIVE:
            return StoreResult.fail(ErrorCode.NOT_ACTIVE, self._session.copy())
        self._session.status = SessionStatus.PAUSED
        return StoreResult(session=self._session.copy())

    def resume(self) -> StoreResult:
        if self._session is None:
            return StoreResult.fail(ErrorCode.NO_SESSION)
        if self._session.status != SessionStatus.PAUSED:
            return StoreResult.fail(ErrorCode.NOT_PAUSED, self._session.copy())
        self._session.status = SessionStatus.ACTIVE
        return StoreResult(session=self._session.copy())

    # Images

    def add_image(
        self,
        payload: Union[bytes, str],
        metadata: Optional[Mapping[str, Any]] = None,
        mime_type: str = "image/png",
    ) -> StoreResult:
        """Store a captured image and queue it for recognition.

        `payload` is raw bytes or a `data:` URL; its size is the decoded
        byte length. `metadata` may carry `url` and `title`.
        """
        session = self._session
        if session is None or session.status != SessionStatus.ACTIVE:
            return StoreResult.fail(ErrorCode.NO_ACTIVE_SESSION)
        if session.image_count >= self.max_images:
            return StoreResult.fail(ErrorCode.MAX_REACHED)

        try:
            data, mime = coerce_image_payload(payload, mime_type)
        except ValueError as exc:
            LOGGER.warning("Rejected capture payload: %s", exc)
            return StoreResult.fail(ErrorCode.INVALID_PAYLOAD)

        size = len(data)
        if session.memory_usage + size > self.memory_limit:
            return StoreResult.fail(ErrorCode.MEMORY_LIMIT_REACHED)

        metadata = metadata or {}
        image = CapturedImage(
            id=uuid.uuid4().hex,
            data=data,
            mime_type=mime,
            captured_at=self._clock(),
            source_url=str(metadata.get("url") or ""),
            source_title=str(metadata.get("title") or ""),
            size=size,
        )
        self.blobs.put(image)
        session.image_ids.append(image.id)
        session.image_count += 1
        session.memory_usage += size

        warning = None
        if session.memory_usage > self.memory_limit * self.warning_threshold:
            warning = MEMORY_WARNING

        self._submit_recognition(image)
        return StoreResult(
            session=session.copy(),
            image_id=image.id,
            count=session.image_count,
            memory_usage=session.memory_usage,
            warning=warning,
        )

    def delete_last(self) -> StoreResult:
        if self._session is None:
            return StoreResult.fail(ErrorCode.NO_SESSION)
        if not self._session.image_ids:
            return StoreResult.fail(ErrorCode.NOTHING_TO_DELETE)
        return self._delete(len(self._session.image_ids) - 1)

    def delete_at(self, index: int) -> StoreResult:
        if self._session is None:
            return StoreResult.fail(ErrorCode.NO_SESSION)
        if not self._session.image_ids:
            return StoreResult.fail(ErrorCode.NOTHING_TO_DELETE)
        if index < 0 or index >= len(self._session.image_ids):
            return StoreResult.fail(ErrorCode.INVALID_INDEX)
        return self._delete(index)

    def _delete(self, index: int) -> StoreResult:
        session = self._session
        image_id = session.image_ids[index]
        image = self.blobs.get(image_id)
        if image is not None:
            self.undo.hold(image, session.copy())
        else:
            self.undo.clear()

        del session.image_ids[index]
        session.image_count = max(0, session.image_count - 1)
        session.memory_usage = max(0, session.memory_usage - (image.size if image else 0))
        self.blobs.remove(image_id)
        return StoreResult(
            session=session.copy(),
            image_id=image_id,
            count=session.image_count,
            memory_usage=session.memory_usage,
        )

    def undo_delete(self) -> StoreResult:
        """Put the last deleted image back at the end of the list."""
        entry = self.undo.peek()
        if entry is None:
            return StoreResult.fail(ErrorCode.NOTHING_TO_UNDO)
        if self.undo.is_expired():
            self.undo.clear()
            return StoreResult.fail(ErrorCode.UNDO_EXPIRED)

        session = self._session
        if session is None or session.id != entry.session_snapshot.id:
            self.undo.clear()
            return StoreResult.fail(ErrorCode.NO_SESSION)

        image = entry.image
        # Captures made since the delete may have filled the session.
        if len(session.image_ids) >= self.max_images:
            return StoreResult.fail(ErrorCode.MAX_REACHED, session.copy())
        if session.memory_usage + image.size > self.memory_limit:
            return StoreResult.fail(ErrorCode.MEMORY_LIMIT_REACHED, session.copy())
        self.blobs.put(image)
        session.image_ids.append(image.id)
        session.image_count = len(session.image_ids)
        session.memory_usage += image.size
        self.undo.clear()

        if not image.annotation.attempted:
            self._submit_recognition(image)
        return StoreResult(
            session=session.copy(),
            image_id=image.id,
            count=session.image_count,
            memory_usage=session.memory_usage,
        )

    def get_images(self) -> List[CapturedImage]:
        if self._session is None:
            return []
        return self.blobs.get_many(self._session.image_ids)

    def get_thumbnails(self) -> List[Dict[str, Any]]:
        """Thumbnail data URLs with source metadata, in session order."""
        thumbs: List[Dict[str, Any]] = []
        for image in self.get_images():
            try:
                thumbnail = self.thumbnails.create_thumbnail_data_url(image.data)
            except ValueError as exc:
                LOGGER.warning("Thumbnail failed for image %s: %s", image.id, exc)
                thumbnail = None
            thumbs.append(
                {
                    "id": image.id,
                    "thumbnail": thumbnail,
                    "timestamp": image.captured_at,
                    "url": image.source_url,
                    "title": image.source_title,
                    "hasText": bool(image.annotation.text),
                }
            )
        return thumbs

    def get_memory_status(self) -> Dict[str, Any]:
        usage = self._session.memory_usage if self._session is not None else 0
        percent = usage / self.memory_limit if self.memory_limit else 0.0
        return {
            "usage": usage,
            "limit": self.memory_limit,
            "percent": percent,
            "warning": percent >= self.warning_threshold,
            "blocked": percent >= 1,
        }

    # Export

    def export_document(self, filename_override: Optional[str] = None) -> StoreResult:
        """Render the session to PDF.

        Blocking; async callers should run it in a worker thread.
        """
        session = self._session
        if session is None:
            return StoreResult.fail(ErrorCode.NO_SESSION)
        if session.image_count == 0:
            return StoreResult.fail(ErrorCode.NO_SCREENSHOTS, session.copy())

        document = self.exporter.generate(self.get_images(), title=session.name)
        if filename_override and filename_override.strip():
            document.filename = sanitize_filename(filename_override.removesuffix(".pdf"))
        LOGGER.info(
            "Exported session %s: %d pages, %d skipped", session.id, document.page_count, len(document.skipped)
        )
        return StoreResult(session=session.copy(), document=document)

    # Persistence

    def snapshot(self) -> CaptureSnapshot:
        return CaptureSnapshot(
            session=self.get_session(),
            images=self.get_images(),
            undo=self.undo.peek(),
        )

    def restore(self, snapshot: CaptureSnapshot) -> None:
        """Replace all state with `snapshot`, requeueing images never recognized."""
        self._discard_all()
        if snapshot.session is None:
            return
        session = snapshot.session.copy()
        by_id = {image.id: image for image in snapshot.images}
        # Ids whose payload did not survive are dropped so the counters stay exact.
        session.image_ids = [image_id for image_id in session.image_ids if image_id in by_id]
        for image_id in session.image_ids:
            self.blobs.put(by_id[image_id])
        session.image_count = len(session.image_ids)
        session.memory_usage = sum(by_id[image_id].size for image_id in session.image_ids)
        self._session = session
        self.undo.restore_entry(snapshot.undo)

        for image in self.get_images():
            if not image.annotation.attempted:
                self._submit_recognition(image)

    # Internals

    def _discard_all(self) -> None:
        self.blobs.clear()
        self.undo.clear()
        self._session = None

    def _submit_recognition(self, image: CapturedImage) -> None:
        if self.recognition is not None:
            self.recognition.submit(self.blobs, image.id)
