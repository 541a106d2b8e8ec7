"""Async Data Access Layer for the persisted capture session.

Provides CaptureSessionDAL, which keeps the CAPTURE_SESSION, CAPTURE_IMAGE
and UNDO_BUFFER tables in step with a `CaptureSnapshot` and reads it back.
Compatible with `utils.database_init.AsyncDatabaseInitializer`.
"""

from __future__ import annotations

import json
from typing import Optional, Sequence

import aiosqlite

from models.capture_models import (
    CapturedImage,
    CaptureSession,
    CaptureSnapshot,
    RecognitionAnnotation,
    UndoEntry,
)
from utils.database_init import AsyncDatabaseInitializer


class CaptureSessionDAL:
    """Data access layer for the single capture session.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).
    """

    _IMAGE_COLUMNS = (
        "id",
        "position",
        "data",
        "mime_type",
        "captured_at",
        "source_url",
        "source_title",
        "size",
        "annotation",
    )
    _IMAGE_COLUMN_LIST = ", ".join(_IMAGE_COLUMNS)

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def save(self, snapshot: CaptureSnapshot) -> None:
        """Bring the stored state in line with `snapshot` in one transaction.

        An image's bytes are written once, when it first appears. Later saves
        only move positions, refresh annotations and drop rows for images
        that are gone.
        """
        session = snapshot.session
        images = snapshot.images if session is not None else []
        async with self._db.connection() as conn:
            cur = await conn.execute("SELECT id FROM CAPTURE_IMAGE")
            stored = {row[0] for row in await cur.fetchall()}
            wanted = {image.id for image in images}

            await conn.executemany(
                "DELETE FROM CAPTURE_IMAGE WHERE id = ?",
                [(image_id,) for image_id in stored - wanted],
            )
            await conn.executemany(
                "UPDATE CAPTURE_IMAGE SET position = ?, annotation = ? WHERE id = ?",
                [
                    (position, json.dumps(image.annotation.to_dict()), image.id)
                    for position, image in enumerate(images)
                    if image.id in stored
                ],
            )
            await conn.executemany(
                f"INSERT INTO CAPTURE_IMAGE ({self._IMAGE_COLUMN_LIST}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    self._image_params(image, position)
                    for position, image in enumerate(images)
                    if image.id not in stored
                ],
            )

            await conn.execute("DELETE FROM CAPTURE_SESSION")
            if session is not None:
                await conn.execute(
                    "INSERT INTO CAPTURE_SESSION (id, name, status, created_at, image_count, memory_usage) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        session.id,
                        session.name,
                        session.status.value,
                        session.created_at,
                        session.image_count,
                        session.memory_usage,
                    ),
                )

            await self._save_undo(conn, snapshot.undo)
            await conn.commit()

    async def _save_undo(self, conn: aiosqlite.Connection, undo: Optional[UndoEntry]) -> None:
        cur = await conn.execute("SELECT image_id, removed_at FROM UNDO_BUFFER WHERE slot = 1")
        row = await cur.fetchone()
        if undo is not None and row is not None and tuple(row) == (undo.image.id, undo.removed_at):
            return

        await conn.execute("DELETE FROM UNDO_BUFFER")
        if undo is None:
            return
        image = undo.image
        await conn.execute(
            "INSERT INTO UNDO_BUFFER (slot, image_id, data, mime_type, captured_at, source_url, "
            "source_title, size, annotation, session_snapshot, removed_at) "
            "VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                image.id,
                image.data,
                image.mime_type,
                image.captured_at,
                image.source_url,
                image.source_title,
                image.size,
                json.dumps(image.annotation.to_dict()),
                json.dumps(undo.session_snapshot.to_dict()),
                undo.removed_at,
            ),
        )

    async def load(self) -> CaptureSnapshot:
        """Return the stored snapshot; an empty one when nothing was saved."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, name, status, created_at, image_count, memory_usage FROM CAPTURE_SESSION LIMIT 1"
            )
            session_row = await cur.fetchone()
            cur = await conn.execute(f"SELECT {self._IMAGE_COLUMN_LIST} FROM CAPTURE_IMAGE ORDER BY position")
            image_rows = await cur.fetchall()
            cur = await conn.execute(
                "SELECT image_id, data, mime_type, captured_at, source_url, source_title, size, annotation, "
                "session_snapshot, removed_at FROM UNDO_BUFFER WHERE slot = 1"
            )
            undo_row = await cur.fetchone()

        images = [self._row_to_image(row[0], row[2:]) for row in image_rows]
        session: Optional[CaptureSession] = None
        if session_row:
            session = CaptureSession.from_dict(
                {
                    "id": session_row[0],
                    "name": session_row[1],
                    "status": session_row[2],
                    "created_at": session_row[3],
                    "image_ids": [image.id for image in images],
                    "image_count": session_row[4],
                    "memory_usage": session_row[5],
                }
            )

        undo: Optional[UndoEntry] = None
        if undo_row:
            undo = UndoEntry(
                image=self._row_to_image(undo_row[0], undo_row[1:8]),
                session_snapshot=CaptureSession.from_dict(json.loads(undo_row[8])),
                removed_at=undo_row[9],
            )
        return CaptureSnapshot(session=session, images=images, undo=undo)

    @staticmethod
    def _image_params(image: CapturedImage, position: int) -> tuple:
        return (
            image.id,
            position,
            image.data,
            image.mime_type,
            image.captured_at,
            image.source_url,
            image.source_title,
            image.size,
            json.dumps(image.annotation.to_dict()),
        )

    @staticmethod
    def _row_to_image(image_id: str, row: Sequence[object]) -> CapturedImage:
        """Build a CapturedImage from (data, mime, captured_at, url, title, size, annotation)."""
        annotation = json.loads(row[6]) if row[6] else None
        return CapturedImage(
            id=image_id,
            data=bytes(row[0]),
            mime_type=row[1],
            captured_at=row[2],
            source_url=row[3] or "",
            source_title=row[4] or "",
            size=row[5],
            annotation=RecognitionAnnotation.from_dict(annotation),
        )