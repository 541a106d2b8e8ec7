import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

LOGGER = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS CAPTURE_SESSION (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at REAL NOT NULL,
        image_count INTEGER NOT NULL DEFAULT 0,
        memory_usage INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS CAPTURE_IMAGE (
        id TEXT PRIMARY KEY,
        position INTEGER NOT NULL,
        data BLOB NOT NULL,
        mime_type TEXT NOT NULL,
        captured_at REAL NOT NULL,
        source_url TEXT,
        source_title TEXT,
        size INTEGER NOT NULL,
        annotation TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS UNDO_BUFFER (
        slot INTEGER PRIMARY KEY CHECK (slot = 1),
        image_id TEXT NOT NULL,
        data BLOB NOT NULL,
        mime_type TEXT NOT NULL,
        captured_at REAL NOT NULL,
        source_url TEXT,
        source_title TEXT,
        size INTEGER NOT NULL,
        annotation TEXT,
        session_snapshot TEXT NOT NULL,
        removed_at REAL NOT NULL
    )
    """,
)


class AsyncDatabaseInitializer:
    """
    Manage the async SQLite database that persists the capture session.

    - The database file is located at: <database_dir>/app.db, where
      `database_dir` defaults to the DATABASE_DIR environment variable.
    - A RuntimeError is raised if no directory is configured or it is
      invalid (not a directory and cannot be created).
    - The first `ensure_database()` call on an instance creates the
      CAPTURE_SESSION, CAPTURE_IMAGE and UNDO_BUFFER tables if missing.
      Existing data is kept so a restarted process can reload its session.
    """

    def __init__(self, database_dir: Optional[Path | str] = None) -> None:
        raw_dir = str(database_dir) if database_dir is not None else os.getenv("DATABASE_DIR")

        if raw_dir is None or not raw_dir.strip():
            raise RuntimeError(
                "DATABASE_DIR environment variable must be set to a writable "
                "directory path where the SQLite database file will be stored."
            )

        db_dir = Path(raw_dir).expanduser()

        if db_dir.exists() and not db_dir.is_dir():
            raise RuntimeError(
                f"DATABASE_DIR={raw_dir!r} points to a file, not a directory "
                f"({db_dir}). Please set DATABASE_DIR to a directory path."
            )

        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(
                f"Failed to create or access database directory at {db_dir}"
            ) from exc

        self.db_dir = db_dir
        self.db_path = self.db_dir / "app.db"
        self._initialized = False

    async def ensure_database(self) -> None:
        """Create the schema on first use; later calls are no-ops."""
        if self._initialized:
            return

        max_attempts = 3
        for attempt in range(1, max_attempts + 1):
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    for statement in _SCHEMA:
                        await db.execute(statement)
                    await db.commit()
                break
            except FileNotFoundError:
                # On some platforms a transient missing file error may occur; retry a few times.
                if attempt >= max_attempts:
                    raise
                await asyncio.sleep(0.1 * attempt)

        LOGGER.info("Capture database ready at %s", self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Async context manager yielding an `aiosqlite.Connection`.

        The schema is created on first use via `ensure_database()`.
        """
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            yield conn
        finally:
            await conn.close()
