"""Runtime configuration read from environment variables.

`main.py` loads a `.env` file (if present) before calling
`Settings.from_env()`, so every value below can be set either way.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

MB = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    """Limits, timeouts and collaborator endpoints for one process.

    Attributes:
        max_images: Cap on images in one capture session.
        memory_limit: Cap on cumulative image bytes in one capture session.
        memory_warning_threshold: Fraction of `memory_limit` that triggers MEMORY_WARNING.
        undo_timeout: Seconds a deleted image stays restorable.
        page_margin: Margin (PDF points) around each exported image.
        min_page_size: Smallest exported page (width, height); A4 by default.
        min_word_box: Word boxes thinner or shorter than this (points) are dropped.
        recognition_engine: One of "openai", "tesseract" or "none".
        recognition_timeout: Seconds allowed for one recognition call.
        min_recognition_dimension: Shorter image side is upscaled to at least this.
        tesseract_language: Language passed to the tesseract CLI.
        openai_model: Model used by the OpenAI recognition engine.
        broker_max_sessions: Concurrent upload sessions the broker holds.
        broker_retention: Seconds an upload session's data is kept.
        upload_window: Seconds an upload session accepts new images.
        upload_max_bytes: Largest accepted phone upload.
        cleanup_interval: Seconds between broker eviction sweeps.
        poll_interval: Seconds between poller ticks on the controlling device.
        broker_timeout: Client timeout (seconds) for broker HTTP calls.
        broker_url: Base URL of the upload broker the poller talks to.
        base_url: Public base URL used to build phone upload links.
        database_dir: Directory holding app.db and the broker snapshot.
    """

    max_images: int = 100
    memory_limit: int = 200 * MB
    memory_warning_threshold: float = 0.8
    undo_timeout: float = 5.0
    page_margin: float = 20.0
    min_page_size: Tuple[float, float] = (595.0, 842.0)
    min_word_box: float = 1.0
    recognition_engine: str = "openai"
    recognition_timeout: float = 30.0
    min_recognition_dimension: int = 1000
    tesseract_language: str = "eng"
    openai_model: str = "gpt-5"
    broker_max_sessions: int = 100
    broker_retention: float = 7 * 24 * 60 * 60
    upload_window: float = 3 * 60
    upload_max_bytes: int = 10 * MB
    cleanup_interval: float = 5 * 60
    poll_interval: float = 2.0
    broker_timeout: float = 10.0
    broker_url: str = "http://localhost:8000"
    base_url: Optional[str] = None
    database_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment, falling back to defaults."""
        defaults = cls()
        engine = (_env_str("RECOGNITION_ENGINE", defaults.recognition_engine) or "").lower()
        if engine not in ("openai", "tesseract", "none"):
            raise RuntimeError(
                f"RECOGNITION_ENGINE must be one of openai, tesseract, none (got {engine!r})"
            )
        return cls(
            max_images=_env_int("MAX_IMAGES", defaults.max_images),
            memory_limit=_env_int("MEMORY_LIMIT_MB", defaults.memory_limit // MB) * MB,
            memory_warning_threshold=_env_float("MEMORY_WARNING_THRESHOLD", defaults.memory_warning_threshold),
            undo_timeout=_env_float("UNDO_TIMEOUT_SECONDS", defaults.undo_timeout),
            page_margin=_env_float("PDF_PAGE_MARGIN", defaults.page_margin),
            min_word_box=_env_float("PDF_MIN_WORD_BOX", defaults.min_word_box),
            recognition_engine=engine,
            recognition_timeout=_env_float("RECOGNITION_TIMEOUT_SECONDS", defaults.recognition_timeout),
            min_recognition_dimension=_env_int("MIN_RECOGNITION_DIMENSION", defaults.min_recognition_dimension),
            tesseract_language=_env_str("TESSERACT_LANGUAGE", defaults.tesseract_language),
            openai_model=_env_str("OPENAI_MODEL", defaults.openai_model),
            broker_max_sessions=_env_int("BROKER_MAX_SESSIONS", defaults.broker_max_sessions),
            broker_retention=_env_float("BROKER_RETENTION_DAYS", 7) * 24 * 60 * 60,
            upload_window=_env_float("UPLOAD_WINDOW_SECONDS", defaults.upload_window),
            upload_max_bytes=_env_int("UPLOAD_MAX_MB", defaults.upload_max_bytes // MB) * MB,
            cleanup_interval=_env_float("CLEANUP_INTERVAL_SECONDS", defaults.cleanup_interval),
            poll_interval=_env_float("POLL_INTERVAL_SECONDS", defaults.poll_interval),
            broker_timeout=_env_float("BROKER_TIMEOUT_SECONDS", defaults.broker_timeout),
            broker_url=_env_str("BROKER_URL", defaults.broker_url),
            base_url=_env_str("BASE_URL"),
            database_dir=_env_str("DATABASE_DIR"),
        )
