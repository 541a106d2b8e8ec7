"""Capture session domain models."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionStatus(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"


class ErrorCode(str, Enum):
    """Typed failure codes returned (never raised) by the stores."""

    NO_SESSION = "NO_SESSION"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    SESSION_ACTIVE = "SESSION_ACTIVE"
    NOT_ACTIVE = "NOT_ACTIVE"
    NOT_PAUSED = "NOT_PAUSED"
    MAX_REACHED = "MAX_REACHED"
    MEMORY_LIMIT_REACHED = "MEMORY_LIMIT_REACHED"
    NOTHING_TO_DELETE = "NOTHING_TO_DELETE"
    INVALID_INDEX = "INVALID_INDEX"
    NOTHING_TO_UNDO = "NOTHING_TO_UNDO"
    UNDO_EXPIRED = "UNDO_EXPIRED"
    NO_SCREENSHOTS = "NO_SCREENSHOTS"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    MAX_SESSIONS_REACHED = "MAX_SESSIONS_REACHED"


MEMORY_WARNING = "MEMORY_WARNING"


@dataclass
class BoundingBox:
    """Pixel box in the coordinates of the image sent to recognition."""

    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0


@dataclass
class RecognizedWord:
    text: str
    bbox: Optional[BoundingBox] = None
    confidence: Optional[float] = None


@dataclass
class RecognitionAnnotation:
    """Recognized text attached to a stored image.

    Attributes:
        text: Full recognized text ("" when recognition failed).
        words: Word boxes in the coordinates of the recognized image.
        source_width: Width of the image actually sent to recognition.
        source_height: Height of the image actually sent to recognition.
        attempted: True once recognition ran, whether or not it succeeded.
    """

    text: str = ""
    words: List[RecognizedWord] = field(default_factory=list)
    source_width: int = 0
    source_height: int = 0
    attempted: bool = False

    @classmethod
    def failed(cls) -> "RecognitionAnnotation":
        return cls(attempted=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RecognitionAnnotation":
        if not data:
            return cls()
        words = []
        for raw in data.get("words") or []:
            bbox = raw.get("bbox")
            words.append(
                RecognizedWord(
                    text=raw.get("text", ""),
                    bbox=BoundingBox(**bbox) if bbox else None,
                    confidence=raw.get("confidence"),
                )
            )
        return cls(
            text=data.get("text", ""),
            words=words,
            source_width=int(data.get("source_width") or 0),
            source_height=int(data.get("source_height") or 0),
            attempted=bool(data.get("attempted")),
        )


@dataclass
class CapturedImage:
    """One stored image and its recognition annotation."""

    id: str
    data: bytes
    mime_type: str = "image/png"
    captured_at: float = field(default_factory=time.time)
    source_url: str = ""
    source_title: str = ""
    size: int = 0
    annotation: RecognitionAnnotation = field(default_factory=RecognitionAnnotation)

    def __post_init__(self) -> None:
        if not self.size:
            self.size = len(self.data)


@dataclass
class CaptureSession:
    """Session metadata; image payloads live in the blob store."""

    id: str
    name: str
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: float = field(default_factory=time.time)
    image_ids: List[str] = field(default_factory=list)
    image_count: int = 0
    memory_usage: int = 0

    def copy(self) -> "CaptureSession":
        return CaptureSession(
            id=self.id,
            name=self.name,
            status=self.status,
            created_at=self.created_at,
            image_ids=list(self.image_ids),
            image_count=self.image_count,
            memory_usage=self.memory_usage,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "created_at": self.created_at,
            "image_ids": list(self.image_ids),
            "image_count": self.image_count,
            "memory_usage": self.memory_usage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureSession":
        return cls(
            id=data["id"],
            name=data["name"],
            status=SessionStatus(data.get("status", SessionStatus.IDLE.value)),
            created_at=float(data.get("created_at") or time.time()),
            image_ids=list(data.get("image_ids") or []),
            image_count=int(data.get("image_count") or 0),
            memory_usage=int(data.get("memory_usage") or 0),
        )


@dataclass
class UndoEntry:
    image: CapturedImage
    session_snapshot: CaptureSession
    removed_at: float


@dataclass
class StoreResult:
    """Outcome of a store operation; `error` is None on success."""

    error: Optional[ErrorCode] = None
    session: Optional[CaptureSession] = None
    image_id: Optional[str] = None
    count: Optional[int] = None
    memory_usage: Optional[int] = None
    warning: Optional[str] = None
    document: Optional[Any] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def fail(cls, error: ErrorCode, session: Optional[CaptureSession] = None) -> "StoreResult":
        return cls(error=error, session=session)

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            payload: Dict[str, Any] = {"error": self.error.value}
            if self.session is not None:
                payload["session"] = self.session.to_dict()
            return payload
        payload = {"success": True}
        if self.session is not None:
            payload["session"] = self.session.to_dict()
        if self.image_id is not None:
            payload["imageId"] = self.image_id
        if self.count is not None:
            payload["count"] = self.count
        if self.memory_usage is not None:
            payload["memoryUsage"] = self.memory_usage
        payload["warning"] = self.warning
        return payload


@dataclass
class CaptureSnapshot:
    """Everything needed to reload a capture store after a restart."""

    session: Optional[CaptureSession] = None
    images: List[CapturedImage] = field(default_factory=list)
    undo: Optional[UndoEntry] = None
