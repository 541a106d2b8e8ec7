"""Ephemeral registry of token-protected phone upload sessions.

Each session runs two independent clocks: a retention deadline (days) after
which the session and its images disappear, and an upload window (minutes)
after which it stays readable but refuses new images. The broker is a plain
object owned by the app, so tests build their own with a fake clock.
"""

from __future__ import annotations

import logging
import math
import re
import secrets
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.capture_models import ErrorCode, RecognitionAnnotation
from models.upload_models import UploadSession, UploadSlot
from utils.media_validation import decode_data_url
from utils.settings import Settings

LOGGER = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
DEFAULT_UPLOAD_NAME = "Untitled"
SNIPPET_LENGTH = 100


def build_snippet(text: str, hit: int, hit_length: int, length: int = SNIPPET_LENGTH) -> str:
	"""Return at most `length` characters of `text` centered on the hit at `hit`."""
	if len(text) <= length:
		return text
	start = max(0, hit + hit_length // 2 - length // 2)
	end = min(len(text), start + length)
	start = max(0, end - length)
	return text[start:end]


class UploadBroker:
	"""Bounded in-memory store of upload sessions.

	Args:
		max_sessions: Live sessions held at once.
		retention: Seconds a session's data is kept.
		upload_window: Seconds a session accepts uploads after creation.
		clock: Time source, injectable for tests.
	"""

	def __init__(
		self,
		max_sessions: int = 100,
		retention: float = 7 * DAY_SECONDS,
		upload_window: float = 3 * 60,
		clock: Callable[[], float] = time.time,
	) -> None:
		self.max_sessions = max_sessions
		self.retention = retention
		self.upload_window = upload_window
		self._clock = clock
		self._sessions: Dict[str, UploadSession] = {}

	@classmethod
	def from_settings(cls, settings: Settings) -> "UploadBroker":
		return cls(
			max_sessions=settings.broker_max_sessions,
			retention=settings.broker_retention,
			upload_window=settings.upload_window,
		)

	def create(self, name: Optional[str] = None) -> Tuple[Optional[UploadSession], Optional[ErrorCode]]:
		"""Open a new session, sweeping expired ones first when full.

		Returns:
			`(session, None)`, or `(None, MAX_SESSIONS_REACHED)` when the broker
			is still full after the sweep.
		"""
		if len(self._sessions) >= self.max_sessions:
			self.sweep_expired()
			if len(self._sessions) >= self.max_sessions:
				LOGGER.warning("Upload broker full (%d sessions)", len(self._sessions))
				return None, ErrorCode.MAX_SESSIONS_REACHED

		now = self._clock()
		session = UploadSession(
			id=uuid.uuid4().hex,
			token=secrets.token_urlsafe(32),
			name=(name or "").strip() or DEFAULT_UPLOAD_NAME,
			created_at=now,
			upload_deadline=now + self.upload_window,
		)
		self._sessions[session.id] = session
		LOGGER.info("Created upload session %s", session.id)
		return session, None

	def _expired(self, session: UploadSession, now: float) -> bool:
		return now - session.created_at >= self.retention

	def get(self, session_id: str) -> Optional[UploadSession]:
		"""Return a live session; expired sessions are purged and look absent."""
		session = self._sessions.get(session_id)
		if session is None:
			return None
		if self._expired(session, self._clock()):
			del self._sessions[session_id]
			LOGGER.info("Upload session %s expired", session_id)
			return None
		return session

	def validate(self, session_id: str, token: Optional[str]) -> bool:
		session = self.get(session_id)
		if session is None or not token:
			return False
		return secrets.compare_digest(session.token.encode("utf-8"), str(token).encode("utf-8"))

	def is_window_open(self, session_id: str) -> bool:
		session = self.get(session_id)
		if session is None or session.closed:
			return False
		return self._clock() < session.upload_deadline

	def close(self, session_id: str) -> bool:
		"""Stop accepting uploads. Images stay readable. False for unknown ids."""
		session = self.get(session_id)
		if session is None:
			return False
		session.closed = True
		return True

	def add_image(self, session_id: str, data_url: str, text: Optional[str] = None) -> Optional[UploadSlot]:
		"""Append an image slot.

		Token and window checks belong to the caller; this only requires the
		session to exist.
		"""
		session = self.get(session_id)
		if session is None:
			return None
		slot = UploadSlot(data_url=data_url, recognized_text=text or "", added_at=self._clock())
		session.slots.append(slot)
		return slot

	def get_slot(self, session_id: str, index: int) -> Optional[UploadSlot]:
		session = self.get(session_id)
		if session is None or index < 0 or index >= len(session.slots):
			return None
		return session.slots[index]

	def set_recognized_text(self, session_id: str, slot_id: str, text: str) -> bool:
		session = self.get(session_id)
		slot = session.find_slot(slot_id) if session is not None else None
		if slot is None:
			LOGGER.debug("Upload slot %s/%s gone before recognition finished", session_id, slot_id)
			return False
		slot.recognized_text = text or ""
		return True

	def recognized_texts(self, session_id: str) -> Optional[List[str]]:
		session = self.get(session_id)
		if session is None:
			return None
		return [slot.recognized_text for slot in session.slots]

	def search(self, session_id: str, query: Optional[str]) -> Optional[Dict[str, Any]]:
		"""Case-insensitive substring search over the session's recognized text.

		Returns None for a missing session.

		Raises:
			ValueError: If `query` is empty, before any session is looked up.
		"""
		needle = (query or "").strip().lower()
		if not needle:
			raise ValueError("Search query is required.")

		session = self.get(session_id)
		if session is None:
			return None

		# Matching runs on the original text so hit offsets index it directly.
		pattern = re.compile(re.escape(query.strip()), re.IGNORECASE)
		results = []
		total = 0
		for index, slot in enumerate(session.slots):
			hits = list(pattern.finditer(slot.recognized_text))
			if not hits:
				continue
			count = len(hits)
			total += count
			first = hits[0]
			results.append(
				{
					"imageIndex": index,
					"snippet": build_snippet(slot.recognized_text, first.start(), first.end() - first.start()),
					"matchCount": count,
				}
			)
		return {"query": needle, "results": results, "totalMatches": total}

	def days_remaining(self, session_id: str) -> Optional[int]:
		session = self.get(session_id)
		if session is None:
			return None
		return max(0, math.ceil((session.created_at + self.retention - self._clock()) / DAY_SECONDS))

	def delete(self, session_id: str) -> None:
		self._sessions.pop(session_id, None)

	def sweep_expired(self) -> int:
		"""Drop every retention-expired session and return how many went."""
		now = self._clock()
		expired = [sid for sid, session in self._sessions.items() if self._expired(session, now)]
		for sid in expired:
			del self._sessions[sid]
		if expired:
			LOGGER.info("Swept %d expired upload sessions", len(expired))
		return len(expired)

	def count(self) -> int:
		return len(self._sessions)

	def snapshot(self) -> List[Dict[str, Any]]:
		return [session.to_dict() for session in self._sessions.values()]

	def restore(self, records: List[Dict[str, Any]]) -> int:
		"""Load sessions from `snapshot` output, skipping expired or malformed ones."""
		now = self._clock()
		loaded = 0
		for record in records:
			try:
				session = UploadSession.from_dict(record)
			except (KeyError, TypeError, ValueError) as exc:
				LOGGER.warning("Skipping malformed upload session record: %s", exc)
				continue
			if self._expired(session, now):
				continue
			self._sessions[session.id] = session
			loaded += 1
		return loaded

	# Recognition target protocol; keys are (session_id, slot_id).

	def load_recognition_payload(self, key: Tuple[str, str]) -> Optional[bytes]:
		session = self.get(key[0])
		slot = session.find_slot(key[1]) if session is not None else None
		if slot is None:
			return None
		try:
			data, _mime = decode_data_url(slot.data_url)
		except ValueError as exc:
			LOGGER.warning("Upload slot %s holds an undecodable image: %s", key[1], exc)
			return None
		return data

	def store_recognition(self, key: Tuple[str, str], annotation: RecognitionAnnotation) -> bool:
		return self.set_recognized_text(key[0], key[1], annotation.text)
