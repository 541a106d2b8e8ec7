"""Upload broker domain models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4


@dataclass
class UploadSlot:
	"""One uploaded image together with its recognized text.

	The text starts empty and is filled in later by the recognition queue,
	which looks the slot up by `id`.
	"""

	data_url: str
	recognized_text: str = ""
	added_at: float = field(default_factory=time.time)
	id: str = field(default_factory=lambda: uuid4().hex)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"data_url": self.data_url,
			"recognized_text": self.recognized_text,
			"added_at": self.added_at,
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "UploadSlot":
		return cls(
			id=data["id"],
			data_url=data["data_url"],
			recognized_text=data.get("recognized_text") or "",
			added_at=float(data.get("added_at") or 0.0),
		)


@dataclass
class UploadSession:
	"""Ephemeral, token-protected upload session held by the broker."""

	id: str
	token: str
	name: str
	created_at: float
	upload_deadline: float
	closed: bool = False
	slots: List[UploadSlot] = field(default_factory=list)

	@property
	def image_count(self) -> int:
		return len(self.slots)

	def find_slot(self, slot_id: str) -> Optional[UploadSlot]:
		for slot in self.slots:
			if slot.id == slot_id:
				return slot
		return None

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"token": self.token,
			"name": self.name,
			"created_at": self.created_at,
			"upload_deadline": self.upload_deadline,
			"closed": self.closed,
			"slots": [slot.to_dict() for slot in self.slots],
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "UploadSession":
		return cls(
			id=data["id"],
			token=data["token"],
			name=data.get("name") or "Untitled",
			created_at=float(data["created_at"]),
			upload_deadline=float(data["upload_deadline"]),
			closed=bool(data.get("closed")),
			slots=[UploadSlot.from_dict(raw) for raw in data.get("slots") or []],
		)
