"""JSON snapshot of the upload broker written with aiofiles.

Broker sessions are short-lived, so persistence here is best effort: a
failed write or an unreadable file is logged and otherwise ignored.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import aiofiles

LOGGER = logging.getLogger(__name__)


class UploadSnapshotDAL:
	"""Read and write `<directory>/upload_sessions.json`."""

	def __init__(self, directory: Path | str, filename: str = "upload_sessions.json") -> None:
		self.path = Path(directory).expanduser() / filename

	async def save(self, records: List[Dict[str, Any]]) -> bool:
		"""Write `records` atomically. Returns False if the write failed."""
		tmp_path = self.path.with_suffix(".tmp")
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
				await f.write(json.dumps({"sessions": records}))
			os.replace(tmp_path, self.path)
		except OSError as exc:
			LOGGER.warning("Could not write upload snapshot to %s: %s", self.path, exc)
			return False
		return True

	async def load(self) -> List[Dict[str, Any]]:
		"""Return stored session records, or [] when missing or unreadable."""
		if not self.path.exists():
			return []
		try:
			async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
				payload = json.loads(await f.read())
		except (OSError, ValueError) as exc:
			LOGGER.warning("Ignoring unreadable upload snapshot %s: %s", self.path, exc)
			return []
		sessions = payload.get("sessions") if isinstance(payload, dict) else None
		return sessions if isinstance(sessions, list) else []
