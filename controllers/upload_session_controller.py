"""Upload broker helpers behind the `/api/session` and `/api/upload` routes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import HTTPException, Request, UploadFile

from services.upload_broker import UploadBroker
from utils.media_validation import read_image_upload, to_data_url

LOGGER = logging.getLogger(__name__)

NOT_FOUND = "Session not found or expired."


def _ms(timestamp: float) -> int:
	return int(timestamp * 1000)


def _broker(request: Request) -> UploadBroker:
	return request.app.state.upload_broker


async def persist_broker(request: Request) -> None:
	"""Write the broker snapshot if persistence is configured; failures are logged by the DAL."""
	dal = getattr(request.app.state, "upload_snapshot_dal", None)
	if dal is not None:
		await dal.save(_broker(request).snapshot())


def _upload_url(request: Request, session_id: str, token: str) -> str:
	"""Link encoded in the QR code; the phone page reads the token from it."""
	base_url = request.app.state.settings.base_url or str(request.base_url)
	return f"{base_url.rstrip('/')}/upload/{session_id}?{urlencode({'token': token})}"


async def create_upload_session(request: Request, name: Optional[str]) -> Dict[str, Any]:
	"""Open a broker session and return the link a phone needs to upload into it."""
	session, error = _broker(request).create(name)
	if session is None:
		raise HTTPException(status_code=429, detail=error.value)

	upload_url = _upload_url(request, session.id, session.token)
	renderer = getattr(request.app.state, "qr_renderer", None)
	qr_image = renderer(upload_url) if renderer is not None else None
	await persist_broker(request)
	return {
		"sessionId": session.id,
		"token": session.token,
		"uploadUrl": upload_url,
		"qrImage": qr_image,
	}


async def get_session_info(request: Request, session_id: str) -> Dict[str, Any]:
	broker = _broker(request)
	session = broker.get(session_id)
	if session is None:
		raise HTTPException(status_code=404, detail=NOT_FOUND)
	return {
		"name": session.name,
		"imageCount": session.image_count,
		"createdAt": _ms(session.created_at),
		"uploadExpiresAt": _ms(session.upload_deadline),
		"daysRemaining": broker.days_remaining(session_id),
	}


async def get_session_image(request: Request, session_id: str, index: int) -> Dict[str, Any]:
	broker = _broker(request)
	if broker.get(session_id) is None:
		raise HTTPException(status_code=404, detail=NOT_FOUND)
	slot = broker.get_slot(session_id, index)
	if slot is None:
		raise HTTPException(status_code=404, detail="Image not found.")
	return {"dataUrl": slot.data_url, "addedAt": _ms(slot.added_at), "index": index}


async def check_session(request: Request, session_id: str, token: Optional[str]) -> Dict[str, bool]:
	"""Report whether the session is usable; a supplied token must also match."""
	broker = _broker(request)
	valid = broker.get(session_id) is not None
	if valid and token is not None:
		valid = broker.validate(session_id, token)
	return {"valid": valid, "uploadWindowOpen": valid and broker.is_window_open(session_id)}


async def close_uploads(request: Request, session_id: str) -> Dict[str, bool]:
	if not _broker(request).close(session_id):
		raise HTTPException(status_code=404, detail=NOT_FOUND)
	await persist_broker(request)
	return {"success": True}


async def get_recognized_texts(request: Request, session_id: str) -> Dict[str, Any]:
	texts = _broker(request).recognized_texts(session_id)
	if texts is None:
		raise HTTPException(status_code=404, detail=NOT_FOUND)
	return {"ocrTexts": texts}


async def search_session(request: Request, session_id: str, query: Optional[str]) -> Dict[str, Any]:
	try:
		result = _broker(request).search(session_id, query)
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	if result is None:
		raise HTTPException(status_code=404, detail=NOT_FOUND)
	return result


async def delete_session(request: Request, session_id: str) -> Dict[str, bool]:
	_broker(request).delete(session_id)
	await persist_broker(request)
	return {"success": True}


async def upload_image(
	request: Request,
	session_id: str,
	image_file: Optional[UploadFile],
	token: Optional[str],
) -> Dict[str, Any]:
	"""Accept one phone upload and queue it for recognition.

	Checks run in order: session exists (404), token matches (403), window
	open (403), file present (400), type allowed (415), size allowed (413).
	"""
	broker = _broker(request)
	if broker.get(session_id) is None:
		raise HTTPException(status_code=404, detail=NOT_FOUND)
	if not broker.validate(session_id, token):
		raise HTTPException(status_code=403, detail="Invalid or missing upload token.")
	if not broker.is_window_open(session_id):
		raise HTTPException(status_code=403, detail="Upload window expired.")
	if image_file is None:
		raise HTTPException(status_code=400, detail="No image file provided.")

	image_bytes, content_type = await read_image_upload(
		image_file, request.app.state.settings.upload_max_bytes
	)
	slot = broker.add_image(session_id, to_data_url(image_bytes, content_type))
	if slot is None:
		raise HTTPException(status_code=404, detail=NOT_FOUND)

	request.app.state.recognition_queue.submit(broker, (session_id, slot.id))
	await persist_broker(request)
	LOGGER.info("Upload session %s received image %s", session_id, slot.id)
	return {"success": True, "imageCount": broker.get(session_id).image_count}
