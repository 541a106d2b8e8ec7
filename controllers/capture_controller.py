"""Controller for the capture session behind the `/api/capture` routes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException, Request
from fastapi.responses import Response

from models.capture_models import ErrorCode, StoreResult
from services.capture_session import CaptureSessionStore

LOGGER = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ErrorCode.NO_SESSION: 404,
    ErrorCode.NOTHING_TO_DELETE: 404,
    ErrorCode.NOTHING_TO_UNDO: 404,
    ErrorCode.INVALID_INDEX: 400,
    ErrorCode.INVALID_PAYLOAD: 400,
    ErrorCode.NO_ACTIVE_SESSION: 409,
    ErrorCode.SESSION_ACTIVE: 409,
    ErrorCode.NOT_ACTIVE: 409,
    ErrorCode.NOT_PAUSED: 409,
    ErrorCode.NO_SCREENSHOTS: 409,
    ErrorCode.UNDO_EXPIRED: 410,
    ErrorCode.MEMORY_LIMIT_REACHED: 413,
    ErrorCode.MAX_REACHED: 429,
    ErrorCode.MAX_SESSIONS_REACHED: 429,
}


def _store(request: Request) -> CaptureSessionStore:
    return request.app.state.capture_store


def _unwrap(result: StoreResult) -> Dict[str, Any]:
    """Return the JSON body for a successful result, raise HTTPException otherwise."""
    if result.success:
        return result.to_dict()
    raise HTTPException(status_code=STATUS_BY_ERROR.get(result.error, 400), detail=result.error.value)


async def save_capture_state(state: Any) -> None:
    """Save `state.capture_store` to SQLite when persistence is configured.

    Persistence is best effort: a failed write is logged and the caller
    carries on.
    """
    dal = getattr(state, "capture_dal", None)
    if dal is None:
        return
    try:
        await dal.save(state.capture_store.snapshot())
    except Exception as exc:
        LOGGER.error("Failed to persist capture session: %s", exc)


async def persist_capture(request: Request) -> None:
    await save_capture_state(request.app.state)


async def _mutate(request: Request, result: StoreResult) -> Dict[str, Any]:
    body = _unwrap(result)
    await persist_capture(request)
    return body


async def get_session(request: Request) -> Dict[str, Any]:
    session = _store(request).get_session()
    return {"session": session.to_dict() if session is not None else None}


async def start_session(request: Request, name: Optional[str], force: bool = False) -> Dict[str, Any]:
    store = _store(request)
    result = store.force_start(name) if force else store.start(name)
    return await _mutate(request, result)


async def end_session(request: Request) -> Dict[str, Any]:
    return await _mutate(request, _store(request).end())


async def pause_session(request: Request) -> Dict[str, Any]:
    return await _mutate(request, _store(request).pause())


async def resume_session(request: Request) -> Dict[str, Any]:
    return await _mutate(request, _store(request).resume())


async def clear_session(request: Request) -> Dict[str, Any]:
    return await _mutate(request, _store(request).clear())


async def add_image(request: Request, data_url: str, url: Optional[str], title: Optional[str]) -> Dict[str, Any]:
    result = _store(request).add_image(data_url, {"url": url, "title": title})
    return await _mutate(request, result)


async def delete_last(request: Request) -> Dict[str, Any]:
    return await _mutate(request, _store(request).delete_last())


async def delete_at(request: Request, index: int) -> Dict[str, Any]:
    return await _mutate(request, _store(request).delete_at(index))


async def undo_delete(request: Request) -> Dict[str, Any]:
    result = _store(request).undo_delete()
    if result.error is ErrorCode.UNDO_EXPIRED:
        # The expired entry was dropped; keep the stored copy in step.
        await persist_capture(request)
    return await _mutate(request, result)


async def get_thumbnails(request: Request) -> Dict[str, Any]:
    thumbnails = await asyncio.to_thread(_store(request).get_thumbnails)
    return {"thumbnails": thumbnails}


async def get_memory_status(request: Request) -> Dict[str, Any]:
    return _store(request).get_memory_status()


async def export_document(request: Request, filename: Optional[str]) -> Response:
    """Render the session to PDF in a worker thread and return it as a download."""
    result = await asyncio.to_thread(_store(request).export_document, filename)
    _unwrap(result)
    document = result.document
    return Response(
        content=document.content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{document.filename}"',
            "X-Page-Count": str(document.page_count),
            "X-Skipped-Images": ",".join(str(index) for index in document.skipped),
        },
    )


async def open_phone_link(request: Request, name: Optional[str]) -> Dict[str, Any]:
    """Create a broker session for the phone and start ingesting its uploads."""
    state = request.app.state
    await close_phone_link(request)
    try:
        link = await state.broker_client.create_session(name)
    except httpx.HTTPStatusError as exc:
        raise HTTPException(status_code=exc.response.status_code, detail="Upload broker refused the session.") from exc
    except httpx.HTTPError as exc:
        LOGGER.warning("Upload broker unreachable: %s", exc)
        raise HTTPException(status_code=502, detail="Upload broker unreachable.") from exc

    await state.upload_poller.start(link["sessionId"])
    state.phone_link = link
    return link


async def close_phone_link(request: Request) -> Dict[str, Any]:
    """Stop polling and close the broker session's upload window."""
    state = request.app.state
    link = getattr(state, "phone_link", None)
    await state.upload_poller.stop()
    state.phone_link = None
    if link is None:
        return {"success": True, "closed": False}

    try:
        await state.broker_client.close_uploads(link["sessionId"])
    except httpx.HTTPError as exc:
        LOGGER.warning("Could not close upload session %s: %s", link["sessionId"], exc)
    return {"success": True, "closed": True}
