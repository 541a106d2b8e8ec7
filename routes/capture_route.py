"""FastAPI routes for the capture session, export and phone link."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.capture_controller import (
    add_image,
    clear_session,
    close_phone_link,
    delete_at,
    delete_last,
    end_session,
    export_document,
    get_memory_status,
    get_session,
    get_thumbnails,
    open_phone_link,
    pause_session,
    resume_session,
    start_session,
    undo_delete,
)

router = APIRouter(prefix="/api/capture")


class StartPayload(BaseModel):
    name: Optional[str] = None


class ImagePayload(BaseModel):
    dataUrl: str
    url: Optional[str] = None
    title: Optional[str] = None


class ExportPayload(BaseModel):
    filename: Optional[str] = None


class PhoneLinkPayload(BaseModel):
    name: Optional[str] = None


async def _guard(call):
    try:
        return await call
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/session")
async def get_session_route(request: Request):
    return await _guard(get_session(request))


@router.post("/start")
async def start_route(request: Request, payload: Optional[StartPayload] = None):
    return await _guard(start_session(request, payload.name if payload else None))


@router.post("/force-start")
async def force_start_route(request: Request, payload: Optional[StartPayload] = None):
    return await _guard(start_session(request, payload.name if payload else None, force=True))


@router.post("/end")
async def end_route(request: Request):
    return await _guard(end_session(request))


@router.post("/pause")
async def pause_route(request: Request):
    return await _guard(pause_session(request))


@router.post("/resume")
async def resume_route(request: Request):
    return await _guard(resume_session(request))


@router.post("/clear")
async def clear_route(request: Request):
    return await _guard(clear_session(request))


@router.post("/images")
async def add_image_route(request: Request, payload: ImagePayload):
    """Store a captured image sent as a data URL."""
    return await _guard(add_image(request, payload.dataUrl, payload.url, payload.title))


@router.delete("/images/last")
async def delete_last_route(request: Request):
    return await _guard(delete_last(request))


@router.delete("/images/{index}")
async def delete_at_route(request: Request, index: int):
    return await _guard(delete_at(request, index))


@router.post("/undo")
async def undo_route(request: Request):
    return await _guard(undo_delete(request))


@router.get("/thumbnails")
async def thumbnails_route(request: Request):
    return await _guard(get_thumbnails(request))


@router.get("/memory")
async def memory_route(request: Request):
    return await _guard(get_memory_status(request))


@router.post("/export")
async def export_route(request: Request, payload: Optional[ExportPayload] = None):
    """Return the session as a PDF with an invisible text layer."""
    return await _guard(export_document(request, payload.filename if payload else None))


@router.post("/phone-link")
async def open_phone_link_route(request: Request, payload: Optional[PhoneLinkPayload] = None):
    return await _guard(open_phone_link(request, payload.name if payload else None))


@router.delete("/phone-link")
async def close_phone_link_route(request: Request):
    return await _guard(close_phone_link(request))
