"""FastAPI routes for upload broker sessions."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.upload_session_controller import (
	check_session,
	close_uploads,
	create_upload_session,
	delete_session,
	get_recognized_texts,
	get_session_image,
	get_session_info,
	search_session,
)

router = APIRouter(prefix="/api/session")


class CreatePayload(BaseModel):
	name: Optional[str] = None


@router.post("/create")
async def create_session_route(request: Request, payload: Optional[CreatePayload] = None):
	try:
		return await create_upload_session(request, payload.name if payload else None)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}")
async def session_info_route(request: Request, session_id: str):
	try:
		return await get_session_info(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}/images/{index}")
async def session_image_route(request: Request, session_id: str, index: int):
	try:
		return await get_session_image(request, session_id, index)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}/valid")
async def session_valid_route(request: Request, session_id: str, token: Optional[str] = None):
	try:
		return await check_session(request, session_id, token)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/{session_id}/close-uploads")
async def close_uploads_route(request: Request, session_id: str):
	try:
		return await close_uploads(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}/ocr")
async def recognized_texts_route(request: Request, session_id: str):
	try:
		return await get_recognized_texts(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{session_id}/search")
async def search_route(request: Request, session_id: str, q: Optional[str] = None):
	try:
		return await search_session(request, session_id, q)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/{session_id}")
async def delete_session_route(request: Request, session_id: str):
	try:
		return await delete_session(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
