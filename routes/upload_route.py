from typing import Optional

from fastapi import APIRouter, File, Header, HTTPException, Request, UploadFile

from controllers.upload_session_controller import upload_image

router = APIRouter(prefix="/api/upload")


@router.post("/{session_id}")
async def upload_image_route(
	request: Request,
	session_id: str,
	image: Optional[UploadFile] = File(None),
	token: Optional[str] = None,
	x_upload_token: Optional[str] = Header(None),
):
	"""Accept a phone image; the token comes from X-Upload-Token or ?token=."""
	try:
		return await upload_image(request, session_id, image, x_upload_token or token)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
