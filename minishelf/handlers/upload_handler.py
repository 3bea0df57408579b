"""HTTP endpoints for image uploads.

Authentication happens upstream: the gateway in front of this service
verifies the user's token and forwards the user id in ``X-User-Id``.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Header, Request, status
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from minishelf.config import Settings
from minishelf.errors import UploadError, UploadLimitError, ValidationError
from minishelf.models import IncomingFile, UploadRequest
from minishelf.services.upload import UploadService

router = APIRouter(prefix="/api/v1/upload")
logger = logging.getLogger(__name__)

FILE_FIELD = "image"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_upload_service(request: Request) -> UploadService:
    service: UploadService = request.app.state.upload_service
    return service


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise UploadError("User not authenticated", status.HTTP_401_UNAUTHORIZED)
    return user_id


async def read_upload(request: Request, settings: Settings) -> tuple[IncomingFile, dict[str, str]]:
    """Pull the single image file and the text fields out of a multipart body.

    Raises ``UploadLimitError`` for limit violations and ``ValidationError``
    when no file was sent at all.
    """

    form = await request.form()
    files = [(key, value) for key, value in form.multi_items() if isinstance(value, UploadFile)]
    fields = {key: value for key, value in form.multi_items() if isinstance(value, str)}

    if not files:
        raise ValidationError("No file uploaded")
    if len(files) > 1:
        raise UploadLimitError(UploadLimitError.LIMIT_FILE_COUNT)

    field_name, upload = files[0]
    if field_name != FILE_FIELD:
        raise UploadLimitError(UploadLimitError.LIMIT_UNEXPECTED_FILE, field_name)
    if upload.content_type not in settings.allowed_mime_types:
        raise UploadLimitError(UploadLimitError.LIMIT_FILE_TYPE, field_name)

    # one byte past the limit marks the part as oversize
    buffer = await upload.read(settings.max_file_size + 1)
    if len(buffer) > settings.max_file_size:
        raise UploadLimitError(UploadLimitError.LIMIT_FILE_SIZE, field_name)

    incoming = IncomingFile(
        buffer=buffer,
        original_filename=upload.filename or "upload",
        mime_type=upload.content_type or "application/octet-stream",
        declared_size=upload.size if upload.size is not None else len(buffer),
    )
    return incoming, fields


async def _intake(request: Request, user_id: str | None) -> tuple[UploadService, UploadRequest, IncomingFile]:
    service = _get_upload_service(request)
    owner_id = _require_user(user_id)
    try:
        incoming, fields = await read_upload(request, _get_settings(request))
    except UploadLimitError as exc:
        logger.info("Upload rejected at intake for user %s: %s", owner_id, exc.code)
        raise service.handle_upload_error(exc) from exc
    upload_request = service.validate_upload_request(owner_id, fields)
    return service, upload_request, incoming


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/image", status_code=status.HTTP_201_CREATED)
async def upload_image(request: Request, x_user_id: str | None = Header(None, alias="X-User-Id")):
    service, upload_request, incoming = await _intake(request, x_user_id)
    result = await service.upload_image(incoming, upload_request)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "success": True,
            "data": result.model_dump(mode="json"),
            "message": "Image uploaded successfully",
        },
    )


@router.post("/responsive", status_code=status.HTTP_201_CREATED)
async def upload_responsive(request: Request, x_user_id: str | None = Header(None, alias="X-User-Id")):
    service, upload_request, incoming = await _intake(request, x_user_id)
    results = await service.upload_responsive_images(incoming, upload_request)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "success": True,
            "data": [r.model_dump(mode="json") for r in results],
            "message": "Responsive images uploaded successfully",
        },
    )


@router.get("/limits")
async def upload_limits(request: Request):
    settings = _get_settings(request)
    return {
        "success": True,
        "data": {
            "maxFileSize": f"{settings.max_file_size_mb}MB",
            "maxFileSizeBytes": settings.max_file_size,
            "allowedMimeTypes": settings.allowed_mime_types,
            "supportedFormats": ["JPEG", "PNG", "WebP", "GIF"],
            "maxDimensions": {"width": settings.image_max_width, "height": settings.image_max_height},
            "compressionQuality": settings.image_quality,
            "responsiveSizes": [s.model_dump() for s in settings.responsive_sizes],
        },
    }


@router.delete("/{file_path:path}")
async def delete_upload(
    request: Request,
    file_path: str,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
):
    await _get_upload_service(request).delete_file(x_user_id, file_path)
    return {"success": True, "message": "File deleted successfully"}
