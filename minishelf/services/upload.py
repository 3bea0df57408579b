"""Upload orchestration.

Ties the pipeline together for one request:

    request shape -> image bytes -> format -> transcode/variants
        -> storage path -> object store

Client-fixable problems surface as ``ValidationError`` before any
transcoding or storage I/O happens.  Everything unexpected is logged and
normalised to a server-side error with a generic message.
"""
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Mapping, Sequence

import pydantic

from minishelf.errors import (
    AuthorizationError,
    ProcessingError,
    StorageError,
    UploadError,
    UploadLimitError,
    ValidationError,
)
from minishelf.models import IncomingFile, SizePreset, UploadCategory, UploadRequest, UploadResult
from minishelf.services.storage import build_file_path

if TYPE_CHECKING:
    from minishelf.config import Settings
    from minishelf.services.image_processing import ImageProcessingService
    from minishelf.services.storage import StorageService

logger = logging.getLogger(__name__)

_MAX_DESCRIPTION_LENGTH = 500


class UploadService:
    """Entry point for single-image, responsive and delete operations."""

    def __init__(
        self,
        settings: Settings,
        images: ImageProcessingService,
        storage: StorageService,
    ) -> None:
        self._settings = settings
        self._images = images
        self._storage = storage

    # ------------------------------------------------------------------
    # Request validation
    # ------------------------------------------------------------------

    def validate_upload_request(self, owner_id: str | None, fields: Mapping[str, Any]) -> UploadRequest:
        """Build an :class:`UploadRequest` from raw form fields.

        ``fields`` uses the client's names: ``type``, ``collectionId``,
        ``modelId``, ``description`` and ``tags`` (comma separated).
        """

        if not owner_id:
            raise UploadError("User not authenticated", 401)

        upload_type = fields.get("type")
        try:
            category = UploadCategory(upload_type)
        except ValueError:
            raise ValidationError("Invalid upload type") from None

        collection_id = _clean(fields.get("collectionId"))
        model_id = _clean(fields.get("modelId"))
        if category is UploadCategory.COLLECTION_THUMBNAIL and not collection_id:
            raise ValidationError("Collection ID required for collection thumbnail")
        if category is UploadCategory.MODEL_IMAGE and (not collection_id or not model_id):
            raise ValidationError("Collection ID and Model ID required for model image")
        if collection_id and not _is_uuid(collection_id):
            raise ValidationError("Collection ID must be a valid UUID")
        if model_id and not _is_uuid(model_id):
            raise ValidationError("Model ID must be a valid UUID")

        description = fields.get("description") or None
        if description is not None and len(description) > _MAX_DESCRIPTION_LENGTH:
            raise ValidationError("Description must be 500 characters or less")

        raw_tags = fields.get("tags")
        if raw_tags is not None and not isinstance(raw_tags, str):
            raise ValidationError("Tags must be a comma-separated string")
        tags = [tag.strip() for tag in raw_tags.split(",") if tag.strip()] if raw_tags else None

        try:
            return UploadRequest(
                owner_id=owner_id,
                category=category,
                collection_id=collection_id,
                model_id=model_id,
                description=description,
                tags=tags,
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(exc.errors()[0]["msg"].removeprefix("Value error, ")) from exc

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def upload_image(self, file: IncomingFile, request: UploadRequest) -> UploadResult:
        """Validate, re-encode in the best format, and store a single image."""

        try:
            await self._ensure_valid(file)

            optimal_format = await self._images.get_optimal_format(file.buffer)
            processed = await self._images.process_image(file.buffer, format=optimal_format)

            filename = self._images.generate_filename(file.original_filename, optimal_format)
            file_path = build_file_path(
                request.category,
                owner_id=request.owner_id,
                collection_id=request.collection_id,
                model_id=request.model_id,
                filename=filename,
            )
            mime_type = f"image/{optimal_format}"
            url = await self._storage.upload_file(
                processed.buffer,
                file_path,
                mime_type,
                request.storage_metadata(file.original_filename),
            )
        except ValidationError:
            raise
        except UploadError as exc:
            _log_failure("Upload error", exc)
            raise type(exc)("Failed to upload image") from exc
        except Exception as exc:
            _log_failure("Upload error", exc)
            raise StorageError("Failed to upload image") from exc

        logger.info("Uploaded %s image for user %s to %s", request.category, request.owner_id, file_path)
        return UploadResult(
            public_url=url,
            storage_path=file_path,
            filename=filename,
            original_filename=file.original_filename,
            byte_size=processed.byte_size,
            mime_type=mime_type,
            width=processed.width,
            height=processed.height,
        )

    async def upload_responsive_images(
        self,
        file: IncomingFile,
        request: UploadRequest,
        sizes: Sequence[SizePreset] | None = None,
    ) -> list[UploadResult]:
        """Store one jpeg per size preset, in preset order.

        Presets that fail to transcode are skipped; if none succeed the
        whole upload fails.
        """

        try:
            await self._ensure_valid(file)

            variants = await self._images.create_responsive_sizes(file.buffer, sizes)
            if not variants:
                raise ProcessingError("No responsive sizes could be produced")

            stem = file.original_filename.split(".")[0]
            results: list[UploadResult] = []
            for variant in variants:
                filename = self._images.generate_filename(f"{stem}_{variant.label}", "jpeg")
                file_path = build_file_path(
                    request.category,
                    owner_id=request.owner_id,
                    collection_id=request.collection_id,
                    model_id=request.model_id,
                    filename=filename,
                )
                metadata = request.storage_metadata(file.original_filename)
                metadata["size"] = variant.label
                url = await self._storage.upload_file(variant.buffer, file_path, "image/jpeg", metadata)

                results.append(
                    UploadResult(
                        public_url=url,
                        storage_path=file_path,
                        filename=filename,
                        original_filename=file.original_filename,
                        byte_size=variant.info.byte_size,
                        mime_type="image/jpeg",
                        width=variant.info.width,
                        height=variant.info.height,
                        variant_label=variant.label,
                    )
                )
        except ValidationError:
            raise
        except UploadError as exc:
            _log_failure("Responsive upload error", exc)
            raise type(exc)("Failed to upload responsive images") from exc
        except Exception as exc:
            _log_failure("Responsive upload error", exc)
            raise StorageError("Failed to upload responsive images") from exc

        logger.info(
            "Uploaded %d/%d responsive sizes for user %s",
            len(results),
            len(sizes) if sizes is not None else len(self._settings.responsive_sizes),
            request.owner_id,
        )
        return results

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_file(self, caller_id: str | None, file_path: str) -> None:
        """Delete an object the caller owns.

        The ``users/{caller_id}/`` prefix check runs before the store is
        touched, whether or not the object exists.
        """

        if not file_path:
            raise ValidationError("File path is required")
        if not caller_id or not _owns_path(caller_id, file_path):
            raise AuthorizationError("Access denied: Cannot delete files belonging to other users")

        try:
            await self._storage.delete_file(file_path)
        except Exception as exc:
            _log_failure("Delete file error", exc)
            raise StorageError("Failed to delete file") from exc

    # ------------------------------------------------------------------
    # Intake error mapping
    # ------------------------------------------------------------------

    def handle_upload_error(self, error: BaseException) -> UploadError:
        """Translate intake limit errors into client-facing upload errors."""

        if isinstance(error, UploadLimitError):
            if error.code == UploadLimitError.LIMIT_FILE_SIZE:
                return ValidationError(f"File too large. Maximum size: {self._settings.max_file_size_mb}MB")
            if error.code == UploadLimitError.LIMIT_UNEXPECTED_FILE:
                return ValidationError("Unexpected file field")
            if error.code == UploadLimitError.LIMIT_FILE_COUNT:
                return ValidationError("Too many files. Upload a single image")
            if error.code == UploadLimitError.LIMIT_FILE_TYPE:
                allowed = ", ".join(self._settings.allowed_mime_types)
                return ValidationError(f"Invalid file type. Allowed types: {allowed}")
            return ValidationError("Upload error")

        if isinstance(error, UploadError):
            return error

        _log_failure("Unknown upload error", error)
        return UploadError("Unknown upload error", 500)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_valid(self, file: IncomingFile) -> None:
        validation = await self._images.validate_image(file.buffer)
        if not validation.is_valid:
            logger.info("Rejected upload %r: %s", file.original_filename, validation.error)
            raise ValidationError(validation.error or "Invalid image file")


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _owns_path(caller_id: str, file_path: str) -> bool:
    if not file_path.startswith(f"users/{caller_id}/"):
        return False
    # "users/me/../other/..." would escape the prefix
    return ".." not in file_path.split("/")


def _log_failure(context: str, exc: BaseException) -> None:
    logger.error(
        "%s details: message=%s name=%s code=%s",
        context,
        exc,
        type(exc).__name__,
        getattr(exc, "code", None) or getattr(exc, "errno", None),
        exc_info=exc,
    )
