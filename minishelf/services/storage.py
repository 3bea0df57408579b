"""Firebase / Google Cloud Storage gateway for minishelf.

Responsible for uploading processed images, making them publicly
readable, deleting them and checking existence.  Objects are stored
under one of the following key patterns:

    users/{user_id}/avatar/{filename}
    users/{user_id}/collections/{collection_id}/thumbnail/{filename}
    users/{user_id}/collections/{collection_id}/models/{model_id}/{filename}

The SDK is blocking, so every call is pushed onto a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from minishelf.errors import ConfigurationError, StorageError
from minishelf.models import UploadCategory

if TYPE_CHECKING:
    from google.cloud.storage import Bucket

    from minishelf.config import Settings

logger = logging.getLogger(__name__)


class StorageService:
    """Wrapper around bucket uploads, deletes and existence checks."""

    def __init__(self, bucket: Bucket, settings: Settings) -> None:
        self._bucket = bucket
        self._settings = settings

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        buffer: bytes,
        file_path: str,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Upload ``buffer`` to ``file_path`` and return its public URL.

        The object is only reported as uploaded once it is publicly
        readable; a failed visibility step fails the whole upload.

        Raises
        ------
        StorageError
            On any transport, auth or visibility failure.
        """

        try:
            return await asyncio.to_thread(self._upload_sync, buffer, file_path, content_type, metadata or {})
        except Exception as exc:
            logger.error("Storage upload error for %s: %s", file_path, exc, exc_info=True)
            raise StorageError("Failed to upload file") from exc

    async def delete_file(self, file_path: str) -> None:
        """Delete an object; missing objects are left to the backend's own semantics."""

        try:
            await asyncio.to_thread(self._bucket.blob(file_path).delete)
        except Exception as exc:
            logger.error("Storage delete error for %s: %s", file_path, exc)
            raise StorageError("Failed to delete file") from exc
        logger.info("Deleted file: %s", file_path)

    async def file_exists(self, file_path: str) -> bool:
        """Advisory existence check; backend errors are logged and read as ``False``."""

        try:
            return bool(await asyncio.to_thread(self._bucket.blob(file_path).exists))
        except Exception as exc:
            logger.error("Storage exists check error for %s: %s", file_path, exc)
            return False

    def public_url(self, file_path: str) -> str:
        settings = self._settings
        if settings.use_storage_emulator:
            return (
                f"http://{settings.storage_emulator_host}/v0/b/{self._bucket.name}"
                f"/o/{quote(file_path, safe='')}?alt=media"
            )
        return f"{settings.public_base_url.rstrip('/')}/{self._bucket.name}/{file_path}"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _upload_sync(self, buffer: bytes, file_path: str, content_type: str, metadata: dict[str, str]) -> str:
        blob = self._bucket.blob(file_path)
        blob.metadata = metadata
        blob.upload_from_string(buffer, content_type=content_type)
        # The emulator serves everything; ACLs are not implemented there.
        if not self._settings.use_storage_emulator:
            blob.make_public()
        url = self.public_url(file_path)
        logger.debug("Uploaded %d bytes to %s", len(buffer), file_path)
        return url


# ------------------------------------------------------------------
# Path builder
# ------------------------------------------------------------------


def build_file_path(
    category: UploadCategory | str,
    *,
    owner_id: str,
    filename: str,
    collection_id: str | None = None,
    model_id: str | None = None,
) -> str:
    """Derive the object key for an upload.

    Raises
    ------
    ConfigurationError
        When the parent ids the category needs are missing, or the
        category is unknown.
    """

    if category == UploadCategory.AVATAR:
        return f"users/{owner_id}/avatar/{filename}"
    if category == UploadCategory.COLLECTION_THUMBNAIL:
        if not collection_id:
            raise ConfigurationError("Collection ID required for collection thumbnail")
        return f"users/{owner_id}/collections/{collection_id}/thumbnail/{filename}"
    if category == UploadCategory.MODEL_IMAGE:
        if not collection_id or not model_id:
            raise ConfigurationError("Collection ID and Model ID required for model image")
        return f"users/{owner_id}/collections/{collection_id}/models/{model_id}/{filename}"
    raise ConfigurationError(f"Unknown file type: {category}")
