from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class UploadCategory(StrEnum):
    AVATAR = "avatar"
    COLLECTION_THUMBNAIL = "collection-thumbnail"
    MODEL_IMAGE = "model-image"


class IncomingFile(BaseModel):
    """A single parsed multipart file, held by one upload call only."""

    buffer: bytes = Field(repr=False)
    original_filename: str
    mime_type: str
    declared_size: int = Field(..., ge=0)


class UploadRequest(BaseModel):
    """Who is uploading and where the image belongs.

    Parent ids are checked at construction: a collection thumbnail needs a
    collection, a model image needs both a collection and a model.
    """

    owner_id: str = Field(..., min_length=1)
    category: UploadCategory
    collection_id: str | None = None
    model_id: str | None = None
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] | None = None

    @model_validator(mode="after")
    def _check_parents(self) -> UploadRequest:
        if self.category is UploadCategory.COLLECTION_THUMBNAIL and not self.collection_id:
            raise ValueError("Collection ID required for collection thumbnail")
        if self.category is UploadCategory.MODEL_IMAGE and (not self.collection_id or not self.model_id):
            raise ValueError("Collection ID and Model ID required for model image")
        return self

    def storage_metadata(self, original_filename: str) -> dict[str, str]:
        """Custom object metadata; the store only accepts string values."""
        return {
            "userId": self.owner_id,
            "type": self.category.value,
            "originalName": original_filename,
            "description": self.description or "",
            "tags": ",".join(self.tags or []),
        }


class UploadResult(BaseModel):
    public_url: str
    storage_path: str
    filename: str
    original_filename: str
    byte_size: int
    mime_type: str
    width: int
    height: int
    variant_label: str | None = None
