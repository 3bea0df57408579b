from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DecodedImageInfo(BaseModel):
    """Header-level properties of a source image."""

    model_config = ConfigDict(frozen=True)

    format: str
    width: int
    height: int
    has_alpha: bool = False


class ValidationResult(BaseModel):
    is_valid: bool
    info: DecodedImageInfo | None = None
    error: str | None = None


class ProcessedImage(BaseModel):
    """One encoded rendition, with dimensions read back from the encoder output."""

    buffer: bytes = Field(repr=False)
    format: str
    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)
    byte_size: int = Field(..., ge=0)


class SizePreset(BaseModel):
    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)
    label: str


class ImageVariant(BaseModel):
    buffer: bytes = Field(repr=False)
    label: str
    info: ProcessedImage
