from .image import DecodedImageInfo, ImageVariant, ProcessedImage, SizePreset, ValidationResult
from .upload import IncomingFile, UploadCategory, UploadRequest, UploadResult

__all__ = [
    "DecodedImageInfo",
    "ImageVariant",
    "ProcessedImage",
    "SizePreset",
    "ValidationResult",
    "IncomingFile",
    "UploadCategory",
    "UploadRequest",
    "UploadResult",
]
