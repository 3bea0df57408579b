"""Image validation, format negotiation and transcoding with Pillow.

The heavy lifting lives in plain module-level functions so it can run on
the transcode worker pool; :class:`ImageProcessingService` wraps them with
configured defaults and schedules them off the event loop.
"""
from __future__ import annotations

import io
import logging
import re
import secrets
import string
import time
from typing import TYPE_CHECKING, Literal, Sequence, TypeVar

from PIL import Image

from minishelf.errors import ProcessingError
from minishelf.models import DecodedImageInfo, ImageVariant, ProcessedImage, SizePreset, ValidationResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from minishelf.config import Settings
    from minishelf.services.worker_pool import ImageWorkerPool

logger = logging.getLogger(__name__)

OutputFormat = Literal["jpeg", "png", "webp"]
T = TypeVar("T")

SUPPORTED_FORMATS = frozenset({"jpeg", "png", "webp", "gif"})

# Pillow reports multi-picture JPEGs (common from phone cameras) as MPO.
_FORMAT_ALIASES = {"mpo": "jpeg"}

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
_WHITE = (255, 255, 255)


class ImageProcessingService:
    """Validator, format negotiator, transcoder and variant generator."""

    def __init__(self, settings: Settings, pool: ImageWorkerPool) -> None:
        self._settings = settings
        self._pool = pool

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    async def validate_image(self, buffer: bytes) -> ValidationResult:
        return await self._run(inspect_image, buffer, self._settings.max_image_dimension)

    async def get_optimal_format(self, buffer: bytes) -> OutputFormat:
        return await self._run(choose_format, buffer)

    async def process_image(
        self,
        buffer: bytes,
        *,
        quality: int | None = None,
        max_width: int | None = None,
        max_height: int | None = None,
        format: str = "jpeg",
    ) -> ProcessedImage:
        """Resize (fit inside, never enlarge) and re-encode ``buffer``.

        Unspecified limits fall back to ``settings.image_quality`` and
        ``settings.image_max_width``/``image_max_height``.

        Raises
        ------
        ProcessingError
            If the codec cannot produce output, or no worker frees up in time.
        """

        settings = self._settings
        return await self._run(
            transcode,
            buffer,
            format,
            quality if quality is not None else settings.image_quality,
            max_width if max_width is not None else settings.image_max_width,
            max_height if max_height is not None else settings.image_max_height,
        )

    async def create_responsive_sizes(
        self,
        buffer: bytes,
        sizes: Sequence[SizePreset] | None = None,
    ) -> list[ImageVariant]:
        """Produce one jpeg per preset, in preset order.

        A preset that fails is logged and skipped; the rest still come out.
        """

        presets = list(sizes) if sizes is not None else list(self._settings.responsive_sizes)
        results: list[ImageVariant] = []
        for size in presets:
            try:
                processed = await self.process_image(
                    buffer,
                    max_width=size.width,
                    max_height=size.height,
                    format="jpeg",
                )
            except Exception as exc:
                logger.error("Failed to create %s size (%dx%d): %s", size.label, size.width, size.height, exc)
                continue
            results.append(ImageVariant(buffer=processed.buffer, label=size.label, info=processed))
        return results

    @staticmethod
    def generate_filename(original_name: str, format: str = "jpeg") -> str:
        """``{base}_{timestamp_ms}_{random6}.{format}``, base sanitised and lower-cased."""

        timestamp = int(time.time() * 1000)
        suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
        base_name = re.sub(r"[^a-zA-Z0-9]", "_", original_name.split(".")[0]).lower()
        return f"{base_name}_{timestamp}_{suffix}.{format}"

    async def _run(self, func: Callable[..., T], *args: object) -> T:
        try:
            return await self._pool.run(func, *args)
        except TimeoutError as exc:
            logger.error("Image worker queue timed out after %.1fs", self._settings.transcode_queue_timeout)
            raise ProcessingError("Failed to process image") from exc


# ------------------------------------------------------------------
# Helper functions (run on the worker pool)
# ------------------------------------------------------------------


def read_image_info(buffer: bytes) -> DecodedImageInfo:
    """Parse the image header without decoding pixel data."""

    with Image.open(io.BytesIO(buffer)) as img:
        fmt = (img.format or "").lower()
        width, height = img.size
        return DecodedImageInfo(
            format=_FORMAT_ALIASES.get(fmt, fmt),
            width=width,
            height=height,
            has_alpha=img.has_transparency_data,
        )


def inspect_image(buffer: bytes, max_dimension: int = 10000) -> ValidationResult:
    try:
        info = read_image_info(buffer)
    except Image.DecompressionBombError:
        # over 2x MAX_IMAGE_PIXELS, so at least one side is past the ceiling
        return ValidationResult(is_valid=False, error="Image dimensions too large")
    except Exception:
        return ValidationResult(is_valid=False, error="Failed to parse image")

    if info.format not in SUPPORTED_FORMATS:
        return ValidationResult(is_valid=False, error=f"Unsupported format: {info.format or 'unknown'}")
    if not info.width or not info.height:
        return ValidationResult(is_valid=False, error="Invalid image dimensions")
    if info.width > max_dimension or info.height > max_dimension:
        return ValidationResult(is_valid=False, error="Image dimensions too large")
    return ValidationResult(is_valid=True, info=info)


def choose_format(buffer: bytes) -> OutputFormat:
    """Pick webp for images with transparency, jpeg otherwise."""

    try:
        info = read_image_info(buffer)
    except Exception:
        return "jpeg"
    # WebP keeps transparency and compresses photos better than PNG
    return "webp" if info.has_alpha else "jpeg"


def transcode(buffer: bytes, format: str, quality: int, max_width: int, max_height: int) -> ProcessedImage:
    try:
        with Image.open(io.BytesIO(buffer)) as img:
            img.load()
            if img.width > max_width or img.height > max_height:
                # thumbnail() keeps the aspect ratio and never enlarges
                img.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
            data = _encode(img, format, quality)

        with Image.open(io.BytesIO(data)) as out:
            out_format = (out.format or format).lower()
            width, height = out.size
    except Exception as exc:
        logger.error(
            "Image processing error details: message=%s name=%s code=%s",
            exc,
            type(exc).__name__,
            getattr(exc, "errno", None),
            exc_info=True,
        )
        raise ProcessingError("Failed to process image") from exc

    return ProcessedImage(buffer=data, format=out_format, width=width, height=height, byte_size=len(data))


def _encode(img: Image.Image, format: str, quality: int) -> bytes:
    out = io.BytesIO()
    if format == "png":
        _to_palette(img, quality).save(out, format="PNG", compress_level=9, optimize=True)
    elif format == "webp":
        mode = "RGBA" if img.has_transparency_data else "RGB"
        img.convert(mode).save(out, format="WEBP", quality=quality)
    else:
        _flatten(img).save(out, format="JPEG", quality=quality, progressive=True, optimize=True)
    return out.getvalue()


def _flatten(img: Image.Image) -> Image.Image:
    """JPEG has no alpha channel; composite transparent pixels onto white."""

    if img.mode in ("RGB", "L"):
        return img
    if not img.has_transparency_data:
        return img.convert("RGB")
    rgba = img.convert("RGBA")
    background = Image.new("RGB", rgba.size, _WHITE)
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def _to_palette(img: Image.Image, quality: int) -> Image.Image:
    """Lossy PNG: fewer palette colours for lower quality, lossless at 100."""

    mode = "RGBA" if img.has_transparency_data else "RGB"
    converted = img.convert(mode)
    if quality >= 100:
        return converted
    colors = max(2, min(256, round(256 * quality / 100)))
    return converted.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
