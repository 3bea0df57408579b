"""Tests for image validation, format negotiation, transcoding and variants."""

from __future__ import annotations

import io
import asyncio
import logging
import random
import re
import struct
import time
import zlib

import pytest
from PIL import Image

from minishelf.errors import ProcessingError
from minishelf.models import SizePreset
from minishelf.services import image_processing
from minishelf.services.image_processing import (
    ImageProcessingService,
    choose_format,
    inspect_image,
    transcode,
)


def _random_bytes(n: int = 512) -> bytes:
    rng = random.Random(1234)
    return b"not an image" + bytes(rng.getrandbits(8) for _ in range(n))


def _png_header(width: int, height: int) -> bytes:
    """A PNG whose IHDR claims the given size; no real pixel data behind it."""

    def chunk(kind: bytes, body: bytes) -> bytes:
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body))

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", b"\x00" * 16) + chunk(b"IEND", b"")


def _size_of(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as img:
        return img.size


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class TestInspectImage:
    @pytest.mark.parametrize(
        ("fmt", "mode", "color", "expected"),
        [
            ("JPEG", "RGB", (10, 20, 30), "jpeg"),
            ("PNG", "RGB", (10, 20, 30), "png"),
            ("WEBP", "RGB", (10, 20, 30), "webp"),
            ("GIF", "P", 3, "gif"),
        ],
    )
    def test_supported_formats_are_valid(self, image_factory, fmt, mode, color, expected) -> None:
        result = inspect_image(image_factory(fmt, (120, 80), mode, color))
        assert result.is_valid is True
        assert result.error is None
        assert result.info is not None
        assert result.info.format == expected
        assert (result.info.width, result.info.height) == (120, 80)

    def test_random_bytes_fail_to_parse(self) -> None:
        result = inspect_image(_random_bytes())
        assert result.is_valid is False
        assert result.error == "Failed to parse image"

    def test_empty_buffer_fails_to_parse(self) -> None:
        result = inspect_image(b"")
        assert result.is_valid is False
        assert result.error == "Failed to parse image"

    def test_unsupported_format(self, image_factory) -> None:
        result = inspect_image(image_factory("BMP"))
        assert result.is_valid is False
        assert result.error == "Unsupported format: bmp"

    @pytest.mark.parametrize("size", [(10001, 10), (10, 10001)])
    def test_dimensions_too_large(self, image_factory, size) -> None:
        result = inspect_image(image_factory("PNG", size, "L", 0))
        assert result.is_valid is False
        assert result.error == "Image dimensions too large"

    def test_huge_header_is_too_large_not_unparseable(self) -> None:
        result = inspect_image(_png_header(20000, 20000))
        assert result.is_valid is False
        assert result.error == "Image dimensions too large"

    def test_ceiling_is_inclusive(self, image_factory) -> None:
        assert inspect_image(image_factory("PNG", (10000, 1), "L", 0)).is_valid is True

    def test_custom_ceiling(self, image_factory) -> None:
        result = inspect_image(image_factory("PNG", (300, 200)), max_dimension=256)
        assert result.error == "Image dimensions too large"

    def test_alpha_is_reported(self, image_factory) -> None:
        result = inspect_image(image_factory("PNG", (20, 20), "RGBA", (0, 0, 0, 0)))
        assert result.info is not None
        assert result.info.has_alpha is True


# ---------------------------------------------------------------------------
# Format negotiator
# ---------------------------------------------------------------------------


class TestChooseFormat:
    def test_opaque_image_prefers_jpeg(self, image_factory) -> None:
        assert choose_format(image_factory("PNG", (20, 20))) == "jpeg"

    def test_alpha_prefers_webp(self, image_factory) -> None:
        assert choose_format(image_factory("PNG", (20, 20), "RGBA", (10, 10, 10, 128))) == "webp"

    def test_undecodable_defaults_to_jpeg(self) -> None:
        assert choose_format(_random_bytes()) == "jpeg"


# ---------------------------------------------------------------------------
# Transcoder
# ---------------------------------------------------------------------------


class TestTranscode:
    def test_fit_inside_preserves_aspect_ratio(self, image_factory) -> None:
        processed = transcode(image_factory("JPEG", (2000, 1000)), "jpeg", 80, 100, 100)
        assert processed.width <= 100
        assert processed.height <= 100
        assert processed.width / processed.height == pytest.approx(2.0, rel=0.05)

    def test_never_upscales(self, image_factory) -> None:
        processed = transcode(image_factory("PNG", (50, 40)), "jpeg", 80, 800, 600)
        assert (processed.width, processed.height) == (50, 40)

    def test_reports_codec_output(self, image_factory) -> None:
        processed = transcode(image_factory("PNG", (300, 300)), "jpeg", 70, 120, 120)
        assert processed.format == "jpeg"
        assert processed.byte_size == len(processed.buffer)
        assert _size_of(processed.buffer) == (processed.width, processed.height)

    def test_png_keeps_transparency(self, image_factory) -> None:
        processed = transcode(image_factory("PNG", (64, 64), "RGBA", (0, 255, 0, 100)), "png", 80, 32, 32)
        assert processed.format == "png"
        assert (processed.width, processed.height) == (32, 32)
        with Image.open(io.BytesIO(processed.buffer)) as img:
            assert img.has_transparency_data

    def test_webp_output(self, image_factory) -> None:
        processed = transcode(image_factory("PNG", (64, 64), "RGBA", (0, 0, 255, 50)), "webp", 80, 2048, 2048)
        assert processed.format == "webp"

    def test_jpeg_flattens_alpha(self, image_factory) -> None:
        processed = transcode(image_factory("PNG", (16, 16), "RGBA", (0, 0, 0, 0)), "jpeg", 90, 100, 100)
        with Image.open(io.BytesIO(processed.buffer)) as img:
            assert img.mode == "RGB"
            # Fully transparent pixels end up white
            assert all(channel > 240 for channel in img.getpixel((8, 8)))

    def test_unknown_format_falls_back_to_jpeg(self, image_factory) -> None:
        processed = transcode(image_factory("PNG", (20, 20)), "tiff", 80, 100, 100)
        assert processed.format == "jpeg"

    def test_gif_source_is_transcoded(self, image_factory) -> None:
        processed = transcode(image_factory("GIF", (400, 200), "P", 5), "jpeg", 80, 100, 100)
        assert (processed.width, processed.height) == (100, 50)

    def test_undecodable_raises_processing_error(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="minishelf.services.image_processing"):
            with pytest.raises(ProcessingError) as excinfo:
                transcode(_random_bytes(), "jpeg", 80, 100, 100)
        assert excinfo.value.message == "Failed to process image"
        assert "Image processing error details" in caplog.text

    def test_codec_failure_hides_internals(self, image_factory, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken_encoder(*args: object) -> bytes:
            raise OSError("encoder error -2 when writing image file")

        monkeypatch.setattr(image_processing, "_encode", broken_encoder)
        with pytest.raises(ProcessingError) as excinfo:
            transcode(image_factory(), "jpeg", 80, 100, 100)
        assert str(excinfo.value) == "Failed to process image"
        assert isinstance(excinfo.value.__cause__, OSError)


# ---------------------------------------------------------------------------
# Service (worker pool) and responsive variants
# ---------------------------------------------------------------------------


class TestImageProcessingService:
    async def test_process_image_uses_configured_defaults(self, images: ImageProcessingService, image_factory) -> None:
        processed = await images.process_image(image_factory("JPEG", (4096, 1024)))
        assert (processed.width, processed.height) == (2048, 512)
        assert processed.format == "jpeg"

    async def test_validate_and_negotiate_run_on_pool(self, images: ImageProcessingService, image_factory) -> None:
        data = image_factory("PNG", (30, 30), "RGBA", (1, 2, 3, 4))
        assert (await images.validate_image(data)).is_valid is True
        assert await images.get_optimal_format(data) == "webp"

    @pytest.mark.parametrize("method", ["validate_image", "get_optimal_format", "process_image"])
    async def test_saturated_pool_is_processing_error(
        self, settings, busy_pool, image_factory, method: str
    ) -> None:
        service = ImageProcessingService(settings, busy_pool)
        holder = asyncio.create_task(busy_pool.run(time.sleep, 1))
        await asyncio.sleep(0.05)
        with pytest.raises(ProcessingError, match="Failed to process image"):
            await getattr(service, method)(image_factory())
        await holder

    async def test_default_variants(self, images: ImageProcessingService, image_factory) -> None:
        variants = await images.create_responsive_sizes(image_factory("JPEG", (3000, 2000)))
        assert [v.label for v in variants] == ["thumbnail", "medium", "large"]
        boxes = [(150, 150), (800, 600), (1920, 1080)]
        for variant, (box_w, box_h) in zip(variants, boxes):
            assert variant.info.format == "jpeg"
            assert variant.info.width <= box_w
            assert variant.info.height <= box_h
            assert variant.buffer == variant.info.buffer

    async def test_failed_variant_is_skipped(
        self, images: ImageProcessingService, image_factory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        original = images.process_image

        async def flaky(buffer: bytes, **kwargs: object):
            if kwargs["max_width"] == 800:
                raise ProcessingError("Failed to process image")
            return await original(buffer, **kwargs)

        monkeypatch.setattr(images, "process_image", flaky)
        variants = await images.create_responsive_sizes(image_factory("JPEG", (1000, 1000)))
        assert [v.label for v in variants] == ["thumbnail", "large"]

    async def test_custom_presets_keep_order(self, images: ImageProcessingService, image_factory) -> None:
        sizes = [SizePreset(width=64, height=64, label="b"), SizePreset(width=32, height=32, label="a")]
        variants = await images.create_responsive_sizes(image_factory("PNG", (128, 128)), sizes)
        assert [(v.label, v.info.width) for v in variants] == [("b", 64), ("a", 32)]

    async def test_all_variants_failing_returns_empty(self, images: ImageProcessingService) -> None:
        assert await images.create_responsive_sizes(_random_bytes()) == []


class TestGenerateFilename:
    def test_scheme(self) -> None:
        name = ImageProcessingService.generate_filename("My Photo!.final.PNG", "webp")
        assert re.fullmatch(r"my_photo__\d{13}_[0-9a-z]{6}\.webp", name)

    def test_defaults_to_jpeg(self) -> None:
        assert ImageProcessingService.generate_filename("a.png").endswith(".jpeg")

    def test_names_are_unique(self) -> None:
        names = {ImageProcessingService.generate_filename("same.jpg") for _ in range(50)}
        assert len(names) == 50
