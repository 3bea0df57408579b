"""Shared fixtures: in-memory bucket, Pillow-generated images, wired services."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import pytest
from PIL import Image

from minishelf.config import Settings
from minishelf.services.image_processing import ImageProcessingService
from minishelf.services.storage import StorageService
from minishelf.services.upload import UploadService
from minishelf.services.worker_pool import ImageWorkerPool

if TYPE_CHECKING:
    from collections.abc import Iterator


def make_image(
    fmt: str = "JPEG",
    size: tuple[int, int] = (64, 48),
    mode: str = "RGB",
    color: tuple[int, ...] | int = (200, 40, 40),
) -> bytes:
    """Encode a solid-colour image with Pillow."""
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeBlob:
    def __init__(self, bucket: FakeBucket, name: str) -> None:
        self._bucket = bucket
        self.name = name
        self.metadata: dict[str, str] | None = None

    def upload_from_string(self, data: bytes, content_type: str | None = None) -> None:
        if self._bucket.fail_upload:
            raise ConnectionError("upload refused")
        self._bucket.objects[self.name] = {
            "data": data,
            "content_type": content_type,
            "metadata": dict(self.metadata or {}),
        }

    def make_public(self) -> None:
        if self._bucket.fail_make_public:
            raise PermissionError("acl update denied")
        self._bucket.public.add(self.name)

    def delete(self) -> None:
        if self._bucket.fail_delete:
            raise ConnectionError("delete refused")
        self._bucket.objects.pop(self.name, None)
        self._bucket.deleted.append(self.name)

    def exists(self) -> bool:
        if self._bucket.fail_exists:
            raise ConnectionError("metadata lookup failed")
        return self.name in self._bucket.objects


class FakeBucket:
    """Just enough of ``google.cloud.storage.Bucket`` for the gateway."""

    def __init__(self, name: str = "test-bucket") -> None:
        self.name = name
        self.objects: dict[str, dict] = {}
        self.public: set[str] = set()
        self.deleted: list[str] = []
        self.fail_upload = False
        self.fail_make_public = False
        self.fail_delete = False
        self.fail_exists = False

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self, name)


@pytest.fixture()
def settings() -> Settings:
    return Settings(storage_bucket="test-bucket", max_concurrent_transcodes=2, transcode_queue_timeout=10.0)


@pytest.fixture()
def pool(settings: Settings) -> Iterator[ImageWorkerPool]:
    worker_pool = ImageWorkerPool(settings)
    yield worker_pool
    worker_pool.shutdown()


@pytest.fixture()
def busy_pool() -> Iterator[ImageWorkerPool]:
    """One slot and a short queue timeout, for saturation tests."""
    worker_pool = ImageWorkerPool(
        Settings(storage_bucket="test-bucket", max_concurrent_transcodes=1, transcode_queue_timeout=0.2)
    )
    yield worker_pool
    worker_pool.shutdown()


@pytest.fixture()
def bucket() -> FakeBucket:
    return FakeBucket()


@pytest.fixture()
def images(settings: Settings, pool: ImageWorkerPool) -> ImageProcessingService:
    return ImageProcessingService(settings, pool)


@pytest.fixture()
def storage(settings: Settings, bucket: FakeBucket) -> StorageService:
    return StorageService(bucket, settings)  # type: ignore[arg-type]


@pytest.fixture()
def upload_service(settings: Settings, images: ImageProcessingService, storage: StorageService) -> UploadService:
    return UploadService(settings, images, storage)


@pytest.fixture()
def image_factory():
    return make_image
