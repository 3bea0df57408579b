#!/usr/bin/env python
"""Run a local image file through the upload pipeline.

Handy for smoke-testing a bucket or the storage emulator:

    USE_STORAGE_EMULATOR=true python scripts/upload_image.py photo.jpg \
        --user_id u1 --type avatar --responsive
"""
from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
from pathlib import Path

from minishelf.config import get_settings
from minishelf.errors import UploadError
from minishelf.models import IncomingFile
from minishelf.services.firebase_app import get_bucket
from minishelf.services.image_processing import ImageProcessingService
from minishelf.services.storage import StorageService
from minishelf.services.upload import UploadService
from minishelf.services.worker_pool import ImageWorkerPool


async def run(args: argparse.Namespace) -> list[dict]:
    settings = get_settings()
    pool = ImageWorkerPool(settings)
    service = UploadService(
        settings,
        ImageProcessingService(settings, pool),
        StorageService(get_bucket(settings), settings),
    )
    try:
        path = Path(args.file)
        data = path.read_bytes()
        incoming = IncomingFile(
            buffer=data,
            original_filename=path.name,
            mime_type=mimetypes.guess_type(path.name)[0] or "application/octet-stream",
            declared_size=len(data),
        )
        request = service.validate_upload_request(
            args.user_id,
            {
                "type": args.type,
                "collectionId": args.collection_id,
                "modelId": args.model_id,
                "description": args.description,
                "tags": args.tags,
            },
        )
        if args.responsive:
            results = await service.upload_responsive_images(incoming, request)
        else:
            results = [await service.upload_image(incoming, request)]
        return [r.model_dump(mode="json") for r in results]
    finally:
        pool.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(description="Upload an image through the minishelf pipeline")
    parser.add_argument("file")
    parser.add_argument("--user_id", required=True)
    parser.add_argument("--type", default="avatar", choices=["avatar", "collection-thumbnail", "model-image"])
    parser.add_argument("--collection_id")
    parser.add_argument("--model_id")
    parser.add_argument("--description")
    parser.add_argument("--tags", help="Comma-separated tags")
    parser.add_argument("--responsive", action="store_true", help="Upload thumbnail/medium/large variants")
    args = parser.parse_args()

    try:
        results = asyncio.run(run(args))
    except UploadError as exc:
        raise SystemExit(f"Upload failed ({exc.status_code}): {exc.message}") from exc
    print(json.dumps(results, indent=2))


if __name__ == "__main__":
    main()
