from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from minishelf.config import Settings, get_settings
from minishelf.errors import UploadError
from minishelf.handlers import upload_handler
from minishelf.services.firebase_app import get_bucket
from minishelf.services.image_processing import ImageProcessingService
from minishelf.services.storage import StorageService
from minishelf.services.upload import UploadService
from minishelf.services.worker_pool import ImageWorkerPool

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from google.cloud.storage import Bucket

logger = logging.getLogger(__name__)


def init_services(app: FastAPI, settings: Settings, bucket: Bucket) -> None:
    """Wire the pipeline services onto ``app.state``."""

    pool = ImageWorkerPool(settings)
    images = ImageProcessingService(settings, pool)
    storage = StorageService(bucket, settings)
    app.state.settings = settings
    app.state.worker_pool = pool
    app.state.upload_service = UploadService(settings, images, storage)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(
        "Starting minishelf uploads (bucket=%s, emulator=%s, workers=%s)",
        settings.bucket_name,
        settings.use_storage_emulator,
        settings.max_concurrent_transcodes,
    )
    init_services(app, settings, get_bucket(settings))
    yield
    logger.info("Shutting down minishelf uploads")
    app.state.worker_pool.shutdown()


async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    # Server-side errors already carry a generic message; details were logged where they were raised.
    if exc.is_client_error:
        logger.info("Error %s: %s", exc.status_code, exc.message)
    else:
        logger.error("Error %s: %s", exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {"message": exc.message},
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
            "method": request.method,
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return await upload_error_handler(request, UploadError("Internal Server Error", 500))


def create_app() -> FastAPI:
    application = FastAPI(title="minishelf uploads", lifespan=lifespan)
    application.include_router(upload_handler.router)
    application.add_exception_handler(UploadError, upload_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    @application.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    return application


app = create_app()
