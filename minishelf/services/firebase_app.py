"""Firebase Admin SDK bootstrap.

Initialises the default Firebase app exactly once and hands out the
Cloud Storage bucket used for uploads.  Three credential sources are
supported, checked in order:

1. ``GOOGLE_APPLICATION_CREDENTIALS`` pointing at a service-account file,
2. the same variable holding the JSON document itself,
3. application default credentials (Cloud Run workload identity).

With ``USE_STORAGE_EMULATOR=true`` no credentials are needed: the SDK is
pointed at the local Firebase Storage emulator under a demo project.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from typing import TYPE_CHECKING

import firebase_admin
from firebase_admin import credentials, storage
from google.auth.credentials import AnonymousCredentials

if TYPE_CHECKING:
    from google.cloud.storage import Bucket

    from minishelf.config import Settings

logger = logging.getLogger(__name__)

EMULATOR_PROJECT_ID = "demo-project"

_init_lock = threading.Lock()


def _load_credentials(settings: Settings) -> credentials.Base:
    raw = settings.firebase_credentials_json
    if raw:
        # Accept path or JSON string
        if raw.endswith(".json"):
            return credentials.Certificate(raw)
        return credentials.Certificate(json.loads(raw))
    return credentials.ApplicationDefault()


def initialize_firebase(settings: Settings) -> firebase_admin.App:
    """Return the default Firebase app, creating it on first use."""

    with _init_lock:
        if firebase_admin._apps:  # type: ignore[attr-defined]
            return firebase_admin.get_app()

        if settings.use_storage_emulator:
            # google-cloud-storage reads this when building its client
            os.environ["STORAGE_EMULATOR_HOST"] = f"http://{settings.storage_emulator_host}"
            os.environ.setdefault("GCLOUD_PROJECT", EMULATOR_PROJECT_ID)
            app = firebase_admin.initialize_app(
                _EmulatorCredential(),
                {"projectId": EMULATOR_PROJECT_ID, "storageBucket": settings.bucket_name},
            )
            logger.info("Firebase initialised for storage emulator at %s", settings.storage_emulator_host)
            return app

        try:
            app = firebase_admin.initialize_app(
                _load_credentials(settings),
                {"projectId": settings.project_id, "storageBucket": settings.bucket_name},
            )
        except Exception as exc:  # pragma: no cover
            logger.exception("Failed to initialise Firebase Admin SDK: %s", exc)
            raise
        logger.info("Firebase Admin SDK initialised (bucket=%s)", settings.bucket_name)
        return app


def get_bucket(settings: Settings) -> Bucket:
    app = initialize_firebase(settings)
    return storage.bucket(settings.bucket_name, app=app)


class _EmulatorCredential(credentials.Base):
    """The emulator accepts unauthenticated requests."""

    def get_credential(self):
        return AnonymousCredentials()
