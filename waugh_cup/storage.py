"""Team logo files.

A stored logo is a plain filename under ``static/uploads`` or, when
``GCS_LOGO_BUCKET`` is set, an object key prefixed with ``gcs:``. Team rows
keep that reference and templates call ``logo_url`` to turn it into a link.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

from . import config
from .database import UPLOAD_DIR

ALLOWED_LOGO_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp"}
BUCKET_PREFIX = "gcs:"
BUCKET_FOLDER = "logos"
LOCAL_URL_ROOT = "/static/uploads"

logger = logging.getLogger(__name__)


def logo_filename(team_id: int, original_name: str) -> str:
    suffix = Path(original_name or "").suffix.lower()
    if suffix not in ALLOWED_LOGO_SUFFIXES:
        raise ValueError(f"Logos must be one of: {', '.join(sorted(ALLOWED_LOGO_SUFFIXES))}.")
    # Random tail so a replaced logo never hits a stale cache entry.
    return f"team-{team_id}-{uuid4().hex[:8]}{suffix}"


def logo_url(reference: str | None) -> str | None:
    if not reference:
        return None
    if not reference.startswith(BUCKET_PREFIX):
        return f"{LOCAL_URL_ROOT}/{reference}"
    key = reference[len(BUCKET_PREFIX) :].lstrip("/")
    if not config.GCS_LOGO_BUCKET:
        logger.warning("Logo %s lives in a bucket but GCS_LOGO_BUCKET is unset", key)
        return None
    root = config.GCS_LOGO_BASE_URL or f"https://storage.googleapis.com/{config.GCS_LOGO_BUCKET}"
    return f"{root.rstrip('/')}/{key}"


def save_logo(handle: BinaryIO, *, team_id: int, original_name: str, content_type: str) -> str:
    """Store an uploaded logo and return the reference to keep on the team.

    Raises ``ValueError`` for file types that are not images.
    """
    filename = logo_filename(team_id, original_name)
    if config.GCS_LOGO_BUCKET:
        key = f"{BUCKET_FOLDER}/{filename}"
        _upload_to_bucket(handle, key, content_type)
        logger.info("Uploaded logo for team %s to bucket %s", team_id, config.GCS_LOGO_BUCKET)
        return f"{BUCKET_PREFIX}{key}"

    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    (UPLOAD_DIR / filename).write_bytes(handle.read())
    logger.info("Saved logo for team %s as %s", team_id, filename)
    return filename


def _upload_to_bucket(handle: BinaryIO, key: str, content_type: str) -> None:
    try:
        from google.cloud import storage
    except ImportError as exc:  # pragma: no cover - installed with the gcs extra
        raise RuntimeError("Install the gcs extra to store logos in a bucket.") from exc

    blob = storage.Client().bucket(config.GCS_LOGO_BUCKET).blob(key)
    if config.GCS_LOGO_CACHE_CONTROL:
        blob.cache_control = config.GCS_LOGO_CACHE_CONTROL
    blob.upload_from_file(handle, content_type=content_type, rewind=True)
