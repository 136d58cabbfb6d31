"""Blob upload endpoint backed by MinIO."""
from __future__ import annotations

import io
import logging
import mimetypes
import re
import uuid
from datetime import timedelta

from fastapi import APIRouter, File, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from ..core.config import settings
from ..core.errors import TaskHubError, ValidationFailure
from ..core.s3 import externalize_url, get_minio_client
from .common import require_user_id

logger = logging.getLogger(__name__)
router = APIRouter()

FILENAME_CLEANER = re.compile(r"[^A-Za-z0-9._-]+")
ALLOWED_UPLOAD_TYPES = {value.lower() for value in settings.UPLOAD_ALLOWED_MIME_TYPES}


class PayloadTooLarge(TaskHubError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    reason = "payload_too_large"
    default_detail = "Uploaded file exceeds size limit"


def _normalize_filename(filename: str | None) -> str:
    base = (filename or "").strip()
    if not base:
        return "file"
    cleaned = FILENAME_CLEANER.sub("_", base)
    return cleaned.strip("._") or "file"


def _resolve_content_type(filename: str, provided: str | None) -> str:
    content_type = (provided or "").split(";", 1)[0].strip().lower()
    if not content_type or content_type == "application/octet-stream":
        guessed, _ = mimetypes.guess_type(filename)
        content_type = (guessed or "application/octet-stream").lower()
    if content_type not in ALLOWED_UPLOAD_TYPES:
        raise ValidationFailure("Unsupported file type")
    return content_type


def _build_object_key(user_id: uuid.UUID, filename: str) -> str:
    return f"uploads/{user_id}/{uuid.uuid4()}/{filename}"


def _store_object(object_key: str, data: bytes, content_type: str) -> str:
    client = get_minio_client()
    if not client.bucket_exists(settings.MINIO_BUCKET):
        client.make_bucket(settings.MINIO_BUCKET)
    client.put_object(
        settings.MINIO_BUCKET,
        object_key,
        io.BytesIO(data),
        len(data),
        content_type=content_type,
    )
    return client.presigned_get_object(
        settings.MINIO_BUCKET,
        object_key,
        expires=timedelta(hours=settings.UPLOAD_URL_EXPIRE_HOURS),
    )


@router.post("/upload", summary="Upload a file for a task or gallery")
async def upload_file(request: Request, file: UploadFile = File(...)) -> dict[str, str]:
    """Store the file in the blob store and return a retrievable URL."""

    user_id = require_user_id(request)
    filename = _normalize_filename(file.filename)
    content_type = _resolve_content_type(filename, file.content_type)

    data = await file.read(settings.UPLOAD_MAX_BYTES + 1)
    if not data:
        raise ValidationFailure("Uploaded file is empty")
    if len(data) > settings.UPLOAD_MAX_BYTES:
        raise PayloadTooLarge()

    object_key = _build_object_key(user_id, filename)
    url = await run_in_threadpool(_store_object, object_key, data, content_type)

    logger.info("Stored upload %s (%s bytes) for user %s", object_key, len(data), user_id)
    return {"url": externalize_url(url), "type": content_type}
