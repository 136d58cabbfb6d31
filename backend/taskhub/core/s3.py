"""MinIO client helpers for storing uploaded task files."""
from __future__ import annotations

from urllib.parse import urlparse, urlunparse

from minio import Minio

from .config import settings


def get_minio_client() -> Minio:
    """Return a configured MinIO client."""
    return Minio(
        settings.MINIO_ENDPOINT,
        access_key=settings.MINIO_ACCESS_KEY,
        secret_key=settings.MINIO_SECRET_KEY,
        secure=settings.MINIO_SECURE,
    )


def externalize_url(url: str) -> str:
    """Rewrite a presigned URL to use the configured public MinIO endpoint."""

    public_endpoint = settings.MINIO_PUBLIC_ENDPOINT
    if not public_endpoint:
        return url

    normalized_endpoint = (
        public_endpoint
        if "://" in public_endpoint
        else f"https://{public_endpoint}"
    )
    parsed_public = urlparse(normalized_endpoint)
    netloc = parsed_public.netloc or parsed_public.path
    if not netloc:
        return url

    parsed_url = urlparse(url)
    scheme = parsed_public.scheme or parsed_url.scheme or "https"
    base_path = parsed_public.path.rstrip("/")
    path = f"{base_path}{parsed_url.path}" if base_path else parsed_url.path

    return urlunparse(
        parsed_url._replace(
            scheme=scheme,
            netloc=netloc,
            path=path,
        )
    )
