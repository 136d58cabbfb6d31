"""Application configuration powered by Pydantic settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    PROJECT_NAME: str = Field(default="TaskHub")
    VERSION: str = Field(default="0.1.0")

    DATABASE_URL: str = Field(default="postgresql+psycopg://postgres:postgres@db:5432/postgres")

    JWT_SECRET: str = Field(default="change-me")
    JWT_ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60 * 24)
    BCRYPT_ROUNDS: int = Field(default=12)

    FRONTEND_URL: str | None = Field(default=None)
    CORS_ALLOW_ORIGINS: tuple[str, ...] = Field(default=("*",))

    MINIO_ENDPOINT: str = Field(default="minio:9000")
    MINIO_ACCESS_KEY: str = Field(default="minioadmin")
    MINIO_SECRET_KEY: str = Field(default="minioadmin")
    MINIO_BUCKET: str = Field(default="taskhub")
    MINIO_SECURE: bool = Field(default=False)
    MINIO_PUBLIC_ENDPOINT: str | None = Field(default=None)

    UPLOAD_MAX_BYTES: int = Field(default=25 * 1024 * 1024)
    UPLOAD_URL_EXPIRE_HOURS: int = Field(default=24 * 7)
    UPLOAD_ALLOWED_MIME_TYPES: tuple[str, ...] = Field(
        default=(
            "image/jpeg",
            "image/png",
            "audio/mpeg",
            "video/mp4",
            "application/pdf",
        )
    )

    RATE_LIMIT_LOGIN: str = Field(default="20/minute")
    RATE_LIMIT_REGISTER: str = Field(default="10/minute")
    RATE_LIMIT_CHAT_POST: str = Field(default="60/minute")

    CHAT_MESSAGE_MAX_LENGTH: int = Field(default=4000)
    CHAT_EMOJI_MAX_LENGTH: int = Field(default=32)

    REALTIME_SEND_QUEUE_SIZE: int = Field(default=256)
    REALTIME_SEND_TIMEOUT: float = Field(default=5.0)
    REALTIME_REVALIDATE_TOKEN: bool = Field(default=True)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> Settings:
    """Return cached settings instance to avoid repeated parsing."""

    if overrides:
        return Settings(**overrides)
    return Settings()


settings = get_settings()
