"""Operational endpoints: readiness and the Prometheus feed."""
from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/health", summary="Readiness probe")
async def admin_health() -> dict[str, str]:
    """Report that the task service is up; no database round trip."""
    return {"status": "ok"}


@router.get("/metrics", summary="Prometheus metrics feed")
async def admin_metrics() -> Response:
    """Expose HTTP, chat and live-session metrics in exposition format."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
