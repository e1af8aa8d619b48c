"""Metrics Endpoint.

Exposes Prometheus metrics for scraping.
"""

from fastapi import APIRouter
from fastapi.responses import Response

from trustcore.common.metrics import get_metrics, get_metrics_content_type
from trustcore.core.config import settings

router = APIRouter()


@router.get(
    settings.metrics_path,
    summary="Prometheus metrics",
    description="Returns application metrics in Prometheus format",
    response_class=Response,
)
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
