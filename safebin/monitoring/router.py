"""Routes serving Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

router = APIRouter(tags=["Monitoring"])


@router.get("/metrics", include_in_schema=False)
def metrics(request: Request) -> Response:
    """Expose collected metrics for Prometheus scraping."""

    payload = request.app.state.trash_service.metrics.render_prometheus()
    return Response(content=payload, media_type="text/plain; version=0.0.4")
