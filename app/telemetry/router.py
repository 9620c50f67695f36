"""GET /metrics: Prometheus exposition for the per-app registry."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["telemetry"])


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    recorder = request.app.state.recorder
    return Response(generate_latest(recorder.registry), media_type=CONTENT_TYPE_LATEST)
