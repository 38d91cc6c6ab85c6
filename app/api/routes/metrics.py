from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from app.dependencies.tickets import AdminUser
from app.metrics import PrometheusExporter, metrics_registry

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", response_class=PlainTextResponse)
async def export_metrics(_: AdminUser) -> str:
    return PrometheusExporter(metrics_registry).build_payload()
