from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from auditguard.metrics import METRICS_REGISTRY

router = APIRouter()


@router.get("/metrics")
async def metrics():
    # only the pipeline registry, not the process-wide default one
    return Response(content=generate_latest(METRICS_REGISTRY), media_type=CONTENT_TYPE_LATEST)
