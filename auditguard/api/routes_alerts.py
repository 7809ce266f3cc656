from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, constr

from auditguard.api.deps import get_pipeline
from auditguard.core.pipeline import Pipeline

router = APIRouter(prefix="/alerts", tags=["alerts"])


class AlertIn(BaseModel):
    severity: Literal["info", "warning", "error", "critical"]
    title: constr(strip_whitespace=True, min_length=1, max_length=256)
    message: str = ""
    source: constr(strip_whitespace=True, min_length=1, max_length=128) = "api"
    details: Optional[Dict[str, Any]] = None


@router.post("")
async def send_alert(payload: AlertIn, pipeline: Pipeline = Depends(get_pipeline)):
    alert = await pipeline.alerts.send_alert(
        payload.severity, payload.title, payload.message, payload.source, payload.details,
    )
    return {"sent": alert is not None, "alert": alert.to_dict() if alert else None}


@router.get("/recent")
def recent_alerts(limit: int = Query(50, ge=1, le=1000), pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.alerts.recent(limit=limit)


@router.get("/stats")
def alert_stats(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.alerts.get_stats()
