from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, constr

from auditguard.api.deps import get_pipeline
from auditguard.core.pipeline import Pipeline
from auditguard.siem import SIEMEvent

router = APIRouter(prefix="/siem", tags=["siem"])


class SIEMEventIn(BaseModel):
    event_type: constr(strip_whitespace=True, min_length=1, max_length=128)
    event_name: constr(strip_whitespace=True, min_length=1, max_length=256)
    severity: Literal["info", "warning", "error", "critical"]
    source: str = "api"
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


@router.post("/events", status_code=202)
async def queue_event(payload: SIEMEventIn, pipeline: Pipeline = Depends(get_pipeline)):
    queued = await pipeline.siem.queue_event(SIEMEvent(**payload.model_dump()))
    return {"queued": queued, "queue_size": pipeline.siem.queue_size}


@router.post("/flush")
async def flush(pipeline: Pipeline = Depends(get_pipeline)):
    return (await pipeline.siem.flush()).to_dict()


@router.post("/retry")
async def retry_failed(pipeline: Pipeline = Depends(get_pipeline)):
    return (await pipeline.siem.retry_failed()).to_dict()


@router.get("/stats")
def siem_stats(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.siem.get_stats()
