# auditguard/api/routes_events.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, constr

from auditguard.api.deps import get_pipeline
from auditguard.core.pipeline import Pipeline
from auditguard.ledger import EventFilters
from auditguard.ledger.models import ActorType, EventCategory, Outcome

router = APIRouter(prefix="/events", tags=["events"])

_Str64 = constr(strip_whitespace=True, min_length=1, max_length=64)
_Str128 = constr(strip_whitespace=True, min_length=1, max_length=128)


class ActorIn(BaseModel):
    type: ActorType = "system"
    id: Optional[str] = None
    ip: Optional[str] = None


class ResourceIn(BaseModel):
    type: _Str64
    id: Optional[str] = None


class EventIn(BaseModel):
    category: EventCategory
    event_type: _Str128
    actor: ActorIn = Field(default_factory=ActorIn)
    outcome: Outcome = "success"
    resource: Optional[ResourceIn] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    failure_reason: Optional[str] = None
    retention_days: Optional[int] = Field(None, ge=1)


class SealIn(BaseModel):
    reason: _Str128


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_event(payload: EventIn, pipeline: Pipeline = Depends(get_pipeline)):
    event = await pipeline.append(
        payload.category,
        payload.event_type,
        payload.actor.model_dump(),
        payload.outcome,
        resource=payload.resource.model_dump() if payload.resource else None,
        details=payload.details,
        failure_reason=payload.failure_reason,
        retention_days=payload.retention_days,
    )
    if event is None:
        raise HTTPException(status_code=503, detail="ledger unavailable or write refused")
    return event.to_dict()


@router.get("")
def list_events(
    category: Optional[str] = None,
    event_type: Optional[str] = None,
    outcome: Optional[str] = None,
    actor_id: Optional[str] = None,
    since: Optional[str] = Query(None, description="ISO-8601, inclusive"),
    until: Optional[str] = Query(None, description="ISO-8601, inclusive"),
    limit: int = Query(100, ge=1, le=1000),
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[Dict[str, Any]]:
    filters = EventFilters(
        category=category, event_type=event_type, outcome=outcome,
        actor_id=actor_id, since=since, until=until,
    )
    return [e.to_dict() for e in pipeline.ledger.query(filters, limit=limit)]


@router.get("/verify")
def verify_events(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.ledger.verify_integrity().to_dict()


@router.get("/stats")
def events_stats(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.ledger.get_stats()


@router.post("/seal")
async def seal_segment(payload: SealIn, pipeline: Pipeline = Depends(get_pipeline)):
    event = await pipeline.ledger.seal_segment(payload.reason, {"type": "admin"})
    if event is None:
        raise HTTPException(status_code=503, detail="ledger unavailable or write refused")
    return {"ok": True, "event": event.to_dict()}
