from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, constr

from auditguard.api.deps import get_pipeline
from auditguard.core.errors import RuleConfigError
from auditguard.core.pipeline import Pipeline

router = APIRouter(prefix="/breach", tags=["breach"])


class ReportIn(BaseModel):
    pattern: constr(strip_whitespace=True, min_length=1, max_length=128)
    details: Dict[str, Any] = Field(default_factory=dict)


@router.post("/report")
async def report_event(payload: ReportIn, pipeline: Pipeline = Depends(get_pipeline)):
    detection = await pipeline.report_event(payload.pattern, payload.details or None)
    return {
        "detected": detection is not None,
        "blocked": pipeline.detector.is_blocked(payload.pattern),
        "detection": detection.to_dict() if detection else None,
    }


@router.get("/rules")
def list_rules(pipeline: Pipeline = Depends(get_pipeline)):
    det = pipeline.detector
    return [{**r.model_dump(), "custom": det.is_custom(r.id)} for r in det.get_rules()]


@router.get("/rules/{rule_id}")
def get_rule(rule_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    rule = pipeline.detector.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="rule not found")
    return rule.model_dump()


@router.post("/rules", status_code=201)
async def add_rule(payload: Dict[str, Any], pipeline: Pipeline = Depends(get_pipeline)):
    try:
        rule = await pipeline.detector.add_rule(payload)
    except RuleConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return rule.model_dump()


@router.patch("/rules/{rule_id}")
async def update_rule(rule_id: str, payload: Dict[str, Any], pipeline: Pipeline = Depends(get_pipeline)):
    try:
        rule = await pipeline.detector.update_rule(rule_id, payload)
    except RuleConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if rule is None:
        raise HTTPException(status_code=404, detail="rule not found")
    return rule.model_dump()


@router.delete("/rules/{rule_id}")
async def remove_rule(rule_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    if not await pipeline.detector.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail="rule not found or built-in")
    return {"ok": True}


@router.get("/detections")
def recent_detections(limit: int = Query(100, ge=1, le=1000), pipeline: Pipeline = Depends(get_pipeline)):
    return [d.to_dict() for d in pipeline.detector.get_recent_detections(limit)]


@router.get("/blocked")
def blocked(pattern: Optional[str] = None, pipeline: Pipeline = Depends(get_pipeline)):
    det = pipeline.detector
    if pattern is None:
        return {"patterns": det.get_blocked_patterns()}
    return {"pattern": pattern, "blocked": det.is_blocked(pattern)}


@router.delete("/blocked")
def unblock(pattern: str = Query(..., min_length=1), pipeline: Pipeline = Depends(get_pipeline)):
    return {"pattern": pattern, "unblocked": pipeline.detector.unblock(pattern)}


@router.get("/stats")
def breach_stats(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.detector.get_stats()
