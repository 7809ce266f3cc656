from fastapi import APIRouter, Depends

from auditguard.api.deps import get_pipeline
from auditguard.core.pipeline import Pipeline

router = APIRouter()

SECRET_KEYS = {"SIEM_API_KEY", "ALERT_WEBHOOK_HEADERS", "ALERT_WEBHOOK_URL"}


@router.get("/_debug/config")
def debug_config(pipeline: Pipeline = Depends(get_pipeline)):
    data = pipeline.settings.model_dump()
    env = {k: v for k, v in data.items() if k not in SECRET_KEYS}
    env.update({k: bool(data.get(k)) for k in SECRET_KEYS})
    return {
        "env": env,
        "note": "Secrets are reported as configured/not configured only.",
    }


@router.get("/_debug/alerts")
def list_recent_alerts(limit: int = 50, pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.alerts.recent(limit=limit)


@router.get("/version")
def version(pipeline: Pipeline = Depends(get_pipeline)):
    return {"app": "auditguard", "version": pipeline.settings.APP_VERSION}
