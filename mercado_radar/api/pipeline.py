"""API routes for manual pipeline triggers."""

import logging
from datetime import date

from fastapi import APIRouter, BackgroundTasks, HTTPException
from pydantic import BaseModel

from mercado_radar.config import get_settings

router = APIRouter(prefix="/pipeline", tags=["pipeline"])

logger = logging.getLogger(__name__)


class TriggerResponse(BaseModel):
    status: str
    target_date: date | None
    message: str


class RunRequest(BaseModel):
    target_date: date | None = None
    notify: bool | None = None


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_pipeline(background_tasks: BackgroundTasks, body: RunRequest | None = None):
    """Start a run in the background; returns immediately."""
    body = body or RunRequest()
    settings = get_settings()
    missing = settings.missing_required()
    if missing:
        raise HTTPException(
            status_code=400,
            detail=f"Missing configuration: {', '.join(missing)}",
        )

    async def _background_run():
        from mercado_radar.pipeline import run_pipeline

        report = await run_pipeline(body.target_date, notify=body.notify)
        logger.info(
            "Background run for %s finished: success=%s", report.target_date, report.success
        )

    background_tasks.add_task(_background_run)
    return TriggerResponse(
        status="started",
        target_date=body.target_date,
        message="Pipeline run started in background.",
    )


@router.post("/run")
async def run_pipeline_sync(body: RunRequest | None = None):
    """Run the pipeline and wait for the report (debugging; may take minutes)."""
    from mercado_radar.pipeline import run_pipeline

    body = body or RunRequest()
    report = await run_pipeline(body.target_date, notify=body.notify)
    if not report.success:
        raise HTTPException(status_code=500, detail=report.as_dict())
    return report.as_dict()


@router.get("/status")
async def pipeline_status():
    settings = get_settings()
    missing = settings.missing_required()
    return {
        "scheduler_enabled": settings.scheduler_enabled,
        "schedule": f"{settings.scheduler_hour:02d}:{settings.scheduler_minute:02d} {settings.timezone}",
        "notifications_enabled": settings.notifications_enabled,
        "configured": not missing,
        "missing": missing,
    }
