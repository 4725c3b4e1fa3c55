"""
Endpoints de automação v2 - controle do pipeline de coleta.
"""
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, Request

from app.core.constants import CATEGORIES, SEARCH_KEYWORDS
from app.core.security import get_api_key
from app.schemas.v2.automation import (
    BulkUpdateRequest,
    BulkUpdateResponse,
    CleanupResponse,
    ControlResponse,
    DiscoveryRequest,
    JobResponse,
    JobScheduledResponse,
    StatusResponse,
    UpdateRequest,
)
from app.services.automation.context import AutomationContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automation", dependencies=[Depends(get_api_key)])


def get_automation(request: Request) -> AutomationContext:
    return request.app.state.automation


@router.post("/start", response_model=ControlResponse)
async def start_automation(ctx: AutomationContext = Depends(get_automation)) -> ControlResponse:
    """Inicia workers, scheduler e monitor de proxies (idempotente)."""
    return ControlResponse(**await ctx.start())


@router.post("/stop", response_model=ControlResponse)
async def stop_automation(ctx: AutomationContext = Depends(get_automation)) -> ControlResponse:
    """Para o pipeline (idempotente). Jobs pendentes permanecem na fila."""
    return ControlResponse(**await ctx.stop())


@router.get("/status", response_model=StatusResponse)
async def automation_status(ctx: AutomationContext = Depends(get_automation)) -> StatusResponse:
    return StatusResponse(**await ctx.status())


@router.post("/jobs/discovery", response_model=JobScheduledResponse)
async def schedule_discovery(
    request: DiscoveryRequest,
    ctx: AutomationContext = Depends(get_automation),
) -> JobScheduledResponse:
    job_id = await ctx.schedule_discovery(request.to_payload(), request.job_priority())
    return JobScheduledResponse(job_id=job_id, message=f"{request.type} discovery scheduled")


@router.post("/jobs/update", response_model=JobScheduledResponse)
async def schedule_update(
    request: UpdateRequest,
    ctx: AutomationContext = Depends(get_automation),
) -> JobScheduledResponse:
    job_id = await ctx.schedule_update(request.extension_id, request.job_priority())
    return JobScheduledResponse(job_id=job_id, message=f"update scheduled for {request.extension_id}")


@router.post("/jobs/bulk-update", response_model=BulkUpdateResponse)
async def bulk_update(
    request: BulkUpdateRequest,
    ctx: AutomationContext = Depends(get_automation),
) -> BulkUpdateResponse:
    job_ids = await ctx.bulk_schedule_updates(request.extension_ids, request.job_priority())
    return BulkUpdateResponse(
        job_ids=job_ids,
        count=len(job_ids),
        message=f"{len(job_ids)} updates scheduled",
    )


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, ctx: AutomationContext = Depends(get_automation)) -> JobResponse:
    """Detalhes de um job (404 se não existir)."""
    job = await ctx.get_job(job_id)
    return JobResponse(**job.to_dict())


@router.get("/queue/stats")
async def queue_stats(ctx: AutomationContext = Depends(get_automation)) -> Dict[str, int]:
    return await ctx.get_queue_stats()


@router.get("/queue/completed")
async def completed_stats(ctx: AutomationContext = Depends(get_automation)) -> dict:
    return await ctx.get_completed_jobs_stats()


@router.get("/categories")
async def list_categories() -> Dict[str, List[str]]:
    return {"categories": CATEGORIES}


@router.get("/keywords")
async def list_keywords() -> Dict[str, List[str]]:
    return {"keywords": SEARCH_KEYWORDS}


@router.get("/proxies/stats")
async def proxy_stats(ctx: AutomationContext = Depends(get_automation)) -> dict:
    return ctx.get_proxy_stats()


@router.get("/scraper/metrics")
async def scraper_metrics(ctx: AutomationContext = Depends(get_automation)) -> dict:
    return ctx.get_scraper_metrics()


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(ctx: AutomationContext = Depends(get_automation)) -> CleanupResponse:
    """Remove extensões com dados inválidos."""
    deleted = await ctx.cleanup_invalid_extensions()
    return CleanupResponse(deleted=deleted, message=f"{deleted} invalid extensions removed")
