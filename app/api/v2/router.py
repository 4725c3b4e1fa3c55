"""
Router principal para API v2.
Agrupa todos os endpoints v2 em um único router.
"""
from fastapi import APIRouter
from app.api.v2 import automation

# Criar router principal
router = APIRouter()

# Endpoint de health check e documentação
@router.get("/")
async def v2_root():
    """Endpoint raiz da API v2 - lista endpoints disponíveis"""
    return {
        "version": "v2",
        "status": "ok",
        "endpoints": {
            "start": "POST /v2/automation/start",
            "stop": "POST /v2/automation/stop",
            "status": "GET /v2/automation/status",
            "schedule_discovery": "POST /v2/automation/jobs/discovery",
            "schedule_update": "POST /v2/automation/jobs/update",
            "bulk_update": "POST /v2/automation/jobs/bulk-update",
            "job_details": "GET /v2/automation/jobs/{job_id}",
            "queue_stats": "GET /v2/automation/queue/stats",
            "completed_stats": "GET /v2/automation/queue/completed",
            "categories": "GET /v2/automation/categories",
            "keywords": "GET /v2/automation/keywords",
            "proxy_stats": "GET /v2/automation/proxies/stats",
            "scraper_metrics": "GET /v2/automation/scraper/metrics",
            "cleanup": "POST /v2/automation/cleanup",
        },
        "docs": "/docs"
    }

# Incluir todos os routers v2
router.include_router(automation.router, tags=["v2-automation"])

__all__ = ["router"]
