import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from app.api.v2.router import router as v2_router
from app.core.constants import VERSION
from app.core.database import close_pool
from app.core.logging_utils import setup_logging
from app.services.automation.context import AutomationContext
from app.services.automation.errors import InvalidPayload, JobNotFound, QueueUnavailable

# Configurar Logging (JSON Structured)
setup_logging()
logger = logging.getLogger(__name__)


def create_app(context: Optional[AutomationContext] = None) -> FastAPI:
    """
    Cria a aplicação. Sem contexto explícito, o AutomationContext é montado
    no startup a partir das variáveis de ambiente.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        app.state.automation = context or await AutomationContext.from_settings()
        logger.info("🚀 Aplicação inicializada com sucesso")
        try:
            yield
        finally:
            if owned:
                await app.state.automation.close()
                await close_pool()
            logger.info("👋 Aplicação finalizada")

    app = FastAPI(title="Chrome Web Store Collector", version=VERSION, lifespan=lifespan)

    # --- Global Exception Handlers ---

    @app.exception_handler(JobNotFound)
    async def job_not_found_handler(request: Request, exc: JobNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidPayload)
    async def invalid_payload_handler(request: Request, exc: InvalidPayload):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(QueueUnavailable)
    async def queue_unavailable_handler(request: Request, exc: QueueUnavailable):
        logger.error(f"Fila indisponível: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Job queue unavailable"})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global Error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error", "error": str(exc)}
        )

    @app.get("/health")
    async def health(request: Request):
        ctx: AutomationContext = request.app.state.automation
        return {"status": "ok", "version": VERSION, "automation_running": ctx.running}

    app.include_router(v2_router, prefix="/v2")
    return app


app = create_app()
