"""
School Knowledge Assistant - FastAPI Application Entry Point.

Feature-based modular architecture:
  Each feature in kb_assistant/features/ has its own router, service and schemas.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kb_assistant.background.scheduler import init_scheduler, shutdown_scheduler
from kb_assistant.background.sync_tasks import shutdown_sync_executor
from kb_assistant.config import get_settings
from kb_assistant.core.dependencies import close_file_source
from kb_assistant.core.exceptions import AppBaseError, app_error_body, status_code_for

# ── Feature Routers ──────────────────────────────────────
from kb_assistant.features.knowledge.router import router as knowledge_router

logger = logging.getLogger(__name__)


def configure_logging():
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup & shutdown."""
    settings = get_settings()
    logger.info(f"🚀 {settings.APP_NAME} v{settings.APP_VERSION} starting...")
    logger.info(f"🤖 LLM Provider: {settings.LLM_PROVIDER} ({settings.LLM_MODEL})")
    logger.info(f"🧮 Embeddings: {settings.EMBEDDING_PROVIDER} ({settings.EMBEDDING_MODEL})")
    logger.info(f"🗄️ Store backend: {settings.KB_STORE_BACKEND}")
    init_scheduler()
    yield
    logger.info("👋 Shutting down...")
    shutdown_scheduler()
    shutdown_sync_executor(wait=False)
    close_file_source()


async def app_error_handler(request: Request, exc: AppBaseError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message} ({exc.detail})")
    return JSONResponse(status_code=status_code, content={"detail": app_error_body(exc)})


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Ассистент учителя: база знаний учебных программ и RAG-чат",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppBaseError, app_error_handler)

    # ── Register Feature Routers ─────────────────────────
    app.include_router(knowledge_router, prefix="/api/knowledge", tags=["Knowledge"])

    # ── Health Check ─────────────────────────────────────
    @app.get("/health", tags=["System"])
    async def health_check():
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

    return app


app = create_app()
