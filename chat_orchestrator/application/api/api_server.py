from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chat_orchestrator.application.api.route.chat import router as chat_router
from chat_orchestrator.application.container import build_orchestrator
from chat_orchestrator.domain.orchestration.core.chat_orchestrator import ChatOrchestrator
from chat_orchestrator.infrastructure.config.settings import ChatSettings, get_settings
from chat_orchestrator.infrastructure.llm.langchain_model import LangChainModelClient, build_chat_model
from chat_orchestrator.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(
    orchestrator: Optional[ChatOrchestrator] = None,
    settings: Optional[ChatSettings] = None
) -> FastAPI:
    """Build the HTTP app around one orchestrator instance"""

    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = orchestrator
        if active is None:
            model = LangChainModelClient(build_chat_model(settings.model_name, settings.model_provider))
            active = build_orchestrator(settings, model)
        app.state.orchestrator = active

        store = active.store
        if settings.preload_conversations and store.long_term_memory:
            await store.preload_recent()
        store.start_sweeper()
        logger.info("Chat server started", service=settings.service_name)

        yield

        await store.close()
        logger.info("Chat server stopped")

    app = FastAPI(title="Chat Orchestrator", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.get("/health")
    async def health():
        stats = app.state.orchestrator.store.get_stats() if hasattr(app.state, "orchestrator") else {}
        return {"status": "healthy", **stats, "metrics": metrics.get_metrics_summary()}

    return app
