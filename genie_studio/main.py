from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from genie_studio.api import build_router
from genie_studio.api.errors import register_error_handlers
from genie_studio.api.session_store import SubscriptionStore
from genie_studio.config import settings
from genie_studio.logging import configure_logging
from genie_studio.services.chat_service import ChatService
from genie_studio.services.orchestrator import GenerationOrchestrator
from genie_studio.services.providers.registry import default_registry
from genie_studio.services.result_resolver import ResultResolver, default_signers
from genie_studio.services.submission import JobSubmissionAdapter

logger = logging.getLogger("genie_studio")


def build_orchestrator() -> GenerationOrchestrator:
    return GenerationOrchestrator(
        JobSubmissionAdapter(default_registry()),
        ResultResolver(default_signers()),
    )


def create_app(
    *,
    orchestrator: Optional[GenerationOrchestrator] = None,
    chat: Optional[ChatService] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        app.state.orchestrator = orchestrator or build_orchestrator()
        app.state.chat = chat or ChatService()
        app.state.subscriptions = SubscriptionStore(settings.MAX_RETAINED_SESSIONS)
        logger.info("service_started", extra={"generation_enabled": settings.GENERATION_ENABLED})
        try:
            yield
        finally:
            await app.state.orchestrator.aclose()
            logger.info("service_stopped")

    app = FastAPI(
        title=os.getenv("SERVICE_NAME", "genie-studio"),
        version=os.getenv("SERVICE_VERSION", os.getenv("GIT_SHA", "dev")),
        docs_url=os.getenv("DOCS_URL", "/docs"),
        redoc_url=os.getenv("REDOC_URL", "/redoc"),
        openapi_url=os.getenv("OPENAPI_URL", "/openapi.json"),
        lifespan=lifespan,
    )

    app.include_router(build_router())
    register_error_handlers(app)

    @app.get("/")
    async def root():
        return {"service": os.getenv("SERVICE_NAME", "genie-studio"), "status": "ok"}

    return app


app = create_app()
