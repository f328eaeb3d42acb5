from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from genie_studio.api.session_store import SubscriptionStore
from genie_studio.config import settings
from genie_studio.services.chat_service import ChatService
from genie_studio.services.orchestrator import GenerationOrchestrator
from genie_studio.services.result_resolver import ResultResolver


def check_generation_enabled() -> bool:
    if not settings.GENERATION_ENABLED:
        raise HTTPException(status_code=403, detail="generation_disabled")
    return True


def check_chat_enabled() -> bool:
    if not settings.CHAT_ENABLED:
        raise HTTPException(status_code=403, detail="chat_disabled")
    return True


RequireGenerationEnabled = Depends(check_generation_enabled)
RequireChatEnabled = Depends(check_chat_enabled)


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.orchestrator


def get_subscriptions(request: Request) -> SubscriptionStore:
    return request.app.state.subscriptions


def get_resolver(request: Request) -> ResultResolver:
    return request.app.state.orchestrator.resolver


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat
