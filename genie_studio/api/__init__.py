from __future__ import annotations

from fastapi import APIRouter

from genie_studio.api.health import router as health_router
from genie_studio.api.routes.chat import router as chat_router
from genie_studio.api.routes.generations import router as generations_router
from genie_studio.api.routes.storage import router as storage_router


def build_router() -> APIRouter:
    r = APIRouter()
    r.include_router(health_router)
    r.include_router(generations_router)
    r.include_router(storage_router)
    r.include_router(chat_router)
    return r
