from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from genie_studio.config import settings

router = APIRouter(prefix="/health", tags=["health"])

_STARTED_AT = time.time()


@router.get("")
@router.get("/")
async def health() -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "service": os.getenv("SERVICE_NAME", "genie-studio"),
        "version": os.getenv("SERVICE_VERSION", os.getenv("GIT_SHA", "dev")),
        "time_utc": now.isoformat(),
        "uptime_s": round(time.time() - _STARTED_AT, 3),
    }


@router.get("/ready")
async def ready(request: Request) -> Dict[str, Any]:
    orch = getattr(request.app.state, "orchestrator", None)
    return {
        "status": "ready" if orch is not None else "starting",
        "generation_enabled": settings.GENERATION_ENABLED,
        "chat_enabled": settings.CHAT_ENABLED,
        "active_sessions": len(orch.active_sessions()) if orch is not None else 0,
    }
