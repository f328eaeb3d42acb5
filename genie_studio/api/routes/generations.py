from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from genie_studio.api.deps import RequireGenerationEnabled, get_orchestrator, get_subscriptions
from genie_studio.api.session_store import SubscriptionStore
from genie_studio.domain.jobs import Canceled, Completed, Failed
from genie_studio.domain.models import ArtifactFailureView, ArtifactView, GenerationStart, GenerationView
from genie_studio.services.orchestrator import GenerationOrchestrator, Subscription

logger = logging.getLogger("generations")

router = APIRouter(prefix="/generations", tags=["generations"])


def to_view(sub: Subscription) -> GenerationView:
    view = GenerationView(
        session_id=sub.session_id,
        surface=sub.surface,
        modality=sub.modality,
        status=sub.status.value,
        job_id=sub.job_id,
    )
    if sub.last_progress is not None:
        view.job_state = sub.last_progress.state.value
        view.poll_count = sub.last_progress.poll_count

    outcome = sub.outcome
    if isinstance(outcome, Completed):
        view.job_state = "succeeded"
        view.artifacts = [ArtifactView(**a.to_dict()) for a in outcome.artifacts]
        view.failures = [ArtifactFailureView(**f.to_dict()) for f in outcome.failures]
    elif isinstance(outcome, Failed):
        view.error_kind = outcome.kind.value
        view.error_detail = outcome.detail
    elif isinstance(outcome, Canceled):
        view.cancel_reason = outcome.reason
    return view


def _require(store: SubscriptionStore, session_id: str) -> Subscription:
    sub = store.get(session_id)
    if sub is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
    return sub


@router.post(
    "",
    dependencies=[RequireGenerationEnabled],
    response_model=GenerationView,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_generation(
    body: GenerationStart,
    orch: GenerationOrchestrator = Depends(get_orchestrator),
    store: SubscriptionStore = Depends(get_subscriptions),
) -> GenerationView:
    sub = await orch.start(body.request, surface=body.surface, poll=body.poll)
    store.add(sub)
    logger.info(
        "generation_started",
        extra={"session_id": sub.session_id, "job_id": sub.job_id, "modality": sub.modality, "surface": sub.surface},
    )
    return to_view(sub)


@router.get("/{session_id}", dependencies=[RequireGenerationEnabled], response_model=GenerationView)
async def get_generation(
    session_id: str,
    store: SubscriptionStore = Depends(get_subscriptions),
) -> GenerationView:
    return to_view(_require(store, session_id))


@router.delete("/{session_id}", dependencies=[RequireGenerationEnabled], response_model=GenerationView)
async def cancel_generation(
    session_id: str,
    store: SubscriptionStore = Depends(get_subscriptions),
) -> GenerationView:
    sub = _require(store, session_id)
    if not sub.cancel():
        logger.info("cancel_ignored", extra={"session_id": session_id, "status": sub.status.value})
    return to_view(sub)


async def _sse(sub: Subscription) -> AsyncIterator[str]:
    async for event in sub.stream():
        yield f"event: {event.type.value}\ndata: {json.dumps(event.to_dict())}\n\n"


@router.get("/{session_id}/events", dependencies=[RequireGenerationEnabled])
async def stream_generation(
    session_id: str,
    store: SubscriptionStore = Depends(get_subscriptions),
) -> StreamingResponse:
    """
    Server-sent events: replays what already happened, then follows the session
    until its terminal event and closes.
    """
    sub = _require(store, session_id)
    return StreamingResponse(
        _sse(sub),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
