from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Union

from genie_studio.config import settings
from genie_studio.domain.enums import ErrorKind, Modality, PollerState, SessionStatus
from genie_studio.domain.errors import GenerationError
from genie_studio.domain.jobs import Canceled, Completed, Failed, JobHandle, PollPolicy, Progress
from genie_studio.domain.models import PollOptions
from genie_studio.services.clock import Clock, MonotonicClock
from genie_studio.services.poller import JobStatusPoller
from genie_studio.services.result_resolver import ResultResolver
from genie_studio.services.submission import JobSubmissionAdapter

logger = logging.getLogger("generation_orchestrator")

SessionEvent = Union[Progress, Completed, Failed, Canceled]
TerminalEvent = Union[Completed, Failed, Canceled]
EventCallback = Callable[[SessionEvent], None]

CANCEL_REASON_CALLER = "canceled_by_caller"
CANCEL_REASON_SUPERSEDED = "superseded"
CANCEL_REASON_TEARDOWN = "surface_closed"
CANCEL_REASON_EVICTED = "evicted"


def default_policy(modality: Modality) -> PollPolicy:
    if modality == Modality.video:
        interval, timeout = settings.VIDEO_POLL_INTERVAL_SECONDS, settings.VIDEO_TIMEOUT_SECONDS
    elif modality == Modality.music:
        interval, timeout = settings.MUSIC_POLL_INTERVAL_SECONDS, settings.MUSIC_TIMEOUT_SECONDS
    else:
        interval, timeout = settings.IMAGE_POLL_INTERVAL_SECONDS, settings.IMAGE_TIMEOUT_SECONDS
    return PollPolicy(
        interval_seconds=interval,
        timeout_seconds=timeout,
        max_transient_failures=settings.MAX_TRANSIENT_POLL_FAILURES,
    )


def apply_poll_options(base: PollPolicy, options: Optional[PollOptions]) -> PollPolicy:
    if options is None:
        return base
    return PollPolicy(
        interval_seconds=(options.poll_interval_ms / 1000.0) if options.poll_interval_ms else base.interval_seconds,
        timeout_seconds=(options.timeout_ms / 1000.0) if options.timeout_ms else base.timeout_seconds,
        max_transient_failures=options.max_transient_failures or base.max_transient_failures,
    )


def _modality_label(request: Any) -> str:
    raw = request.get("modality") if isinstance(request, Mapping) else getattr(request, "modality", None)
    return str(getattr(raw, "value", raw) or "unknown")


# -----------------------------------------------------------------------------
# Subscription (what the UI layer holds)
# -----------------------------------------------------------------------------

class Subscription:
    """
    Zero or more Progress events followed by at most one terminal event.

    Events can be consumed by callback (on_event), by async iteration
    (stream()), or by awaiting the terminal event (wait()).
    """

    def __init__(
        self, session_id: str, surface: Optional[str], modality: str, on_event: Optional[EventCallback] = None
    ) -> None:
        self.session_id = session_id
        self.surface = surface
        self.modality = modality
        self.job_id: Optional[str] = None
        self.last_progress: Optional[Progress] = None
        self.outcome: Optional[TerminalEvent] = None
        self.history: List[SessionEvent] = []

        self._on_event = on_event
        self._done = asyncio.Event()
        self._listeners: List[asyncio.Queue] = []
        self._canceler: Optional[Callable[[str], bool]] = None

    @property
    def closed(self) -> bool:
        return self.outcome is not None

    @property
    def status(self) -> SessionStatus:
        if isinstance(self.outcome, Completed):
            return SessionStatus.completed
        if isinstance(self.outcome, Failed):
            return SessionStatus.failed
        if isinstance(self.outcome, Canceled):
            return SessionStatus.canceled
        return SessionStatus.polling if self.job_id else SessionStatus.submitting

    def _deliver(self, event: SessionEvent) -> bool:
        if self.closed:
            logger.debug(
                "event_dropped_after_terminal",
                extra={"session_id": self.session_id, "type": event.type.value},
            )
            return False

        if isinstance(event, Progress):
            self.last_progress = event
        else:
            self.outcome = event
            self._done.set()
        self.history.append(event)

        for q in self._listeners:
            q.put_nowait(event)
            if event.terminal:
                q.put_nowait(None)

        if self._on_event is not None:
            try:
                self._on_event(event)
            except Exception:
                logger.exception("subscriber_callback_failed", extra={"session_id": self.session_id})
        return True

    async def wait(self, timeout: Optional[float] = None) -> TerminalEvent:
        await asyncio.wait_for(self._done.wait(), timeout=timeout)
        return self.outcome

    async def stream(self) -> AsyncIterator[SessionEvent]:
        q: asyncio.Queue = asyncio.Queue()
        for event in self.history:
            q.put_nowait(event)
        if self.closed:
            q.put_nowait(None)
        else:
            self._listeners.append(q)
        try:
            while True:
                event = await q.get()
                if event is None:
                    return
                yield event
        finally:
            if q in self._listeners:
                self._listeners.remove(q)

    def cancel(self, reason: str = CANCEL_REASON_CALLER) -> bool:
        if self._canceler is None:
            return False
        return self._canceler(reason)


# -----------------------------------------------------------------------------
# Session (owned by the orchestrator)
# -----------------------------------------------------------------------------

class OrchestrationSession:
    def __init__(self, surface: Optional[str], subscription: Subscription) -> None:
        self.id = subscription.session_id
        self.surface = surface
        self.subscription = subscription
        self.handle: Optional[JobHandle] = None
        self.poller: Optional[JobStatusPoller] = None
        self.task: Optional[asyncio.Task] = None
        self.cancel_requested = False
        self.resolving = False

    @property
    def busy(self) -> bool:
        """A provider request is in flight and must be allowed to finish."""
        return self.resolving or (self.poller is not None and self.poller.in_flight)


# -----------------------------------------------------------------------------
# Facade
# -----------------------------------------------------------------------------

class GenerationOrchestrator:
    """
    Public entry point: start(request) -> Subscription.

    One session per outstanding request. Sessions started without a surface
    are independent; starting on a busy named surface cancels the previous
    session on it first. Every error is turned into a Failed(kind, detail)
    event; nothing raises past start() or cancel().
    """

    def __init__(
        self,
        submitter: JobSubmissionAdapter,
        resolver: ResultResolver,
        *,
        policies: Optional[Dict[Modality, PollPolicy]] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.submitter = submitter
        self.resolver = resolver
        self.policies = dict(policies or {})
        self.clock = clock or MonotonicClock()

        self._sessions: Dict[str, OrchestrationSession] = {}
        self._by_surface: Dict[str, str] = {}
        self._by_job: Dict[str, str] = {}

    # ---------------------------
    # lookup
    # ---------------------------
    def policy_for(self, modality: Modality, options: Union[PollOptions, PollPolicy, None] = None) -> PollPolicy:
        if isinstance(options, PollPolicy):
            return options
        base = self.policies.get(modality) or default_policy(modality)
        return apply_poll_options(base, options)

    def active_sessions(self) -> List[str]:
        return list(self._sessions)

    def session_for_surface(self, surface: str) -> Optional[str]:
        return self._by_surface.get(surface)

    def _find(self, key: str) -> Optional[OrchestrationSession]:
        sid = self._by_job.get(key, key)
        return self._sessions.get(sid)

    # ---------------------------
    # lifecycle
    # ---------------------------
    def _release(self, session: OrchestrationSession) -> None:
        self._sessions.pop(session.id, None)
        if session.surface is not None and self._by_surface.get(session.surface) == session.id:
            self._by_surface.pop(session.surface, None)
        if session.handle is not None and self._by_job.get(session.handle.id) == session.id:
            self._by_job.pop(session.handle.id, None)

    def _emit(self, session: OrchestrationSession, event: SessionEvent) -> None:
        if session.subscription._deliver(event) and event.terminal:
            self._release(session)
            logger.info(
                "session_finished",
                extra={
                    "session_id": session.id,
                    "job_id": session.subscription.job_id,
                    "type": event.type.value,
                    "surface": session.surface,
                },
            )

    def _cancel_session(self, session: OrchestrationSession, reason: str) -> bool:
        if session.subscription.closed:
            return False

        session.cancel_requested = True
        if session.poller is not None:
            session.poller.request_cancel()

        job_id = session.handle.id if session.handle else None
        self._emit(session, Canceled(job_id=job_id, reason=reason))

        # A pending sleep is interrupted now; an in-flight request finishes and is discarded.
        task = session.task
        if task is not None and not task.done() and not session.busy:
            task.cancel()
        return True

    def cancel(self, job_id: str) -> bool:
        """Cancel by job id (or session id). Local silence only: the provider job keeps running."""
        session = self._find(job_id)
        if session is None:
            return False
        return self._cancel_session(session, CANCEL_REASON_CALLER)

    async def close_surface(self, surface: str) -> None:
        sid = self._by_surface.get(surface)
        session = self._sessions.get(sid) if sid else None
        if session is None:
            return
        self._cancel_session(session, CANCEL_REASON_TEARDOWN)
        if session.task is not None:
            await asyncio.gather(session.task, return_exceptions=True)

    async def aclose(self) -> None:
        sessions = list(self._sessions.values())
        for session in sessions:
            self._cancel_session(session, CANCEL_REASON_TEARDOWN)
        tasks = [s.task for s in sessions if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---------------------------
    # start
    # ---------------------------
    async def start(
        self,
        request: Any,
        *,
        surface: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
        poll: Union[PollOptions, PollPolicy, None] = None,
    ) -> Subscription:
        if surface is not None:
            prior = self._sessions.get(self._by_surface.get(surface, ""))
            if prior is not None:
                logger.info("session_superseded", extra={"session_id": prior.id, "surface": surface})
                self._cancel_session(prior, CANCEL_REASON_SUPERSEDED)

        sub = Subscription(uuid.uuid4().hex, surface, _modality_label(request), on_event=on_event)
        session = OrchestrationSession(surface, sub)
        sub._canceler = lambda reason: self._cancel_session(session, reason)
        self._sessions[session.id] = session
        if surface is not None:
            self._by_surface[surface] = session.id

        try:
            handle = await self.submitter.submit(request)
            policy = self.policy_for(handle.modality, poll)
        except GenerationError as e:
            logger.warning("submit_failed", extra={"session_id": session.id, "kind": e.kind.value, "error": str(e)})
            self._emit(session, Failed(job_id=None, kind=e.kind, detail=str(e)))
            return sub
        except Exception as e:
            logger.exception("submit_unhandled_exception", extra={"session_id": session.id})
            self._emit(session, Failed(job_id=None, kind=ErrorKind.internal, detail=str(e) or type(e).__name__))
            return sub

        if session.cancel_requested:
            # The provider job exists but nobody is listening any more.
            logger.info("job_abandoned_after_cancel", extra={"session_id": session.id, "job_id": handle.id})
            return sub

        session.handle = handle
        sub.job_id = handle.id
        self._by_job[handle.id] = session.id
        provider = self.submitter.provider_for(handle.modality)
        session.poller = JobStatusPoller(handle, provider, policy, clock=self.clock)
        session.task = asyncio.create_task(self._run(session), name=f"generation-{session.id}")
        return sub

    async def _run(self, session: OrchestrationSession) -> None:
        assert session.handle is not None and session.poller is not None
        handle = session.handle

        def on_progress(event: Progress) -> None:
            self._emit(session, event)

        try:
            outcome = await session.poller.run(on_progress=on_progress)
            if outcome is None or session.cancel_requested:
                return

            if outcome.state == PollerState.succeeded:
                provider = self.submitter.provider_for(handle.modality)
                session.resolving = True
                try:
                    result = await self.resolver.resolve(outcome.raw_output, provider)
                finally:
                    session.resolving = False
                if session.cancel_requested:
                    return
                self._emit(session, Completed(job_id=handle.id, artifacts=result.artifacts, failures=result.failures))
            elif outcome.state == PollerState.canceled:
                self._emit(session, Canceled(job_id=handle.id, reason=outcome.detail or "job canceled by provider"))
            else:
                self._emit(
                    session,
                    Failed(
                        job_id=handle.id,
                        kind=outcome.error_kind or ErrorKind.internal,
                        detail=outcome.detail or "job failed",
                    ),
                )
        except GenerationError as e:
            self._emit(session, Failed(job_id=handle.id, kind=e.kind, detail=str(e)))
        except asyncio.CancelledError:
            if not session.cancel_requested:
                raise
        except Exception as e:
            logger.exception("session_unhandled_exception", extra={"session_id": session.id, "job_id": handle.id})
            self._emit(session, Failed(job_id=handle.id, kind=ErrorKind.internal, detail=str(e) or type(e).__name__))
        finally:
            if not session.subscription.closed:
                # Only reachable on an external task cancel (event loop shutdown).
                self._emit(session, Canceled(job_id=handle.id, reason=CANCEL_REASON_TEARDOWN))
            self._release(session)
