from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Union

from genie_studio.domain.enums import ErrorKind, JobState, PollerState
from genie_studio.domain.errors import GenerationError
from genie_studio.domain.jobs import JobHandle, JobStatus, PollPolicy, Progress
from genie_studio.services.clock import Clock, MonotonicClock
from genie_studio.services.providers.base import ProviderClient

logger = logging.getLogger("job_poller")


# -----------------------------------------------------------------------------
# State machine (pure)
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PollerMachine:
    state: PollerState = PollerState.idle
    started_at: Optional[float] = None
    deadline: Optional[float] = None
    polls: int = 0
    consecutive_failures: int = 0
    job_state: Optional[JobState] = None
    raw_output: Any = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class Tick:
    """Clock check at a tick boundary; only the timeout can fire."""


@dataclass(frozen=True)
class StatusObserved:
    status: JobStatus


@dataclass(frozen=True)
class PollFailed:
    error: GenerationError


Observation = Union[Started, Tick, StatusObserved, PollFailed]


def _check_deadline(m: PollerMachine, now: float, policy: PollPolicy) -> PollerMachine:
    if m.deadline is not None and now >= m.deadline:
        return replace(
            m,
            state=PollerState.timed_out,
            error_kind=ErrorKind.timed_out,
            detail=f"job did not finish within {policy.timeout_seconds:g}s ({m.polls} polls)",
        )
    return m


def transition(m: PollerMachine, obs: Observation, *, now: float, policy: PollPolicy) -> PollerMachine:
    """
    Next machine value for one observation. Terminal states absorb everything,
    which is what makes repeated polling after termination a no-op.
    """
    if m.state.is_terminal:
        return m

    if m.state == PollerState.idle:
        if isinstance(obs, Started):
            return replace(m, state=PollerState.polling, started_at=now, deadline=now + policy.timeout_seconds)
        return m

    # polling
    if isinstance(obs, StatusObserved):
        st = obs.status
        m = replace(m, polls=m.polls + 1, consecutive_failures=0, job_state=st.state)
        if st.state == JobState.succeeded:
            return replace(m, state=PollerState.succeeded, raw_output=st.raw_output)
        if st.state == JobState.failed:
            return replace(
                m,
                state=PollerState.failed,
                error_kind=ErrorKind.provider_failed,
                detail=st.error_detail or "provider reported failure",
            )
        if st.state == JobState.canceled:
            return replace(m, state=PollerState.canceled, detail=st.error_detail or "job canceled by provider")
        return _check_deadline(m, now, policy)

    if isinstance(obs, PollFailed):
        err = obs.error
        if err.kind != ErrorKind.transport:
            return replace(m, polls=m.polls + 1, state=PollerState.failed, error_kind=err.kind, detail=str(err))

        failures = m.consecutive_failures + 1
        m = replace(m, polls=m.polls + 1, consecutive_failures=failures)
        if failures >= policy.max_transient_failures:
            return replace(
                m,
                state=PollerState.failed,
                error_kind=ErrorKind.polling_exhausted,
                detail=f"{failures} consecutive status checks failed; last error: {err}",
            )
        return _check_deadline(m, now, policy)

    return _check_deadline(m, now, policy)


def next_tick_after(prev_due: float, interval: float, now: float) -> float:
    """
    First interval boundary strictly after `now`. Boundaries that passed
    while a request was in flight are skipped, not queued.
    """
    elapsed = max(0.0, now - prev_due)
    return prev_due + (math.floor(elapsed / interval) + 1) * interval


# -----------------------------------------------------------------------------
# Driver
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PollOutcome:
    state: PollerState
    polls: int
    raw_output: Any = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None


ProgressCallback = Callable[[Progress], None]


class JobStatusPoller:
    """
    Polls one job handle until a terminal state, a timeout or a local cancel.

    Cooperative: each tick is one await on the provider; ticks never overlap.
    A cancel requested while a status request is in flight lets that request
    finish and discards its result.
    """

    def __init__(
        self,
        handle: JobHandle,
        provider: ProviderClient,
        policy: PollPolicy,
        clock: Optional[Clock] = None,
    ) -> None:
        self.handle = handle
        self.provider = provider
        self.policy = policy
        self.clock = clock or MonotonicClock()

        self._machine = PollerMachine()
        self._outcome: Optional[PollOutcome] = None
        self._cancel_requested = False
        self._in_flight = False
        self._running = False

    @property
    def machine(self) -> PollerMachine:
        return self._machine

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def outcome(self) -> Optional[PollOutcome]:
        return self._outcome

    def request_cancel(self) -> None:
        self._cancel_requested = True

    def _apply(self, obs: Observation) -> None:
        before = self._machine.state
        self._machine = transition(self._machine, obs, now=self.clock.now(), policy=self.policy)
        if self._machine.state != before:
            logger.info(
                "poller_transition",
                extra={
                    "job_id": self.handle.id,
                    "modality": self.handle.modality.value,
                    "from": before.value,
                    "to": self._machine.state.value,
                    "polls": self._machine.polls,
                },
            )

    async def run(self, on_progress: Optional[ProgressCallback] = None) -> Optional[PollOutcome]:
        """
        Returns the terminal outcome, or None when canceled locally.
        Calling run() again after termination returns the same outcome without polling.
        """
        if self._outcome is not None:
            return self._outcome
        if self._cancel_requested:
            return None
        if self._running:
            raise RuntimeError(f"poller for job {self.handle.id} is already running")

        self._running = True
        try:
            self._apply(Started())
            next_due = self.clock.now() + self.policy.interval_seconds

            while True:
                if self._cancel_requested:
                    return None

                self._apply(Tick())
                if self._machine.state.is_terminal:
                    break

                now = self.clock.now()
                wake_at = min(next_due, self._machine.deadline or next_due)
                if wake_at > now:
                    await self.clock.sleep(wake_at - now)
                    continue

                self._in_flight = True
                try:
                    status = await self.provider.get_status(self.handle.id)
                    obs: Observation = StatusObserved(status)
                except GenerationError as e:
                    logger.warning(
                        "poll_failed",
                        extra={"job_id": self.handle.id, "kind": e.kind.value, "error": str(e)},
                    )
                    obs = PollFailed(e)
                finally:
                    self._in_flight = False

                if self._cancel_requested:
                    return None

                self._apply(obs)
                if self._machine.state.is_terminal:
                    break

                if isinstance(obs, StatusObserved) and on_progress is not None:
                    on_progress(Progress(job_id=self.handle.id, state=obs.status.state, poll_count=self._machine.polls))

                now = self.clock.now()
                following = next_tick_after(next_due, self.policy.interval_seconds, now)
                skipped = int(round((following - next_due) / self.policy.interval_seconds)) - 1
                if skipped > 0:
                    logger.debug("poll_ticks_skipped", extra={"job_id": self.handle.id, "skipped": skipped})
                next_due = following
        finally:
            self._running = False

        m = self._machine
        self._outcome = PollOutcome(
            state=m.state,
            polls=m.polls,
            raw_output=m.raw_output,
            error_kind=m.error_kind,
            detail=m.detail,
        )
        return self._outcome
