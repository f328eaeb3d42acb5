import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeClock, FakeProvider, running, settle, succeeded
from genie_studio.domain.enums import ErrorKind, JobState, Modality, PollerState
from genie_studio.domain.errors import ProviderRejected, TransportError
from genie_studio.domain.jobs import JobHandle, JobStatus, OutputItem, PollPolicy
from genie_studio.services.poller import (
    JobStatusPoller,
    PollerMachine,
    PollFailed,
    Started,
    StatusObserved,
    Tick,
    next_tick_after,
    transition,
)

POLICY = PollPolicy(interval_seconds=3, timeout_seconds=10, max_transient_failures=3)


def _handle(job_id: str = "job-1") -> JobHandle:
    return JobHandle(id=job_id, modality=Modality.image, submitted_at=datetime.now(timezone.utc), provider="fake")


# ---------------------------
# pure transitions
# ---------------------------

def test_started_sets_deadline():
    m = transition(PollerMachine(), Started(), now=100.0, policy=POLICY)
    assert m.state == PollerState.polling
    assert m.deadline == 110.0


def test_terminal_state_absorbs_observations():
    m = transition(PollerMachine(), Started(), now=0.0, policy=POLICY)
    m = transition(m, StatusObserved(JobStatus(state=JobState.succeeded, raw_output=["x"])), now=1.0, policy=POLICY)
    assert m.state == PollerState.succeeded

    again = transition(m, StatusObserved(JobStatus(state=JobState.failed, error_detail="late")), now=2.0, policy=POLICY)
    assert again is m
    assert transition(m, Tick(), now=999.0, policy=POLICY) is m


def test_terminal_status_is_accepted_past_deadline():
    m = transition(PollerMachine(), Started(), now=0.0, policy=POLICY)
    m = transition(m, StatusObserved(JobStatus(state=JobState.succeeded, raw_output=[1])), now=50.0, policy=POLICY)
    assert m.state == PollerState.succeeded


def test_running_status_past_deadline_times_out():
    m = transition(PollerMachine(), Started(), now=0.0, policy=POLICY)
    m = transition(m, StatusObserved(running()), now=10.0, policy=POLICY)
    assert m.state == PollerState.timed_out
    assert m.error_kind == ErrorKind.timed_out


def test_successful_status_resets_transient_counter():
    m = transition(PollerMachine(), Started(), now=0.0, policy=POLICY)
    m = transition(m, PollFailed(TransportError("boom")), now=1.0, policy=POLICY)
    m = transition(m, PollFailed(TransportError("boom")), now=2.0, policy=POLICY)
    assert m.consecutive_failures == 2
    m = transition(m, StatusObserved(running()), now=3.0, policy=POLICY)
    assert m.consecutive_failures == 0
    assert m.state == PollerState.polling


def test_non_transport_error_fails_immediately():
    m = transition(PollerMachine(), Started(), now=0.0, policy=POLICY)
    m = transition(m, PollFailed(ProviderRejected("unknown prediction")), now=1.0, policy=POLICY)
    assert m.state == PollerState.failed
    assert m.error_kind == ErrorKind.provider_rejected


def test_next_tick_skips_missed_boundaries():
    assert next_tick_after(1003.0, 3.0, 1003.5) == 1006.0
    assert next_tick_after(1003.0, 3.0, 1010.0) == 1012.0
    assert next_tick_after(1003.0, 3.0, 1000.0) == 1006.0


# ---------------------------
# driver
# ---------------------------

@pytest.mark.asyncio
async def test_poller_succeeds_and_reports_progress(clock):
    provider = FakeProvider([running(), running(), succeeded(OutputItem(uri="https://x/1.png"))])
    progress = []
    poller = JobStatusPoller(_handle(), provider, POLICY, clock=clock)

    outcome = await poller.run(on_progress=progress.append)

    assert outcome.state == PollerState.succeeded
    assert outcome.polls == 3
    assert [p.poll_count for p in progress] == [1, 2]
    assert all(p.state == JobState.running for p in progress)


@pytest.mark.asyncio
async def test_first_poll_waits_one_interval(clock):
    provider = FakeProvider([succeeded(OutputItem(uri="https://x/1.png"))])
    poller = JobStatusPoller(_handle(), provider, POLICY, clock=clock)

    await poller.run()

    assert clock.sleeps[0] == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_never_terminal_job_times_out_and_stops_polling(clock):
    provider = FakeProvider()
    poller = JobStatusPoller(_handle(), provider, POLICY, clock=clock)

    outcome = await poller.run()

    assert outcome.state == PollerState.timed_out
    assert outcome.error_kind == ErrorKind.timed_out
    calls = provider.status_calls
    assert calls == 3  # t+3, t+6, t+9; the deadline at t+10 fires before t+12

    assert await poller.run() is outcome
    assert provider.status_calls == calls


@pytest.mark.asyncio
async def test_three_transient_failures_exhaust_polling(clock):
    provider = FakeProvider([TransportError("502"), TransportError("502"), TransportError("502"), running()])
    poller = JobStatusPoller(_handle(), provider, PollPolicy(3, 600, max_transient_failures=3), clock=clock)

    outcome = await poller.run()

    assert outcome.state == PollerState.failed
    assert outcome.error_kind == ErrorKind.polling_exhausted
    assert provider.status_calls == 3


@pytest.mark.asyncio
async def test_transient_failures_below_limit_recover(clock):
    provider = FakeProvider(
        [TransportError("reset"), TransportError("reset"), succeeded(OutputItem(uri="https://x/a.mp3"))]
    )
    poller = JobStatusPoller(_handle(), provider, PollPolicy(3, 600, max_transient_failures=3), clock=clock)

    outcome = await poller.run()

    assert outcome.state == PollerState.succeeded
    assert provider.status_calls == 3


@pytest.mark.asyncio
async def test_provider_failure_carries_detail(clock):
    provider = FakeProvider([JobStatus(state=JobState.failed, error_detail="NSFW content detected")])
    outcome = await JobStatusPoller(_handle(), provider, POLICY, clock=clock).run()

    assert outcome.state == PollerState.failed
    assert outcome.error_kind == ErrorKind.provider_failed
    assert outcome.detail == "NSFW content detected"


@pytest.mark.asyncio
async def test_provider_cancel_is_terminal(clock):
    provider = FakeProvider([JobStatus(state=JobState.canceled, error_detail="canceled in dashboard")])
    outcome = await JobStatusPoller(_handle(), provider, POLICY, clock=clock).run()

    assert outcome.state == PollerState.canceled
    assert outcome.detail == "canceled in dashboard"


@pytest.mark.asyncio
async def test_slow_status_checks_skip_ticks_instead_of_queueing():
    clock = FakeClock()
    provider = FakeProvider([running(), succeeded(OutputItem(uri="https://x/1.png"))], tick_cost=7.0, clock=clock)
    poller = JobStatusPoller(_handle(), provider, PollPolicy(3, 600), clock=clock)

    await poller.run()

    # poll 1 at t+3 returns at t+10; boundaries t+6 and t+9 are skipped, poll 2 at t+12.
    assert clock.sleeps == [pytest.approx(3.0), pytest.approx(2.0)]
    assert provider.status_calls == 2


@pytest.mark.asyncio
async def test_cancel_between_ticks_stops_polling(manual_clock):
    provider = FakeProvider()
    poller = JobStatusPoller(_handle(), provider, POLICY, clock=manual_clock)
    task = asyncio.create_task(poller.run())
    await settle()

    await manual_clock.advance(3)
    assert provider.status_calls == 1

    poller.request_cancel()
    await manual_clock.advance(3)

    assert await task is None
    assert provider.status_calls == 1


@pytest.mark.asyncio
async def test_cancel_while_request_in_flight_discards_result(manual_clock):
    gate = asyncio.Event()
    provider = FakeProvider([succeeded(OutputItem(uri="https://x/1.png"))], gate=gate)
    progress = []
    poller = JobStatusPoller(_handle(), provider, POLICY, clock=manual_clock)
    task = asyncio.create_task(poller.run(on_progress=progress.append))
    await settle()

    await manual_clock.advance(3)
    assert poller.in_flight

    poller.request_cancel()
    gate.set()
    await settle()

    assert await task is None
    assert not poller.in_flight
    assert poller.outcome is None
    assert progress == []
