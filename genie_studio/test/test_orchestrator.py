import asyncio

import pytest

from conftest import (
    IMAGE_REQUEST,
    MUSIC_REQUEST,
    VIDEO_REQUEST,
    FakeClock,
    FakeProvider,
    FakeSigner,
    build_orchestrator,
    running,
    settle,
    succeeded,
)
from genie_studio.domain.enums import ArtifactKind, ErrorKind, JobState, Modality, SessionStatus
from genie_studio.domain.errors import ProviderRejected, TransportError
from genie_studio.domain.jobs import Canceled, Completed, Failed, JobStatus, OutputItem, PollPolicy, Progress
from genie_studio.domain.models import PollOptions
from genie_studio.services.orchestrator import apply_poll_options
from genie_studio.services.storage.azure import AzureBlobSasSigner


def _terminal(events):
    return [e for e in events if e.terminal]


@pytest.mark.asyncio
async def test_completed_with_public_url_passes_through(clock):
    provider = FakeProvider([running(), succeeded(OutputItem(uri="https://cdn.example.com/out.png"))])
    orch = build_orchestrator(provider, clock)
    events = []

    sub = await orch.start(IMAGE_REQUEST, on_event=events.append)
    outcome = await sub.wait(timeout=5)

    assert isinstance(outcome, Completed)
    assert outcome.artifacts[0].kind == ArtifactKind.remote_url
    assert outcome.artifacts[0].payload == "https://cdn.example.com/out.png"
    assert [type(e) for e in events] == [Progress, Completed]
    assert sub.status == SessionStatus.completed
    assert orch.active_sessions() == []


@pytest.mark.asyncio
async def test_exactly_one_terminal_event_with_transient_failures(clock):
    provider = FakeProvider(
        [
            TransportError("reset"),
            running(),
            TransportError("reset"),
            TransportError("reset"),
            succeeded(OutputItem(uri="gs://bucket/videos/out.mp4")),
        ]
    )
    orch = build_orchestrator(provider, clock)
    events = []

    sub = await orch.start(VIDEO_REQUEST, on_event=events.append)
    await sub.wait(timeout=5)
    await settle()

    terminal = _terminal(events)
    assert len(terminal) == 1
    assert isinstance(terminal[0], Completed)
    assert terminal[0].artifacts[0].payload.startswith("https://signed.example.com/bucket/videos/out.mp4")


@pytest.mark.asyncio
async def test_partial_resolution_reports_per_index_failure(clock):
    provider = FakeProvider(
        [succeeded(OutputItem(uri="https://cdn.example.com/a.png"), OutputItem(uri="s3://private/b.png"))]
    )
    orch = build_orchestrator(provider, clock)

    sub = await orch.start(IMAGE_REQUEST)
    outcome = await sub.wait(timeout=5)

    assert isinstance(outcome, Completed)
    assert len(outcome.artifacts) == 1
    assert outcome.artifacts[0].index == 0
    assert len(outcome.failures) == 1
    assert outcome.failures[0].index == 1
    assert outcome.failures[0].kind == ErrorKind.unresolvable_output


@pytest.mark.asyncio
async def test_signer_misconfiguration_is_a_partial_success(clock):
    provider = FakeProvider(
        [succeeded(OutputItem(uri="https://cdn.example.com/a.png"), OutputItem(uri="az://outputs/b.png"))]
    )
    signer = AzureBlobSasSigner(account_name="geniestore", account_key="not-base64!!")
    orch = build_orchestrator(provider, clock, signers=[signer])

    outcome = await (await orch.start(IMAGE_REQUEST)).wait(timeout=5)

    assert isinstance(outcome, Completed)
    assert [a.index for a in outcome.artifacts] == [0]
    assert [(f.index, f.kind) for f in outcome.failures] == [(1, ErrorKind.unresolvable_output)]


@pytest.mark.asyncio
async def test_nothing_resolvable_fails_session(clock):
    provider = FakeProvider([succeeded(OutputItem())])
    orch = build_orchestrator(provider, clock)

    outcome = await (await orch.start(MUSIC_REQUEST)).wait(timeout=5)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.unresolvable_output


@pytest.mark.asyncio
async def test_signing_outage_fails_with_transport_kind(clock):
    provider = FakeProvider([succeeded(OutputItem(uri="gs://bucket/a.mp4"))])
    orch = build_orchestrator(provider, clock, signers=[FakeSigner(fail_times=5)])

    outcome = await (await orch.start(VIDEO_REQUEST)).wait(timeout=5)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.transport


@pytest.mark.asyncio
async def test_timeout_yields_failed_timed_out_and_no_more_polls(clock):
    provider = FakeProvider()
    orch = build_orchestrator(provider, clock)

    sub = await orch.start(IMAGE_REQUEST, poll=PollOptions(poll_interval_ms=1000, timeout_ms=5000))
    outcome = await sub.wait(timeout=5)
    calls = provider.status_calls
    await settle()

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.timed_out
    assert provider.status_calls == calls


@pytest.mark.asyncio
async def test_polling_exhausted_after_three_transient_failures(clock):
    provider = FakeProvider([TransportError("503")] * 3 + [running()])
    orch = build_orchestrator(provider, clock)

    outcome = await (await orch.start(IMAGE_REQUEST, poll=PollOptions(max_transient_failures=3))).wait(timeout=5)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.polling_exhausted
    assert provider.status_calls == 3


@pytest.mark.asyncio
async def test_provider_failure_becomes_failed_event(clock):
    provider = FakeProvider([JobStatus(state=JobState.failed, error_detail="NSFW content detected")])
    orch = build_orchestrator(provider, clock)

    outcome = await (await orch.start(IMAGE_REQUEST)).wait(timeout=5)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.provider_failed
    assert outcome.detail == "NSFW content detected"
    assert outcome.job_id == "job-1"


@pytest.mark.asyncio
async def test_provider_side_cancel_becomes_canceled_event(clock):
    provider = FakeProvider([JobStatus(state=JobState.canceled)])
    orch = build_orchestrator(provider, clock)

    outcome = await (await orch.start(IMAGE_REQUEST)).wait(timeout=5)

    assert isinstance(outcome, Canceled)


@pytest.mark.asyncio
async def test_validation_error_never_reaches_provider(clock):
    provider = FakeProvider()
    orch = build_orchestrator(provider, clock)

    sub = await orch.start({"modality": "image", "prompt": "fox", "amount": 9})
    outcome = await sub.wait(timeout=1)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.validation
    assert outcome.job_id is None
    assert provider.submits == []


@pytest.mark.asyncio
async def test_unknown_modality_is_a_validation_error(clock):
    orch = build_orchestrator(FakeProvider(), clock)

    outcome = await (await orch.start({"modality": "hologram", "prompt": "x"})).wait(timeout=1)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.validation


@pytest.mark.asyncio
async def test_submit_rejection_is_not_retried(clock):
    provider = FakeProvider(submit_errors=[ProviderRejected("invalid token", status_code=401)])
    orch = build_orchestrator(provider, clock)

    outcome = await (await orch.start(IMAGE_REQUEST)).wait(timeout=1)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.provider_rejected
    assert len(provider.submits) == 1


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_internal_error(clock):
    provider = FakeProvider([RuntimeError("bug in adapter")])
    orch = build_orchestrator(provider, clock)

    outcome = await (await orch.start(IMAGE_REQUEST)).wait(timeout=5)

    assert isinstance(outcome, Failed)
    assert outcome.kind == ErrorKind.internal
    assert "bug in adapter" in outcome.detail


@pytest.mark.asyncio
async def test_cancel_between_ticks_delivers_only_acknowledgement(manual_clock):
    provider = FakeProvider([running(), running(), succeeded(OutputItem(uri="https://cdn.example.com/a.png"))])
    orch = build_orchestrator(provider, manual_clock)
    events = []

    sub = await orch.start(IMAGE_REQUEST, on_event=events.append)
    await settle()
    await manual_clock.advance(3)  # tick 1
    assert provider.status_calls == 1

    assert orch.cancel(sub.job_id) is True
    ack_index = len(events) - 1
    await manual_clock.advance(30)

    assert isinstance(events[ack_index], Canceled)
    assert events[ack_index:] == [events[ack_index]]
    assert provider.status_calls == 1
    assert sub.status == SessionStatus.canceled
    assert orch.cancel(sub.job_id) is False


@pytest.mark.asyncio
async def test_cancel_while_status_in_flight_discards_result(manual_clock):
    gate = asyncio.Event()
    provider = FakeProvider([succeeded(OutputItem(uri="https://cdn.example.com/a.png"))], gate=gate)
    orch = build_orchestrator(provider, manual_clock)
    events = []

    sub = await orch.start(IMAGE_REQUEST, on_event=events.append)
    await settle()
    await manual_clock.advance(3)
    assert provider.status_calls == 1

    assert sub.cancel() is True
    gate.set()
    await settle()

    assert [type(e) for e in events] == [Canceled]
    assert sub.outcome.reason == "canceled_by_caller"


@pytest.mark.asyncio
async def test_second_start_on_same_surface_supersedes_first(manual_clock):
    provider = FakeProvider()
    orch = build_orchestrator(provider, manual_clock)
    first_events, second_events = [], []

    first = await orch.start(IMAGE_REQUEST, surface="image-page", on_event=first_events.append)
    await settle()
    second = await orch.start(IMAGE_REQUEST, surface="image-page", on_event=second_events.append)
    await settle()

    # First is acknowledged as canceled before the second has polled at all.
    assert provider.status_calls == 0
    assert isinstance(first.outcome, Canceled)
    assert first.outcome.reason == "superseded"
    delivered = len(first_events)

    await manual_clock.advance(3)
    await manual_clock.advance(3)

    assert len(first_events) == delivered
    assert len(second_events) == 2
    assert provider.status_calls == 2
    assert orch.session_for_surface("image-page") == second.session_id
    await orch.aclose()


@pytest.mark.asyncio
async def test_surfaces_are_independent(clock):
    provider = FakeProvider([succeeded(OutputItem(uri="https://cdn.example.com/a.png"))] * 2)
    orch = build_orchestrator(provider, clock)

    a = await orch.start(IMAGE_REQUEST, surface="image-page")
    b = await orch.start(MUSIC_REQUEST, surface="music-page")

    assert isinstance(await a.wait(timeout=5), Completed)
    assert isinstance(await b.wait(timeout=5), Completed)


@pytest.mark.asyncio
async def test_starts_without_surface_do_not_supersede(clock):
    provider = FakeProvider([succeeded(OutputItem(uri="https://cdn.example.com/a.png"))] * 2)
    orch = build_orchestrator(provider, clock)

    image = await orch.start(IMAGE_REQUEST)
    music = await orch.start(MUSIC_REQUEST)

    assert isinstance(await image.wait(timeout=5), Completed)
    assert isinstance(await music.wait(timeout=5), Completed)
    assert image.surface is None and music.surface is None


@pytest.mark.asyncio
async def test_stream_replays_history_and_ends_after_terminal(clock):
    provider = FakeProvider([running(), succeeded(OutputItem(uri="https://cdn.example.com/a.png"))])
    orch = build_orchestrator(provider, clock)

    sub = await orch.start(IMAGE_REQUEST)
    await sub.wait(timeout=5)

    seen = [e async for e in sub.stream()]
    assert [type(e) for e in seen] == [Progress, Completed]


@pytest.mark.asyncio
async def test_callback_errors_do_not_break_session(clock):
    provider = FakeProvider([succeeded(OutputItem(uri="https://cdn.example.com/a.png"))])
    orch = build_orchestrator(provider, clock)

    def explode(event):
        raise ValueError("ui went away")

    outcome = await (await orch.start(IMAGE_REQUEST, on_event=explode)).wait(timeout=5)
    assert isinstance(outcome, Completed)


@pytest.mark.asyncio
async def test_aclose_cancels_everything(manual_clock):
    orch = build_orchestrator(FakeProvider(), manual_clock)
    a = await orch.start(IMAGE_REQUEST, surface="a")
    b = await orch.start(VIDEO_REQUEST, surface="b")
    await settle()

    await orch.aclose()

    assert isinstance(a.outcome, Canceled)
    assert isinstance(b.outcome, Canceled)
    assert orch.active_sessions() == []


@pytest.mark.asyncio
async def test_close_surface_tears_down_one_session(manual_clock):
    orch = build_orchestrator(FakeProvider(), manual_clock)
    a = await orch.start(IMAGE_REQUEST, surface="a")
    b = await orch.start(IMAGE_REQUEST, surface="b")
    await settle()

    await orch.close_surface("a")

    assert a.outcome.reason == "surface_closed"
    assert b.outcome is None
    await orch.aclose()


def test_poll_options_override_modality_defaults():
    base = PollPolicy(interval_seconds=7, timeout_seconds=600, max_transient_failures=3)
    merged = apply_poll_options(base, PollOptions(poll_interval_ms=2000))

    assert merged.interval_seconds == 2.0
    assert merged.timeout_seconds == 600
    assert merged.max_transient_failures == 3


def test_default_policy_uses_video_interval():
    orch = build_orchestrator(FakeProvider(), FakeClock())
    assert orch.policy_for(Modality.video).interval_seconds == 7.0
    assert orch.policy_for(Modality.image).interval_seconds == 3.0
