from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from genie_studio.domain.enums import JobState, Modality
from genie_studio.domain.errors import TransportError
from genie_studio.domain.jobs import JobStatus, OutputItem
from genie_studio.services.orchestrator import GenerationOrchestrator
from genie_studio.services.providers.base import ProviderSubmitResult
from genie_studio.services.providers.registry import ProviderRegistry
from genie_studio.services.result_resolver import ResultResolver
from genie_studio.services.submission import JobSubmissionAdapter


async def settle(rounds: int = 50) -> None:
    """Let every ready task run until it blocks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """
    auto_advance=True: sleep() jumps the clock forward immediately.
    auto_advance=False: sleepers wait until the test calls advance().
    """

    def __init__(self, start: float = 1000.0, auto_advance: bool = True) -> None:
        self.t = start
        self.auto_advance = auto_advance
        self.sleeps: List[float] = []
        self._waiters: List[Any] = []

    def now(self) -> float:
        return self.t

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.auto_advance:
            self.t += max(0.0, seconds)
            await asyncio.sleep(0)
            return
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((self.t + seconds, fut))
        await fut

    async def advance(self, seconds: float) -> None:
        self.t += seconds
        pending = []
        for wake_at, fut in self._waiters:
            if fut.done():
                continue
            if wake_at <= self.t + 1e-9:
                fut.set_result(None)
            else:
                pending.append((wake_at, fut))
        self._waiters = pending
        await settle()


class FakeProvider:
    """
    Scripted provider. `statuses` is consumed one entry per status check; an
    entry can be a JobStatus or an exception to raise. When the script runs
    out the job stays running.
    """

    provider_name = "fake"

    def __init__(
        self,
        statuses: Optional[List[Any]] = None,
        *,
        submit_errors: Optional[List[Exception]] = None,
        gate: Optional[asyncio.Event] = None,
        tick_cost: float = 0.0,
        clock: Optional[FakeClock] = None,
    ) -> None:
        self.script = list(statuses or [])
        self.submit_errors = list(submit_errors or [])
        self.gate = gate
        self.tick_cost = tick_cost
        self.clock = clock
        self.submits: List[Any] = []
        self.status_calls = 0

    def build_input(self, req: Any) -> Dict[str, Any]:
        return {"prompt": req.prompt}

    async def submit(self, modality: Modality, payload: Dict[str, Any], idempotency_key: str) -> ProviderSubmitResult:
        self.submits.append((modality, payload, idempotency_key))
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        job_id = f"job-{len(self.submits)}"
        return ProviderSubmitResult(provider_job_id=job_id, raw_response={"id": job_id})

    async def get_status(self, provider_job_id: str) -> JobStatus:
        self.status_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.clock is not None and self.tick_cost:
            self.clock.t += self.tick_cost
        item = self.script.pop(0) if self.script else JobStatus(state=JobState.running)
        if isinstance(item, Exception):
            raise item
        return item

    def extract_outputs(self, raw_output: Any) -> List[OutputItem]:
        return list(raw_output or [])


class FakeSigner:
    scheme = "gs"

    def __init__(self, fail_times: int = 0) -> None:
        self.fail_times = fail_times
        self.calls: List[str] = []

    def handles(self, uri: str) -> bool:
        return uri.startswith("gs://")

    async def sign(self, uri: str, ttl_seconds: int) -> str:
        self.calls.append(uri)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise TransportError("signing backend unavailable")
        return f"https://signed.example.com/{uri[len('gs://'):]}?ttl={ttl_seconds}"


def succeeded(*items: OutputItem) -> JobStatus:
    return JobStatus(state=JobState.succeeded, raw_output=list(items))


def running() -> JobStatus:
    return JobStatus(state=JobState.running)


def build_orchestrator(provider: FakeProvider, clock: FakeClock, signers=None) -> GenerationOrchestrator:
    registry = ProviderRegistry({m: provider for m in Modality})
    submitter = JobSubmissionAdapter(registry, max_attempts=3, retry_min_seconds=0, retry_max_seconds=0)
    resolver = ResultResolver(signers if signers is not None else [FakeSigner()], ttl_seconds=900, sign_attempts=1)
    return GenerationOrchestrator(submitter, resolver, clock=clock)


IMAGE_REQUEST = {"modality": "image", "prompt": "a red fox in the snow", "amount": 2}
VIDEO_REQUEST = {"modality": "video", "prompt": "waves at sunset", "duration_seconds": 8}
MUSIC_REQUEST = {"modality": "music", "prompt": "funky bassline"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manual_clock():
    return FakeClock(auto_advance=False)
