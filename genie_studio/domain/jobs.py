from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from genie_studio.domain.enums import ArtifactKind, ErrorKind, EventType, JobState, Modality


# -----------------------------------------------------------------------------
# Jobs
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class JobHandle:
    id: str
    modality: Modality
    submitted_at: datetime
    provider: str


@dataclass(frozen=True)
class JobStatus:
    state: JobState
    raw_output: Any = None  # opaque to the poller; only set when succeeded
    error_detail: Optional[str] = None  # only set when failed/canceled

    def __post_init__(self) -> None:
        if self.state != JobState.succeeded and self.raw_output is not None:
            object.__setattr__(self, "raw_output", None)
        if self.state not in (JobState.failed, JobState.canceled) and self.error_detail is not None:
            object.__setattr__(self, "error_detail", None)


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float
    timeout_seconds: float
    max_transient_failures: int = 3

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_transient_failures < 1:
            raise ValueError("max_transient_failures must be >= 1")


# -----------------------------------------------------------------------------
# Outputs / artifacts
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class OutputItem:
    """
    One provider output in canonical form.

    Provider adapters map their own field names (gcsUri, bytesBase64Encoded,
    audio, ...) into this shape; the resolver never sees provider payloads.
    """

    uri: Optional[str] = None
    inline_base64: Optional[str] = None
    mime_type: Optional[str] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class ArtifactReference:
    kind: ArtifactKind
    payload: str
    index: int = 0
    mime_type: Optional[str] = None
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "payload": self.payload,
            "index": self.index,
            "mime_type": self.mime_type,
            "label": self.label,
        }


@dataclass(frozen=True)
class ArtifactFailure:
    index: int
    kind: ErrorKind
    detail: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "kind": self.kind.value, "detail": self.detail}


@dataclass(frozen=True)
class ResolutionResult:
    artifacts: List[ArtifactReference] = field(default_factory=list)
    failures: List[ArtifactFailure] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.artifacts) and bool(self.failures)


# -----------------------------------------------------------------------------
# Session events
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Progress:
    job_id: str
    state: JobState
    poll_count: int
    type: EventType = field(default=EventType.progress, init=False)
    terminal = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "job_id": self.job_id,
            "state": self.state.value,
            "poll_count": self.poll_count,
        }


@dataclass(frozen=True)
class Completed:
    job_id: str
    artifacts: List[ArtifactReference]
    failures: List[ArtifactFailure] = field(default_factory=list)
    type: EventType = field(default=EventType.completed, init=False)
    terminal = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "job_id": self.job_id,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass(frozen=True)
class Failed:
    job_id: Optional[str]
    kind: ErrorKind
    detail: str
    type: EventType = field(default=EventType.failed, init=False)
    terminal = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "job_id": self.job_id,
            "kind": self.kind.value,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class Canceled:
    job_id: Optional[str]
    reason: str
    type: EventType = field(default=EventType.canceled, init=False)
    terminal = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "job_id": self.job_id, "reason": self.reason}
