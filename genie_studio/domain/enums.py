from __future__ import annotations

from enum import Enum


class Modality(str, Enum):
    image = "image"
    video = "video"
    music = "music"


class JobState(str, Enum):
    """Provider job state, normalized from each provider's vocabulary."""

    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    canceled = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.succeeded, JobState.failed, JobState.canceled)


class PollerState(str, Enum):
    idle = "idle"
    polling = "polling"
    succeeded = "succeeded"
    failed = "failed"
    canceled = "canceled"
    timed_out = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (PollerState.idle, PollerState.polling)


class ArtifactKind(str, Enum):
    inline_data = "inline_data"
    remote_url = "remote_url"


class ErrorKind(str, Enum):
    validation = "VALIDATION_ERROR"
    provider_rejected = "PROVIDER_REJECTED"
    transport = "TRANSPORT_ERROR"
    polling_exhausted = "POLLING_EXHAUSTED"
    timed_out = "TIMED_OUT"
    unresolvable_output = "UNRESOLVABLE_OUTPUT"
    provider_failed = "PROVIDER_FAILED"
    internal = "INTERNAL_ERROR"


class EventType(str, Enum):
    progress = "progress"
    completed = "completed"
    failed = "failed"
    canceled = "canceled"


class SessionStatus(str, Enum):
    """What the UI shows: still working vs. done."""

    submitting = "submitting"
    polling = "polling"
    completed = "completed"
    failed = "failed"
    canceled = "canceled"


class ImageResolution(str, Enum):
    square = "1024x1024"
    widescreen = "1536x680"
    portrait = "680x1536"


class AspectRatio(str, Enum):
    ar_16_9 = "16:9"
    ar_9_16 = "9:16"
    ar_1_1 = "1:1"


class VideoResolution(str, Enum):
    r_720p = "720p"
    r_1080p = "1080p"


class ChatPersona(str, Enum):
    conversation = "conversation"
    code = "code"
