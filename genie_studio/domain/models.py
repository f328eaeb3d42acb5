from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from genie_studio.domain.enums import (
    AspectRatio,
    ChatPersona,
    ImageResolution,
    VideoResolution,
)


# -----------------------------------------------------------------------------
# Generation requests (one per modality)
# -----------------------------------------------------------------------------

class _PromptRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must not be blank")
        return v.strip()


class ImageGenerationRequest(_PromptRequest):
    modality: Literal["image"] = "image"
    amount: int = Field(default=1, ge=1, le=4)
    resolution: ImageResolution = ImageResolution.square


class VideoGenerationRequest(_PromptRequest):
    modality: Literal["video"] = "video"
    aspect_ratio: AspectRatio = AspectRatio.ar_16_9
    duration_seconds: Literal[4, 6, 8] = 4
    resolution: VideoResolution = VideoResolution.r_720p
    generate_audio: bool = True


class MusicGenerationRequest(_PromptRequest):
    modality: Literal["music"] = "music"


GenerationRequest = Annotated[
    Union[ImageGenerationRequest, VideoGenerationRequest, MusicGenerationRequest],
    Field(discriminator="modality"),
]


# -----------------------------------------------------------------------------
# Generation API contract
# -----------------------------------------------------------------------------

class PollOptions(BaseModel):
    """Per-request tuning; anything left unset falls back to the modality default."""

    poll_interval_ms: Optional[int] = Field(default=None, ge=250, le=60_000)
    timeout_ms: Optional[int] = Field(default=None, ge=1_000, le=3_600_000)
    max_transient_failures: Optional[int] = Field(default=None, ge=1, le=20)


class GenerationStart(BaseModel):
    request: GenerationRequest
    surface: Optional[str] = Field(default=None, min_length=1, max_length=128)
    poll: Optional[PollOptions] = None


class ArtifactView(BaseModel):
    kind: str
    payload: str
    index: int
    mime_type: Optional[str] = None
    label: Optional[str] = None


class ArtifactFailureView(BaseModel):
    index: int
    kind: str
    detail: str


class GenerationView(BaseModel):
    session_id: str
    surface: Optional[str] = None
    modality: str
    status: str
    job_id: Optional[str] = None
    job_state: Optional[str] = None
    poll_count: int = 0

    artifacts: List[ArtifactView] = Field(default_factory=list)
    failures: List[ArtifactFailureView] = Field(default_factory=list)

    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    cancel_reason: Optional[str] = None


class SignedUrlRequest(BaseModel):
    uri: str = Field(min_length=1)


class SignedUrlView(BaseModel):
    signed_url: str
    expires_in_seconds: int


# -----------------------------------------------------------------------------
# Chat
# -----------------------------------------------------------------------------

class ChatMessage(BaseModel):
    role: Literal["user", "bot"]
    text: str = Field(min_length=1, max_length=32_000)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)


class ChatReply(BaseModel):
    text: str
    persona: ChatPersona
    usage: Dict[str, Any] = Field(default_factory=dict)
