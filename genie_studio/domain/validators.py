from __future__ import annotations

from typing import Any, Mapping, Union

import pydantic
from pydantic import TypeAdapter

from genie_studio.domain.errors import ValidationError
from genie_studio.domain.models import (
    GenerationRequest,
    ImageGenerationRequest,
    MusicGenerationRequest,
    VideoGenerationRequest,
)

AnyGenerationRequest = Union[ImageGenerationRequest, VideoGenerationRequest, MusicGenerationRequest]

_request_adapter: TypeAdapter = TypeAdapter(GenerationRequest)


def _format_pydantic_errors(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("image", "video", "music"))
        msg = err.get("msg") or "invalid value"
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid request"


def validate_generation_request(req: Union[AnyGenerationRequest, Mapping[str, Any]]) -> AnyGenerationRequest:
    """
    Returns a validated request model or raises ValidationError.

    Accepts a dict (raw UI payload) or a model. Models are re-validated because
    callers can build them with model_construct() and skip field checks.
    """
    if req is None:
        raise ValidationError("request is required")

    data: Any = req.model_dump() if isinstance(req, pydantic.BaseModel) else req
    if not isinstance(data, Mapping):
        raise ValidationError(f"request must be an object, got {type(data).__name__}")

    if not data.get("modality"):
        raise ValidationError("modality is required (one of: image, video, music)")

    try:
        return _request_adapter.validate_python(dict(data))
    except pydantic.ValidationError as e:
        raise ValidationError(_format_pydantic_errors(e)) from e
