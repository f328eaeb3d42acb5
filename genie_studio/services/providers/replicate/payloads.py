from __future__ import annotations

from typing import Any, Dict

from genie_studio.config import settings
from genie_studio.domain.enums import ImageResolution
from genie_studio.domain.models import ImageGenerationRequest, MusicGenerationRequest

# stable-diffusion-3 takes an aspect ratio, not free width/height.
_ASPECT_BY_RESOLUTION = {
    ImageResolution.square: "1:1",
    ImageResolution.widescreen: "21:9",
    ImageResolution.portrait: "9:21",
}


def build_image_input(req: ImageGenerationRequest) -> Dict[str, Any]:
    return {
        "prompt": req.prompt,
        "num_outputs": req.amount,
        "aspect_ratio": _ASPECT_BY_RESOLUTION[req.resolution],
        "output_quality": settings.IMAGE_OUTPUT_QUALITY,
        "negative_prompt": settings.IMAGE_NEGATIVE_PROMPT,
    }


def build_music_input(req: MusicGenerationRequest) -> Dict[str, Any]:
    """
    Riffusion renders prompt_a unless alpha > 0, so the styled prompt goes there.
    The style prefix is a product default ("90's Rap ...").
    """
    prefix = (settings.MUSIC_STYLE_PREFIX or "").strip()
    prompt = f"{prefix} {req.prompt}".strip() if prefix else req.prompt
    return {"prompt_a": prompt}
