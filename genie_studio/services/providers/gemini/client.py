from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from genie_studio.config import settings
from genie_studio.domain.errors import ProviderRejected, TransportError
from genie_studio.services.providers.http import make_client, send

logger = logging.getLogger("gemini_client")

_HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

SAFETY_SETTINGS = [{"category": c, "threshold": "BLOCK_MEDIUM_AND_ABOVE"} for c in _HARM_CATEGORIES]


@dataclass(frozen=True)
class GeminiReply:
    text: str
    finish_reason: Optional[str]
    usage: Dict[str, Any]


def _reply_text(data: Dict[str, Any]) -> GeminiReply:
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        reason = feedback.get("blockReason")
        if reason:
            raise ProviderRejected(f"prompt blocked: {reason}")
        raise TransportError("gemini returned no candidates")

    first = candidates[0] or {}
    parts = (first.get("content") or {}).get("parts") or []
    text = "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))
    finish_reason = first.get("finishReason")
    if not text and finish_reason == "SAFETY":
        raise ProviderRejected("response blocked by safety settings")
    return GeminiReply(text=text, finish_reason=finish_reason, usage=data.get("usageMetadata") or {})


class GeminiClient:
    provider_name = "gemini"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else settings.GOOGLE_API_KEY).strip()
        self.base = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.model = model or settings.GEMINI_MODEL
        self.timeout = settings.GEMINI_TIMEOUT_SECONDS
        self._transport = transport

    async def generate(self, contents: List[Dict[str, Any]], generation_config: Dict[str, Any]) -> GeminiReply:
        if not self.api_key:
            raise ProviderRejected("GOOGLE_API_KEY is not set.")

        url = f"{self.base}/v1beta/models/{self.model}:generateContent"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        body = {
            "contents": contents,
            "safetySettings": SAFETY_SETTINGS,
            "generationConfig": generation_config,
        }

        async with make_client(self.timeout, transport=self._transport) as client:
            data = await send(client, "POST", url, provider=self.provider_name, action="generateContent", headers=headers, json=body)

        reply = _reply_text(data)
        logger.info(
            "gemini_reply",
            extra={"model": self.model, "finish_reason": reply.finish_reason, "chars": len(reply.text)},
        )
        return reply
