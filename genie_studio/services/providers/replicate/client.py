from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from genie_studio.config import settings
from genie_studio.domain.enums import JobState, Modality
from genie_studio.domain.errors import ProviderRejected, TransportError, ValidationError
from genie_studio.domain.jobs import JobStatus, OutputItem
from genie_studio.services.providers.base import ProviderSubmitResult
from genie_studio.services.providers.http import make_client, send
from genie_studio.services.providers.replicate.payloads import build_image_input, build_music_input

logger = logging.getLogger("replicate_client")

_STATE_BY_STATUS = {
    "starting": JobState.queued,
    "processing": JobState.running,
    "succeeded": JobState.succeeded,
    "failed": JobState.failed,
    "canceled": JobState.canceled,
    "aborted": JobState.canceled,
}

# Riffusion returns {"audio": ..., "spectrogram": ...}
_KEYED_OUTPUT_MIME = {
    "audio": "audio/mpeg",
    "spectrogram": "image/jpeg",
    "image": "image/webp",
    "video": "video/mp4",
}


def _normalize_status(raw_status: Any) -> JobState:
    s = str(raw_status or "").strip().lower()
    # Unknown values keep the job in flight; the poller's timeout bounds them.
    return _STATE_BY_STATUS.get(s, JobState.running)


def _error_detail(obj: Dict[str, Any]) -> Optional[str]:
    err = obj.get("error")
    if isinstance(err, dict):
        return str(err.get("detail") or err.get("message") or err)
    if err:
        return str(err)
    return None


class ReplicateClient:
    """
    Replicate predictions API (image + music).

    Model refs are either "owner/name" (official models, latest version) or
    "owner/name:version" (pinned community models).
    """

    provider_name = "replicate"

    def __init__(
        self,
        *,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_token = (api_token if api_token is not None else settings.REPLICATE_API_TOKEN).strip()
        self.base = (base_url or settings.REPLICATE_BASE_URL).rstrip("/")
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.api_token:
            raise ProviderRejected("REPLICATE_API_TOKEN is not set.")
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _model_for(self, modality: Modality) -> str:
        if modality == Modality.image:
            return settings.REPLICATE_IMAGE_MODEL
        if modality == Modality.music:
            return settings.REPLICATE_MUSIC_MODEL
        raise ValidationError(f"replicate does not serve modality={modality.value}")

    def build_input(self, req: Any) -> Dict[str, Any]:
        modality = Modality(req.modality)
        if modality == Modality.image:
            return build_image_input(req)
        if modality == Modality.music:
            return build_music_input(req)
        raise ValidationError(f"replicate does not serve modality={modality.value}")

    async def submit(self, modality: Modality, payload: Dict[str, Any], idempotency_key: str) -> ProviderSubmitResult:
        model = self._model_for(modality)
        headers = self._headers()
        headers["Idempotency-Key"] = idempotency_key

        if ":" in model:
            _, version = model.split(":", 1)
            url = f"{self.base}/v1/predictions"
            body: Dict[str, Any] = {"version": version, "input": payload}
        else:
            url = f"{self.base}/v1/models/{model}/predictions"
            body = {"input": payload}

        async with make_client(self.timeout, transport=self._transport) as client:
            data = await send(client, "POST", url, provider=self.provider_name, action="create prediction", headers=headers, json=body)

        prediction_id = data.get("id")
        if not prediction_id:
            raise TransportError(f"replicate create prediction returned no id. Response: {data}")

        # A prediction can fail validation synchronously and come back already failed.
        if _normalize_status(data.get("status")) == JobState.failed:
            raise ProviderRejected(_error_detail(data) or "replicate rejected the prediction")

        logger.info("replicate_prediction_created", extra={"prediction_id": prediction_id, "model": model})
        return ProviderSubmitResult(provider_job_id=str(prediction_id), raw_response=data)

    async def get_status(self, provider_job_id: str) -> JobStatus:
        url = f"{self.base}/v1/predictions/{provider_job_id}"

        async with make_client(self.timeout, transport=self._transport) as client:
            data = await send(client, "GET", url, provider=self.provider_name, action="get prediction", headers=self._headers())

        state = _normalize_status(data.get("status"))
        if state == JobState.succeeded:
            return JobStatus(state=state, raw_output=data.get("output"))
        if state == JobState.failed:
            return JobStatus(state=state, error_detail=_error_detail(data) or "prediction failed")
        if state == JobState.canceled:
            return JobStatus(state=state, error_detail=_error_detail(data) or "prediction canceled")
        return JobStatus(state=state)

    def extract_outputs(self, raw_output: Any) -> List[OutputItem]:
        if raw_output is None:
            return []
        if isinstance(raw_output, str):
            return [OutputItem(uri=raw_output)]
        if isinstance(raw_output, list):
            return [OutputItem(uri=x) if isinstance(x, str) else OutputItem() for x in raw_output]
        if isinstance(raw_output, dict):
            items: List[OutputItem] = []
            for key, value in raw_output.items():
                if isinstance(value, str):
                    items.append(OutputItem(uri=value, mime_type=_KEYED_OUTPUT_MIME.get(key), label=key))
                else:
                    items.append(OutputItem(label=key))
            return items
        return [OutputItem()]
