from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from genie_studio.config import settings
from genie_studio.domain.enums import JobState, Modality
from genie_studio.domain.errors import ProviderRejected, TransportError, ValidationError
from genie_studio.domain.jobs import JobStatus, OutputItem
from genie_studio.domain.models import VideoGenerationRequest
from genie_studio.services.providers.base import ProviderSubmitResult
from genie_studio.services.providers.http import make_client, send
from genie_studio.services.providers.vertex.auth import VertexTokenProvider

logger = logging.getLogger("vertex_veo")

# projects/<p>/locations/<l>/publishers/google/models/<m>/operations/<id>
_OPERATION_RE = re.compile(r"^(?P<base>.+)/operations/[^/]+$")

# google.rpc.Code.CANCELLED
_RPC_CANCELLED = 1


def model_path_from_operation(operation_name: str) -> str:
    m = _OPERATION_RE.match((operation_name or "").strip())
    if not m:
        raise ProviderRejected(f"Could not extract model path from operation name: {operation_name}")
    return m.group("base")


class VertexVeoClient:
    """
    Veo video generation on Vertex AI (predictLongRunning + fetchPredictOperation).

    The job id is the long-running operation name. Finished videos are either
    written to VERTEX_OUTPUT_GCS_URI (gcsUri) or returned inline (bytesBase64Encoded).
    """

    provider_name = "vertex_veo"

    def __init__(
        self,
        *,
        project_id: Optional[str] = None,
        location: Optional[str] = None,
        model: Optional[str] = None,
        tokens: Optional[VertexTokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.project_id = project_id or settings.GOOGLE_PROJECT_ID
        self.location = location or settings.GOOGLE_LOCATION
        self.model = model or settings.VERTEX_VIDEO_MODEL
        self.tokens = tokens or VertexTokenProvider(settings.VERTEX_ACCESS_TOKEN)
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def _api_base(self) -> str:
        return f"https://{self.location}-aiplatform.googleapis.com/v1beta1"

    async def _headers(self) -> Dict[str, str]:
        token = await self.tokens.token()
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def build_input(self, req: VideoGenerationRequest) -> Dict[str, Any]:
        if Modality(req.modality) != Modality.video:
            raise ValidationError(f"vertex_veo does not serve modality={req.modality}")

        parameters: Dict[str, Any] = {
            "durationSeconds": int(req.duration_seconds),
            "aspectRatio": req.aspect_ratio.value,
            "resolution": req.resolution.value,
            "generateAudio": bool(req.generate_audio),
            "sampleCount": 1,
        }
        if settings.VERTEX_OUTPUT_GCS_URI:
            parameters["storageUri"] = settings.VERTEX_OUTPUT_GCS_URI
        return {"instances": [{"prompt": req.prompt}], "parameters": parameters}

    async def submit(self, modality: Modality, payload: Dict[str, Any], idempotency_key: str) -> ProviderSubmitResult:
        if modality != Modality.video:
            raise ValidationError(f"vertex_veo does not serve modality={modality.value}")
        if not self.project_id:
            raise ProviderRejected("GOOGLE_PROJECT_ID is not set.")

        url = (
            f"{self._api_base}/projects/{self.project_id}/locations/{self.location}"
            f"/publishers/google/models/{self.model}:predictLongRunning"
        )
        headers = await self._headers()

        async with make_client(self.timeout, transport=self._transport) as client:
            data = await send(client, "POST", url, provider=self.provider_name, action="predictLongRunning", headers=headers, json=payload)

        operation_name = data.get("name")
        if not operation_name:
            raise TransportError("API did not return an operation name.")

        logger.info("veo_operation_started", extra={"operation_name": operation_name, "idempotency_key": idempotency_key})
        return ProviderSubmitResult(provider_job_id=str(operation_name), raw_response=data)

    async def get_status(self, provider_job_id: str) -> JobStatus:
        url = f"{self._api_base}/{model_path_from_operation(provider_job_id)}:fetchPredictOperation"
        headers = await self._headers()

        async with make_client(self.timeout, transport=self._transport) as client:
            op = await send(
                client,
                "POST",
                url,
                provider=self.provider_name,
                action="fetchPredictOperation",
                headers=headers,
                json={"operationName": provider_job_id},
            )

        if not op.get("done"):
            return JobStatus(state=JobState.running)

        err = op.get("error")
        if isinstance(err, dict) and err:
            msg = str(err.get("message") or "Operation failed.")
            if err.get("code") == _RPC_CANCELLED:
                return JobStatus(state=JobState.canceled, error_detail=msg)
            return JobStatus(state=JobState.failed, error_detail=msg)

        response = op.get("response") or {}
        videos = response.get("videos") if isinstance(response, dict) else None
        if not videos:
            reasons = response.get("raiMediaFilteredReasons") if isinstance(response, dict) else None
            if reasons:
                return JobStatus(state=JobState.failed, error_detail="filtered by safety policy: " + "; ".join(map(str, reasons)))
        return JobStatus(state=JobState.succeeded, raw_output=response)

    def extract_outputs(self, raw_output: Any) -> List[OutputItem]:
        if not isinstance(raw_output, dict):
            return []
        videos = raw_output.get("videos")
        if not isinstance(videos, list):
            return []

        items: List[OutputItem] = []
        for v in videos:
            if not isinstance(v, dict):
                items.append(OutputItem())
                continue
            items.append(
                OutputItem(
                    uri=v.get("gcsUri") or v.get("uri"),
                    inline_base64=v.get("bytesBase64Encoded"),
                    mime_type=v.get("mimeType") or "video/mp4",
                )
            )
        return items
