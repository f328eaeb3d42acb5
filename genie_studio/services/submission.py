from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from genie_studio.config import settings
from genie_studio.domain.enums import Modality
from genie_studio.domain.errors import TransportError
from genie_studio.domain.jobs import JobHandle
from genie_studio.domain.validators import AnyGenerationRequest, validate_generation_request
from genie_studio.services.providers.base import ProviderClient, ProviderSubmitResult
from genie_studio.services.providers.registry import ProviderRegistry

logger = logging.getLogger("job_submission")


class JobSubmissionAdapter:
    """
    Validates a generation request and creates exactly one provider job.

    Only TransportError is retried, and only here, before a handle exists.
    All attempts of one submit() share an idempotency key so a provider that
    honours it can drop the duplicate when a response was lost in transit.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        *,
        max_attempts: Optional[int] = None,
        retry_min_seconds: Optional[float] = None,
        retry_max_seconds: Optional[float] = None,
    ) -> None:
        self.providers = providers
        self.max_attempts = max(1, int(max_attempts or settings.SUBMIT_MAX_ATTEMPTS))
        self.retry_min_seconds = settings.SUBMIT_RETRY_MIN_SECONDS if retry_min_seconds is None else retry_min_seconds
        self.retry_max_seconds = settings.SUBMIT_RETRY_MAX_SECONDS if retry_max_seconds is None else retry_max_seconds

    def provider_for(self, modality: Modality) -> ProviderClient:
        return self.providers.for_modality(modality)

    async def _submit_with_retry(
        self,
        provider: ProviderClient,
        modality: Modality,
        payload: dict,
        idempotency_key: str,
    ) -> ProviderSubmitResult:
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_min_seconds, min=self.retry_min_seconds, max=self.retry_max_seconds),
            retry=retry_if_exception_type(TransportError),
        ):
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.warning(
                        "submit_retry",
                        extra={"provider": provider.provider_name, "attempt": n, "idempotency_key": idempotency_key},
                    )
                return await provider.submit(modality, payload, idempotency_key)
        raise TransportError("submit retries exhausted")  # unreachable with reraise=True

    async def submit(self, request: Union[AnyGenerationRequest, Mapping[str, Any]]) -> JobHandle:
        req = validate_generation_request(request)
        modality = Modality(req.modality)
        provider = self.provider_for(modality)
        payload = provider.build_input(req)

        idempotency_key = uuid.uuid4().hex
        result = await self._submit_with_retry(provider, modality, payload, idempotency_key)

        handle = JobHandle(
            id=result.provider_job_id,
            modality=modality,
            submitted_at=datetime.now(timezone.utc),
            provider=provider.provider_name,
        )
        logger.info(
            "job_submitted",
            extra={"job_id": handle.id, "modality": modality.value, "provider": handle.provider},
        )
        return handle
