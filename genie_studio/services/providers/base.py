from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

from genie_studio.domain.enums import Modality
from genie_studio.domain.jobs import JobStatus, OutputItem


@dataclass
class ProviderSubmitResult:
    provider_job_id: str
    raw_response: Dict[str, Any]


class ProviderClient(Protocol):
    """
    One adapter per provider. Provider field names stay behind this boundary:
    callers only see ProviderSubmitResult, JobStatus and OutputItem.
    """

    provider_name: str

    def build_input(self, req: Any) -> Dict[str, Any]:
        ...

    async def submit(self, modality: Modality, payload: Dict[str, Any], idempotency_key: str) -> ProviderSubmitResult:
        ...

    async def get_status(self, provider_job_id: str) -> JobStatus:
        ...

    def extract_outputs(self, raw_output: Any) -> List[OutputItem]:
        ...
