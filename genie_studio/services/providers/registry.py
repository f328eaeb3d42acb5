from __future__ import annotations

from typing import Dict

from genie_studio.domain.enums import Modality
from genie_studio.domain.errors import ValidationError
from genie_studio.services.providers.base import ProviderClient


class ProviderRegistry:
    """One switchpoint: which adapter serves which modality."""

    def __init__(self, providers: Dict[Modality, ProviderClient]) -> None:
        self._providers = dict(providers)

    def for_modality(self, modality: Modality) -> ProviderClient:
        provider = self._providers.get(Modality(modality))
        if provider is None:
            raise ValidationError(f"no provider configured for modality={Modality(modality).value}")
        return provider


def default_registry() -> ProviderRegistry:
    from genie_studio.services.providers.replicate.client import ReplicateClient
    from genie_studio.services.providers.vertex.client import VertexVeoClient

    replicate = ReplicateClient()
    return ProviderRegistry(
        {
            Modality.image: replicate,
            Modality.music: replicate,
            Modality.video: VertexVeoClient(),
        }
    )
