from __future__ import annotations

from typing import Protocol


class StorageSigner(Protocol):
    """Exchanges an internal storage reference for a short-lived read URL."""

    scheme: str

    def handles(self, uri: str) -> bool:
        ...

    async def sign(self, uri: str, ttl_seconds: int) -> str:
        ...
