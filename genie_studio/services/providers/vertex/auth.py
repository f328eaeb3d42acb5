from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import google.auth
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request

from genie_studio.domain.errors import ProviderRejected, TransportError

logger = logging.getLogger("vertex_auth")

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class VertexTokenProvider:
    """
    Bearer tokens for Vertex AI.

    Uses a static token when configured, otherwise Application Default
    Credentials (service account on Cloud Run, or `gcloud auth application-default login`).
    Credential refresh is blocking I/O and runs in a worker thread.
    """

    def __init__(self, static_token: Optional[str] = None) -> None:
        self._static_token = (static_token or "").strip() or None
        self._creds: Any = None
        self._lock = asyncio.Lock()

    def _refresh_sync(self) -> str:
        if self._creds is None:
            self._creds, _project = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        if not self._creds.valid:
            self._creds.refresh(Request())
        token = getattr(self._creds, "token", None)
        if not token:
            raise ProviderRejected("Failed to retrieve access token.")
        return str(token)

    async def token(self) -> str:
        if self._static_token:
            return self._static_token

        async with self._lock:
            try:
                return await asyncio.to_thread(self._refresh_sync)
            except google_auth_exceptions.DefaultCredentialsError as e:
                raise ProviderRejected(f"google credentials not configured: {e}") from e
            except google_auth_exceptions.RefreshError as e:
                raise ProviderRejected(f"google token refresh rejected: {e}") from e
            except google_auth_exceptions.TransportError as e:
                logger.warning("vertex_token_refresh_transport_error", extra={"error": str(e)})
                raise TransportError(f"google token refresh failed: {e}") from e
