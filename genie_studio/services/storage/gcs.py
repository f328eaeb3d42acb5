from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional, Tuple

import google.auth
from google.api_core import exceptions as google_api_exceptions
from google.auth import credentials as google_credentials
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request
from google.cloud import storage

from genie_studio.domain.errors import TransportError, UnresolvableOutput, ValidationError

logger = logging.getLogger("gcs_signer")


def parse_gcs_uri(uri: str) -> Tuple[str, str]:
    """
    Returns (bucket, object_name) from gs://<bucket>/<object path>.
    """
    s = (uri or "").strip()
    if not s.startswith("gs://"):
        raise ValidationError("Invalid GCS URI format.")
    bucket, _, object_name = s[len("gs://"):].partition("/")
    if not bucket or not object_name:
        raise ValidationError(f"Could not parse bucket name or object name from GCS URI: {s}")
    return bucket, object_name


class GcsUrlSigner:
    """
    V4 signed GET URLs for Cloud Storage objects.

    Service-account key credentials sign locally. Credentials without a private
    key (Cloud Run / GCE metadata server) sign through IAM signBlob, which needs
    the account email and a fresh access token.
    """

    scheme = "gs"

    def __init__(self, client: Optional[storage.Client] = None, credentials: Any = None) -> None:
        self._client = client
        self._credentials = credentials

    def handles(self, uri: str) -> bool:
        return (uri or "").strip().startswith("gs://")

    def _get_client(self) -> storage.Client:
        if self._client is None:
            creds, project = google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
            self._credentials = creds
            self._client = storage.Client(project=project, credentials=creds)
        return self._client

    def _sign_sync(self, bucket_name: str, object_name: str, ttl_seconds: int) -> str:
        client = self._get_client()
        blob = client.bucket(bucket_name).blob(object_name)

        kwargs = {
            "version": "v4",
            "expiration": timedelta(seconds=int(ttl_seconds)),
            "method": "GET",
        }
        creds = self._credentials
        if creds is not None and not isinstance(creds, google_credentials.Signing):
            email = getattr(creds, "service_account_email", None)
            if not email:
                raise UnresolvableOutput("credentials cannot sign URLs: no service account email")
            if not creds.valid:
                creds.refresh(Request())
            kwargs["service_account_email"] = email
            kwargs["access_token"] = creds.token

        try:
            return blob.generate_signed_url(**kwargs)
        except (AttributeError, ValueError) as e:
            raise UnresolvableOutput(f"could not sign gs://{bucket_name}/{object_name}: {e}") from e

    async def sign(self, uri: str, ttl_seconds: int) -> str:
        bucket_name, object_name = parse_gcs_uri(uri)
        try:
            url = await asyncio.to_thread(self._sign_sync, bucket_name, object_name, ttl_seconds)
        except (google_auth_exceptions.GoogleAuthError, google_api_exceptions.GoogleAPIError) as e:
            raise TransportError(f"Failed to generate signed URL for {uri}: {e}") from e

        logger.info("gcs_signed_url_generated", extra={"bucket": bucket_name, "ttl_seconds": ttl_seconds})
        return url
