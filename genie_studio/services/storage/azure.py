from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlparse

from azure.storage.blob import BlobSasPermissions, generate_blob_sas

from genie_studio.domain.errors import UnresolvableOutput, ValidationError


def _parse_conn_str(conn_str: str) -> dict:
    parts = {}
    for kv in (conn_str or "").split(";"):
        if not kv.strip() or "=" not in kv:
            continue
        k, v = kv.split("=", 1)
        parts[k.strip()] = v.strip()
    return parts


def is_azure_blob_url(url: str) -> bool:
    try:
        host = (urlparse((url or "").strip()).netloc or "").lower()
    except ValueError:
        return False
    return host.endswith(".blob.core.windows.net")


def is_signed(url: str) -> bool:
    return "sig" in parse_qs(urlparse(url).query)


def split_container_blob(uri: str) -> Tuple[str, str]:
    """
    Extract (container, blob) from either:
      az://<container>/<blob>
      https://<account>.blob.core.windows.net/<container>/<blob>[?<sas>]
    """
    s = (uri or "").strip()
    if s.startswith("az://"):
        path = s[len("az://"):]
    else:
        path = (urlparse(s).path or "").lstrip("/")
    container, _, blob = path.partition("/")
    if not container or not blob:
        raise ValidationError(f"Could not parse container or blob name from: {s}")
    return container, blob


@dataclass(frozen=True)
class AzureBlobSasSigner:
    account_name: str
    account_key: str

    scheme = "az"

    @classmethod
    def from_connection_string(cls, conn_str: str) -> "AzureBlobSasSigner":
        d = _parse_conn_str(conn_str)
        name = d.get("AccountName")
        key = d.get("AccountKey")
        if not name or not key:
            raise ValueError("AZURE_STORAGE_CONNECTION_STRING must include AccountName and AccountKey")
        try:
            base64.b64decode(key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("AZURE_STORAGE_CONNECTION_STRING AccountKey is not valid base64") from e
        return cls(account_name=name, account_key=key)

    @classmethod
    def from_settings(cls, conn_str: Optional[str]) -> Optional["AzureBlobSasSigner"]:
        if not conn_str:
            return None
        return cls.from_connection_string(conn_str)

    def handles(self, uri: str) -> bool:
        s = (uri or "").strip()
        if s.startswith("az://"):
            return True
        # Already-signed blob URLs are public enough to pass through unchanged.
        return is_azure_blob_url(s) and not is_signed(s)

    def sign_read_url(self, container: str, storage_path: str, ttl_seconds: int) -> str:
        """
        Signs a read-only SAS URL for: https://{account}.blob.core.windows.net/{container}/{storage_path}
        """
        blob_name = (storage_path or "").lstrip("/")
        if not blob_name:
            raise ValidationError("storage_path is empty")

        expiry = datetime.now(timezone.utc) + timedelta(seconds=int(ttl_seconds))
        try:
            sas = generate_blob_sas(
                account_name=self.account_name,
                account_key=self.account_key,
                container_name=container,
                blob_name=blob_name,
                permission=BlobSasPermissions(read=True),
                expiry=expiry,
            )
        except (binascii.Error, ValueError, TypeError) as e:
            raise UnresolvableOutput(f"could not sign {container}/{blob_name}: {e}") from e
        return f"https://{self.account_name}.blob.core.windows.net/{container}/{blob_name}?{sas}"

    async def sign(self, uri: str, ttl_seconds: int) -> str:
        # SAS generation is a local HMAC; no I/O to offload.
        container, blob = split_container_blob(uri)
        return self.sign_read_url(container, blob, ttl_seconds)
