from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Iterable, List, Optional, Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from genie_studio.config import settings
from genie_studio.domain.enums import ArtifactKind, ErrorKind
from genie_studio.domain.errors import GenerationError, TransportError, UnresolvableOutput, ValidationError
from genie_studio.domain.jobs import ArtifactFailure, ArtifactReference, OutputItem, ResolutionResult
from genie_studio.services.providers.base import ProviderClient
from genie_studio.services.storage.base import StorageSigner

logger = logging.getLogger("result_resolver")


def _is_public_url(uri: str) -> bool:
    s = uri.strip().lower()
    return s.startswith("https://") or s.startswith("http://")


def _data_uri(inline_base64: str, mime_type: Optional[str]) -> str:
    payload = "".join(inline_base64.split())
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise UnresolvableOutput(f"inline data is not valid base64: {e}") from e
    return f"data:{mime_type or 'application/octet-stream'};base64,{payload}"


class ResultResolver:
    """
    Turns a succeeded job's raw output into artifact references.

    Per output item:
      - internal storage reference (gs://, az://, unsigned blob URL) -> signed URL
      - public http(s) URL -> unchanged
      - inline base64 -> data: URI
      - anything else -> per-index UnresolvableOutput

    Items resolve independently. A batch fails as a whole only when nothing
    resolved.
    """

    def __init__(
        self,
        signers: Iterable[StorageSigner] = (),
        *,
        ttl_seconds: Optional[int] = None,
        sign_attempts: int = 2,
    ) -> None:
        self.signers: List[StorageSigner] = list(signers)
        self.ttl_seconds = int(ttl_seconds or settings.SIGNED_URL_TTL_SECONDS)
        self.sign_attempts = max(1, int(sign_attempts))

    def _signer_for(self, uri: str) -> Optional[StorageSigner]:
        for signer in self.signers:
            if signer.handles(uri):
                return signer
        return None

    async def _sign(self, signer: StorageSigner, uri: str) -> str:
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.sign_attempts),
            wait=wait_exponential(multiplier=0.3, min=0.3, max=2.0),
            retry=retry_if_exception_type(TransportError),
        ):
            with attempt:
                return await signer.sign(uri, self.ttl_seconds)
        raise TransportError(f"signing failed for {uri}")  # unreachable with reraise=True

    async def sign_uri(self, uri: str) -> str:
        """Signed read URL for one storage reference (used by the signed-url route)."""
        signer = self._signer_for((uri or "").strip())
        if signer is None:
            raise ValidationError(f"unsupported storage reference: {(uri or '')[:120]}")
        return await self._sign(signer, uri.strip())

    async def resolve_item(self, item: OutputItem, index: int = 0) -> ArtifactReference:
        uri = (item.uri or "").strip()

        if uri:
            signer = self._signer_for(uri)
            if signer is not None:
                url = await self._sign(signer, uri)
                return ArtifactReference(ArtifactKind.remote_url, url, index=index, mime_type=item.mime_type, label=item.label)
            if _is_public_url(uri):
                return ArtifactReference(ArtifactKind.remote_url, uri, index=index, mime_type=item.mime_type, label=item.label)

        if item.inline_base64:
            return ArtifactReference(
                ArtifactKind.inline_data,
                _data_uri(item.inline_base64, item.mime_type),
                index=index,
                mime_type=item.mime_type,
                label=item.label,
            )

        if uri:
            raise UnresolvableOutput(f"no signer for storage reference: {uri[:120]}")
        raise UnresolvableOutput("output has neither a usable URL nor inline data")

    async def resolve_items(self, items: Sequence[OutputItem]) -> ResolutionResult:
        if not items:
            raise UnresolvableOutput("job succeeded but produced no outputs")

        artifacts: List[ArtifactReference] = []
        failures: List[ArtifactFailure] = []
        for index, item in enumerate(items):
            try:
                artifacts.append(await self.resolve_item(item, index))
            except GenerationError as e:
                kind = e.kind if e.kind in (ErrorKind.transport, ErrorKind.unresolvable_output) else ErrorKind.unresolvable_output
                failures.append(ArtifactFailure(index=index, kind=kind, detail=str(e)))
                logger.warning("artifact_unresolved", extra={"index": index, "kind": kind.value, "error": str(e)})
            except Exception as e:
                detail = str(e) or type(e).__name__
                failures.append(ArtifactFailure(index=index, kind=ErrorKind.unresolvable_output, detail=detail))
                logger.exception("artifact_unresolved_unexpected", extra={"index": index})

        if not artifacts:
            detail = "; ".join(f"[{f.index}] {f.detail}" for f in failures)
            if all(f.kind == ErrorKind.transport for f in failures):
                raise TransportError(f"no output could be resolved: {detail}")
            raise UnresolvableOutput(f"no output could be resolved: {detail}")

        return ResolutionResult(artifacts=artifacts, failures=failures)

    async def resolve(self, raw_output: Any, provider: ProviderClient) -> ResolutionResult:
        return await self.resolve_items(provider.extract_outputs(raw_output))


def default_signers() -> List[StorageSigner]:
    from genie_studio.services.storage.azure import AzureBlobSasSigner
    from genie_studio.services.storage.gcs import GcsUrlSigner

    signers: List[StorageSigner] = [GcsUrlSigner()]
    azure = AzureBlobSasSigner.from_settings(settings.AZURE_STORAGE_CONNECTION_STRING)
    if azure is not None:
        signers.append(azure)
    return signers
