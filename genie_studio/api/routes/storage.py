from __future__ import annotations

from fastapi import APIRouter, Depends

from genie_studio.api.deps import RequireGenerationEnabled, get_resolver
from genie_studio.domain.models import SignedUrlRequest, SignedUrlView
from genie_studio.services.result_resolver import ResultResolver

router = APIRouter(prefix="/storage", tags=["storage"])


@router.post("/signed-url", dependencies=[RequireGenerationEnabled], response_model=SignedUrlView)
async def signed_url(
    body: SignedUrlRequest,
    resolver: ResultResolver = Depends(get_resolver),
) -> SignedUrlView:
    url = await resolver.sign_uri(body.uri)
    return SignedUrlView(signed_url=url, expires_in_seconds=resolver.ttl_seconds)
