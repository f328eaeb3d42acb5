from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from genie_studio.domain.errors import ProviderRejected, TransportError

# 408/425 are timeouts on the provider edge and behave like transport failures.
_TRANSIENT_4XX = (408, 425)


def make_client(
    timeout_s: float,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    # Safer defaults under load
    limits = httpx.Limits(max_connections=50, max_keepalive_connections=20)
    timeout = httpx.Timeout(timeout_s, connect=10.0)
    return httpx.AsyncClient(timeout=timeout, limits=limits, transport=transport, follow_redirects=True)


def error_message(resp: httpx.Response) -> str:
    """
    Best-effort human-readable message from an error response.

    Providers put it in different places: {"detail": ...} (Replicate),
    {"error": {"message": ...}} (Google APIs), or plain text.
    """
    try:
        body = resp.json()
    except (json.JSONDecodeError, ValueError):
        return (resp.text or "").strip()[:500] or resp.reason_phrase

    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if body.get("detail"):
            return str(body["detail"])
        if body.get("title"):
            return str(body["title"])
    return json.dumps(body)[:500]


def raise_for_provider_status(resp: httpx.Response, *, provider: str, action: str) -> None:
    """
    Classify a non-2xx response.

      - 5xx / 408 / 425 -> TransportError (retryable)
      - other 4xx (auth, validation, quota/429, unknown id) -> ProviderRejected
    """
    code = resp.status_code
    if code < 400:
        return

    msg = f"{provider} {action} failed {code}: {error_message(resp)}"
    if code >= 500 or code in _TRANSIENT_4XX:
        raise TransportError(msg, status_code=code)
    raise ProviderRejected(msg, status_code=code)


def safe_json(resp: httpx.Response, *, provider: str) -> Dict[str, Any]:
    """
    Providers occasionally return 200 with an empty or non-JSON body
    behind a flaky proxy. That is treated as a transport failure.
    """
    text = (resp.text or "").strip()
    if not text:
        raise TransportError(f"{provider}: HTTP {resp.status_code} but EMPTY_BODY")
    try:
        obj = resp.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise TransportError(f"{provider}: INVALID_JSON: {e} body={text[:200]}") from e
    if not isinstance(obj, dict):
        raise TransportError(f"{provider}: UNEXPECTED_JSON_TYPE: {type(obj).__name__}")
    return obj


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    action: str,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Issue one request and return its JSON body, mapping every failure into the error taxonomy."""
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransportError(f"{provider} {action} timed out: {e}") from e
    except httpx.TransportError as e:
        raise TransportError(f"{provider} {action} transport error: {e}") from e

    raise_for_provider_status(resp, provider=provider, action=action)
    return safe_json(resp, provider=provider)
