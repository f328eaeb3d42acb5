from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from genie_studio.domain.enums import ErrorKind
from genie_studio.domain.errors import GenerationError

logger = logging.getLogger("api_errors")

_STATUS_BY_KIND = {
    ErrorKind.validation: 400,
    ErrorKind.provider_rejected: 502,
    ErrorKind.provider_failed: 502,
    ErrorKind.unresolvable_output: 502,
    ErrorKind.transport: 503,
    ErrorKind.polling_exhausted: 503,
    ErrorKind.timed_out: 504,
    ErrorKind.internal: 500,
}


def http_status_for(err: GenerationError) -> int:
    return _STATUS_BY_KIND.get(err.kind, 500)


async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    status_code = http_status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "request_failed",
        extra={"path": request.url.path, "kind": exc.kind.value, "status_code": status_code, "error": str(exc)},
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error_kind": exc.kind.value})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GenerationError, generation_error_handler)
