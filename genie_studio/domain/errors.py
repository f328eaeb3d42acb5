from __future__ import annotations

from typing import Optional

from genie_studio.domain.enums import ErrorKind


class GenerationError(RuntimeError):
    """
    Base of the generation error taxonomy.

    Every error carries an ErrorKind so the orchestration facade can turn it
    into a single Failed(kind, detail) event without inspecting messages.
    """

    kind: ErrorKind = ErrorKind.internal

    def __init__(self, detail: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class ValidationError(GenerationError):
    kind = ErrorKind.validation


class ProviderRejected(GenerationError):
    kind = ErrorKind.provider_rejected


class TransportError(GenerationError):
    """Network-level or 5xx failure. The only retryable kind."""

    kind = ErrorKind.transport


class PollingExhausted(GenerationError):
    kind = ErrorKind.polling_exhausted


class TimedOut(GenerationError):
    kind = ErrorKind.timed_out


class UnresolvableOutput(GenerationError):
    kind = ErrorKind.unresolvable_output


class ProviderFailed(GenerationError):
    kind = ErrorKind.provider_failed


class InternalError(GenerationError):
    kind = ErrorKind.internal
