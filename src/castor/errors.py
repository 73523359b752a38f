"""Exception hierarchy for Castor."""

from __future__ import annotations


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Request configuration failed validation."""


class UnsupportedServiceError(ConfigurationError):
    """The config names a service with no registered adapter."""

    def __init__(self, service: object, *, hint: str | None = None) -> None:
        super().__init__(f"Unsupported service: {service!r}", hint=hint)
        self.service = service


class ConversationFlowError(ConfigurationError):
    """Message ordering breaks the tool-call/tool-result pairing rules.

    ``position`` is the zero-based index of the offending message.
    """

    def __init__(
        self,
        message: str,
        *,
        position: int,
        provider: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.position = position
        self.provider = provider


class ToolResultError(ConfigurationError):
    """A tool_result message lacks the linkage its provider needs."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        position: int | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.position = position


class ProviderError(CastorError):
    """The provider answered with a non-2xx status or an error payload.

    ``retryable`` and ``retry_after_s`` are informational; Castor never
    retries on its own.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        retryable: bool | None = None,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.provider = provider
        self.retryable = retryable
        self.retry_after_s = retry_after_s


class RateLimitError(ProviderError):
    """Rate limit exceeded (HTTP 429)."""


class TransportError(CastorError):
    """The HTTP transport failed before a response was available."""


class StreamParseError(CastorError):
    """A streamed chunk could not be decoded.

    Raised and caught inside stream decoders only; callers never see it.
    """

    def __init__(self, message: str, *, payload: str | None = None) -> None:
        super().__init__(message)
        self.payload = payload
