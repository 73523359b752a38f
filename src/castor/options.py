"""Per-call options for `send()`, `stream()`, `ask()` and `stream_ask()`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from castor.errors import ConfigurationError

if TYPE_CHECKING:
    from castor.transport import Transport
    from castor.types import Tool


@dataclass(frozen=True)
class Options:
    """Overrides applied on top of an `LLMConfig` for a single call.

    Fields left as ``None`` fall back to the config.
    """

    tools: list[Tool] | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    transport: Transport | None = None
    #: Only used by the ask-variants, which prepend it as a system message.
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int)
            or isinstance(self.max_tokens, bool)
            or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                "max_tokens must be a positive integer",
                hint="Pass max_tokens=1024 or leave it unset to use the config.",
            )

        if self.temperature is not None and (
            not isinstance(self.temperature, (int, float)) or self.temperature < 0
        ):
            raise ConfigurationError(
                "temperature must be a non-negative number",
                hint="Typical values range from 0.0 to 1.0.",
            )

        if self.system_prompt is not None and not isinstance(self.system_prompt, str):
            raise ConfigurationError(
                "system_prompt must be a string",
                hint="Pass system_prompt='You are a concise assistant.'",
            )

        if self.transport is not None and not callable(self.transport):
            raise ConfigurationError(
                "transport must be an async callable (url, request) -> response",
            )
