"""Shared provider-side error helpers.

Non-2xx responses are turned into ProviderError with retry metadata attached,
so callers can decide on retries without matching message substrings.
"""

from __future__ import annotations

from email.utils import parsedate_to_datetime
import json
import time
from typing import TYPE_CHECKING, Any

from castor._http import RETRYABLE_STATUS_CODES
from castor.capabilities import display_name
from castor.config import API_KEY_ENV_VARS
from castor.errors import ProviderError, RateLimitError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from castor.transport import TransportResponse


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Read ``Retry-After`` as seconds (delta-seconds or an HTTP date)."""
    if headers is None:
        return None
    raw: Any = headers.get("retry-after") or headers.get("Retry-After")
    if not isinstance(raw, str) or not raw.strip():
        return None
    raw = raw.strip()
    try:
        seconds = float(raw)
    except ValueError:
        try:
            when = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        seconds = when.timestamp() - time.time()
        return max(seconds, 0.0)
    return seconds if seconds >= 0 else None


def extract_error_message(body: str) -> str:
    """Pull the vendor's human-readable message out of an error body.

    Understands ``{"error": {"message": ...}}`` (OpenAI family, Anthropic,
    Google), ``{"error": "..."}`` (Ollama) and ``{"message": ...}``; falls
    back to the raw text.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip()
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        if isinstance(payload.get("message"), str):
            return payload["message"]
    return body.strip()


def _auth_hint(service: str, status_code: int) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    if status_code not in {401, 403}:
        return None
    env_var = API_KEY_ENV_VARS.get(service, "API key")
    return f"Check credentials/permissions (try setting {env_var} or LLMConfig.api_key)."


def provider_error(
    service: str,
    status_code: int,
    message: str,
    *,
    headers: Mapping[str, str] | None = None,
) -> ProviderError:
    """Build the ProviderError for *service* with stable retry metadata."""
    retry_after_s = parse_retry_after(headers)
    retryable = status_code in RETRYABLE_STATUS_CODES or retry_after_s is not None
    err_cls: type[ProviderError] = (
        RateLimitError if status_code == 429 else ProviderError
    )
    provider = display_name(service)
    return err_cls(
        f"{provider} API error: {status_code} - {message}",
        hint=_auth_hint(service, status_code),
        status_code=status_code,
        provider=provider,
        retryable=retryable,
        retry_after_s=retry_after_s,
    )


async def raise_for_response(response: TransportResponse, service: str) -> None:
    """Raise ProviderError when *response* is not 2xx; otherwise do nothing."""
    if response.ok:
        return
    body = await response.text()
    message = extract_error_message(body) or response.status_text or "request failed"
    raise provider_error(service, response.status, message, headers=response.headers)
