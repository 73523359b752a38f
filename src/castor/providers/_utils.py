"""Shared utilities for provider implementations."""

from __future__ import annotations

from copy import deepcopy
import json
import re
from typing import TYPE_CHECKING, Any

from castor.errors import ConfigurationError

if TYPE_CHECKING:
    from castor.types import ContentPart, Message

_GOOGLE_UNSUPPORTED_SCHEMA_KEYS = frozenset({"additionalProperties", "$schema"})
_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]+)?(?:;[^,]*)?;base64,(?P<data>.*)$", re.S)


def sanitize_google_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Strip JSON-schema keys Gemini rejects, at every depth."""
    normalized = deepcopy(schema)

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node
        return {
            key: walk(value)
            for key, value in node.items()
            if key not in _GOOGLE_UNSUPPORTED_SCHEMA_KEYS
        }

    result = walk(normalized)
    if not isinstance(result, dict):
        raise ConfigurationError("Invalid tool parameters: expected object schema")
    return result


def stringify_content(content: Any) -> str:
    """Render message content as plain text for wire fields that only take strings.

    Dicts become JSON; part lists keep their text parts joined by newlines.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        return json.dumps(content)
    if isinstance(content, list):
        return "\n".join(
            part.content for part in content if part.type == "text" and part.content
        )
    return str(content)


def text_of(message: Message) -> str:
    """Text carried by *message*, ignoring non-text parts."""
    return stringify_content(message.content)


def split_data_url(part: ContentPart) -> tuple[str, str] | None:
    """Return ``(mime_type, base64_data)`` for inline parts, else ``None``.

    A part is inline when its content is a ``data:`` URL, or bare base64 with
    ``metadata["mimeType"]`` set. Anything else is treated as a URL.
    """
    match = _DATA_URL_RE.match(part.content)
    if match:
        return match.group("mime") or _mime_from(part), match.group("data")
    mime = _mime_from(part, default=None)
    if mime and not _looks_like_url(part.content):
        return mime, part.content
    return None


def to_data_url(part: ContentPart) -> str:
    """Return *part* as something a URL field accepts."""
    inline = split_data_url(part)
    if inline is None or part.content.startswith("data:"):
        return part.content
    mime, data = inline
    return f"data:{mime};base64,{data}"


def _mime_from(part: ContentPart, default: str | None = "application/octet-stream") -> str | None:
    metadata = part.metadata or {}
    mime = metadata.get("mimeType") or metadata.get("mime_type")
    return mime if isinstance(mime, str) and mime else default


def _looks_like_url(value: str) -> bool:
    return value.startswith(("http://", "https://", "gs://", "file://", "data:"))


def omit_none(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop top-level keys whose value is ``None``."""
    return {key: value for key, value in payload.items() if value is not None}


def parse_tool_arguments(raw: Any) -> dict[str, Any] | None:
    """Decode tool-call arguments; ``None`` when they are not a JSON object."""
    if isinstance(raw, dict):
        return raw
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}
    if not isinstance(raw, str):
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
