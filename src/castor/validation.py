"""Pure validators for configs, tool results and conversation flow."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from castor.capabilities import display_name, is_openai_compatible, requires_api_key
from castor.errors import (
    ConfigurationError,
    ConversationFlowError,
    ToolResultError,
    UnsupportedServiceError,
)
from castor.types import MESSAGE_ROLES, SERVICES, Tool

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from castor.config import LLMConfig
    from castor.types import Message, ToolCall


def validate_config(config: LLMConfig) -> None:
    """Check that *config* is well-formed enough to dispatch.

    Raises:
        UnsupportedServiceError: Unknown service.
        ConfigurationError: Missing model, key or messages, or a malformed message.
    """
    if config.service not in SERVICES:
        raise UnsupportedServiceError(
            config.service, hint=f"Supported services: {', '.join(SERVICES)}"
        )

    provider = display_name(config.service)
    if not isinstance(config.model, str) or not config.model.strip():
        raise ConfigurationError(
            f"Model is required for {provider}",
            hint="Pass LLMConfig(model=...).",
        )

    if requires_api_key(config.service) and not config.api_key:
        raise ConfigurationError(
            f"API key is required for {provider}",
            hint="Pass LLMConfig(api_key=...) or use castor.config.resolve_api_key().",
        )

    if not config.messages:
        raise ConfigurationError(
            "At least one message is required",
            hint="Use ask() to send a single question without building messages.",
        )

    for position, message in enumerate(config.messages):
        role = getattr(message, "role", None)
        if role not in MESSAGE_ROLES:
            raise ConfigurationError(
                f"Message {position} has invalid role {role!r}",
                hint=f"Valid roles: {', '.join(sorted(MESSAGE_ROLES))}",
            )
        if (
            message.content is None
            and not message.tool_calls
            and role != "tool_result"
        ):
            raise ConfigurationError(
                f"Message {position} ({role}) must have content or tool_calls",
            )

    if config.max_tokens is not None and config.max_tokens <= 0:
        raise ConfigurationError(
            f"max_tokens must be positive for {provider}, got {config.max_tokens}",
        )

    if config.tools:
        seen: set[str] = set()
        for tool in sanitize_tools(config.tools):
            name = tool.get("name")
            if not name:
                raise ConfigurationError("Every tool needs a name")
            if name in seen:
                raise ConfigurationError(
                    f"Duplicate tool name {name!r}",
                    hint="Tool names must be unique within a request.",
                )
            seen.add(name)


def validate_tool_result_message(
    message: Message, service: str, *, position: int | None = None
) -> None:
    """Check that a ``tool_result`` message can be linked by *service*.

    OpenAI-family providers and Anthropic need ``tool_call_id``. Google needs
    the function ``name``, or an id the encoder can resolve to one. Ollama
    ignores tools, so anything goes.
    """
    if message.role != "tool_result" or service == "ollama":
        return

    provider = display_name(service)
    where = f" (message {position})" if position is not None else ""
    if is_openai_compatible(service) or service == "anthropic":
        if not message.tool_call_id:
            raise ToolResultError(
                f"Tool result message must have tool_call_id for {provider} API{where}",
                provider=provider,
                position=position,
                hint="Copy ToolCall.id from the assistant turn into tool_call_id.",
            )
    elif service == "google":
        if not message.name and not message.tool_call_id:
            raise ToolResultError(
                f"Tool result for {provider} must include a name or tool_call_id{where}",
                provider=provider,
                position=position,
                hint="Set name to the function name the model called.",
            )

    if message.content is None:
        raise ToolResultError(
            f"Tool result message must have content for {provider} API{where}",
            provider=provider,
            position=position,
            hint="Pass the tool output as text, or a dict to send it as JSON.",
        )


def validate_conversation_flow(
    messages: Sequence[Message], provider: str
) -> list[Message]:
    """Check tool-call/tool-result pairing for OpenAI-style APIs.

    Every tool result must answer a call from the closest preceding assistant
    turn that issued calls. User turns may sit between calls and results.
    A result without an id is bound to the sole pending call when there is
    exactly one.

    Returns:
        The messages, with bound results replaced by updated copies.

    Raises:
        ConversationFlowError: A result has no pending call to answer.
    """
    pending: dict[str, str] = {}
    resolved: list[Message] = []

    for position, message in enumerate(messages):
        role = message.role
        if role in ("assistant", "tool_call") and message.tool_calls:
            pending = {tc.id: tc.name for tc in message.tool_calls}
        elif role == "tool_result":
            if not pending:
                raise ConversationFlowError(
                    f"{provider}: tool result at position {position} does not "
                    "follow an assistant message with tool_calls",
                    position=position,
                    provider=provider,
                    hint="Append the assistant turn carrying tool_calls before its results.",
                )
            call_id = message.tool_call_id
            if call_id:
                if call_id not in pending:
                    raise ConversationFlowError(
                        f"{provider}: tool result at position {position} references "
                        f"unknown or already answered tool_call_id {call_id!r}",
                        position=position,
                        provider=provider,
                    )
                del pending[call_id]
            elif len(pending) == 1:
                call_id, name = next(iter(pending.items()))
                message = replace(message, tool_call_id=call_id, name=message.name or name)
                pending.clear()
        elif role != "user":
            pending = {}
        resolved.append(message)

    return resolved


def resolve_tool_result_linking(messages: Iterable[Message]) -> list[Message]:
    """Fill missing ``tool_call_id``/``name`` on tool results.

    Matches against the most recent ``tool_calls`` (on an ``assistant`` or
    ``tool_call`` message): by name, by id,
    or, when only one call was made, both. Ambiguous results are left as-is.
    """
    last_calls: list[ToolCall] = []
    resolved: list[Message] = []

    for message in messages:
        if message.role in ("assistant", "tool_call") and message.tool_calls:
            last_calls = list(message.tool_calls)
            resolved.append(message)
            continue
        if message.role != "tool_result" or not last_calls:
            resolved.append(message)
            continue

        call_id, name = message.tool_call_id, message.name
        if not call_id and name:
            same_name = [tc for tc in last_calls if tc.name == name]
            if same_name:
                call_id = same_name[0].id
        if call_id and not name:
            by_id = next((tc for tc in last_calls if tc.id == call_id), None)
            if by_id is not None:
                name = by_id.name
        if not call_id and not name and len(last_calls) == 1:
            call_id, name = last_calls[0].id, last_calls[0].name

        if (call_id, name) != (message.tool_call_id, message.name):
            message = replace(message, tool_call_id=call_id, name=name)
        resolved.append(message)

    return resolved


def sanitize_tool_definition(tool: Tool | Mapping[str, Any]) -> dict[str, Any]:
    """Keep only the standard ``name``/``description``/``parameters`` fields."""
    if isinstance(tool, Tool):
        return {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        }
    if isinstance(tool, Mapping):
        return {
            "name": tool.get("name"),
            "description": tool.get("description"),
            "parameters": tool.get("parameters"),
        }
    raise ConfigurationError(
        f"Unsupported tool definition: {type(tool).__name__}",
        hint="Pass castor.Tool instances or dicts with name/description/parameters.",
    )


def sanitize_tools(tools: Iterable[Tool | Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Sanitize every tool definition for a request body."""
    return [sanitize_tool_definition(tool) for tool in tools]
