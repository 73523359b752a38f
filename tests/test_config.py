"""Configuration boundary tests: LLMConfig, Options and key resolution."""

from __future__ import annotations

import dataclasses

import pytest

from castor.config import LLMConfig, resolve_api_key
from castor.errors import ConfigurationError
from castor.options import Options
from castor.types import Message

pytestmark = pytest.mark.unit


def test_config_is_frozen() -> None:
    cfg = LLMConfig(service="openai", model="gpt-4o-mini", api_key="sk")
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.model = "other"  # type: ignore[misc]


def test_config_repr_redacts_api_key() -> None:
    cfg = LLMConfig(
        service="openai",
        model="gpt-4o-mini",
        api_key="sk-very-secret",
        messages=[Message(role="user", content="hi")],
    )

    text = repr(cfg)
    assert "sk-very-secret" not in text
    assert "[REDACTED]" in text
    assert str(cfg) == text
    assert "messages=1" in text


def test_config_defaults() -> None:
    cfg = LLMConfig(service="ollama", model="llama3")
    assert cfg.messages == []
    assert cfg.api_key is None
    assert cfg.is_browser is False
    assert cfg.enable_thinking is False


# =============================================================================
# resolve_api_key (opt-in environment lookup)
# =============================================================================


def test_resolve_api_key_reads_conventional_variable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "gem-key")
    monkeypatch.setenv("XAI_API_KEY", "xai-key")

    assert resolve_api_key("google") == "gem-key"
    assert resolve_api_key("xai") == "xai-key"


def test_resolve_api_key_returns_none_when_unset_or_empty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("GROQ_API_KEY", "")
    assert resolve_api_key("groq") is None
    assert resolve_api_key("openai") is None


def test_resolve_api_key_is_none_for_ollama() -> None:
    assert resolve_api_key("ollama") is None


def test_resolve_api_key_loads_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[bool] = []

    def fake_load_dotenv(*_args: object, **_kwargs: object) -> bool:
        calls.append(True)
        monkeypatch.setenv("DEEPSEEK_API_KEY", "from-dotenv")
        return True

    monkeypatch.setattr("castor.config.load_dotenv", fake_load_dotenv)

    assert resolve_api_key("deepseek") == "from-dotenv"
    assert calls == [True]


# =============================================================================
# Options
# =============================================================================


def test_options_defaults_are_all_none() -> None:
    opts = Options()
    assert opts.tools is None
    assert opts.temperature is None
    assert opts.max_tokens is None
    assert opts.transport is None
    assert opts.system_prompt is None


@pytest.mark.parametrize("max_tokens", [0, -5, True, 2.5])
def test_options_reject_invalid_max_tokens(max_tokens: object) -> None:
    with pytest.raises(ConfigurationError) as exc:
        Options(max_tokens=max_tokens)  # type: ignore[arg-type]
    assert exc.value.hint is not None


@pytest.mark.parametrize("temperature", [-0.1, "hot"])
def test_options_reject_invalid_temperature(temperature: object) -> None:
    with pytest.raises(ConfigurationError, match="temperature"):
        Options(temperature=temperature)  # type: ignore[arg-type]


def test_options_accept_zero_temperature() -> None:
    assert Options(temperature=0).temperature == 0


def test_options_reject_non_callable_transport() -> None:
    with pytest.raises(ConfigurationError, match="transport"):
        Options(transport="http://proxy")  # type: ignore[arg-type]


def test_options_reject_non_string_system_prompt() -> None:
    with pytest.raises(ConfigurationError, match="system_prompt"):
        Options(system_prompt=["be brief"])  # type: ignore[arg-type]
