"""Unit tests for the startup LLM provider health check."""

from unittest.mock import AsyncMock, patch

from letterbox_daemon.llm_validator import check_provider, check_providers
from letterbox_daemon.providers import LLMProvider, ProviderChain


def test_healthy_provider() -> None:
    provider = LLMProvider("ollama", "ollama/llama3.2", api_base="http://localhost:11434")

    with patch("litellm.ahealth_check", new=AsyncMock(return_value={})) as mock_check:
        assert check_provider(provider) is None

    params = mock_check.call_args.args[0]
    assert params["model"] == "ollama/llama3.2"
    assert params["api_base"] == "http://localhost:11434"
    assert params["timeout"] == 180


def test_error_result_is_reported() -> None:
    provider = LLMProvider("openai", "gpt-4o-mini", api_key="sk-bad")

    with patch(
        "litellm.ahealth_check", new=AsyncMock(return_value={"error": "invalid api key"})
    ):
        assert check_provider(provider) == "invalid api key"


def test_check_providers_never_raises() -> None:
    """Test a probe that raises is reported per provider."""
    chain = ProviderChain(
        [LLMProvider("openai", "gpt-4o-mini"), LLMProvider("ollama", "ollama/llama3.2")]
    )

    with patch(
        "litellm.ahealth_check",
        new=AsyncMock(side_effect=[ConnectionError("connection refused"), {}]),
    ):
        results = check_providers(chain)

    assert results == {"openai": "connection refused", "ollama": None}
