"""AI providers (via LiteLLM) and the ordered fallback chain over them."""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import litellm
from litellm import completion_cost

from .circuit_breaker import get_circuit_breaker
from .errors import MalformedProviderResponse, ProviderFailure, SummarizationUnavailable
from .observability import log as obs_log

logger = logging.getLogger(__name__)

REMOTE_TIMEOUT_SECONDS = 60
LOCAL_TIMEOUT_SECONDS = 180

# Drop unsupported params (e.g. response_format on older Ollama models)
litellm.drop_params = True


def default_timeout(model: str) -> int:
    """Local Ollama models get the long ceiling, remote APIs the short one."""
    return LOCAL_TIMEOUT_SECONDS if model.startswith("ollama") else REMOTE_TIMEOUT_SECONDS


class LLMProvider:
    """One chat-completion provider reachable through LiteLLM."""

    def __init__(
        self,
        name: str,
        model: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: float = 0.3,
    ):
        if not model:
            raise ValueError(f"Provider '{name}' has no model configured")
        self.name = name
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout if timeout is not None else default_timeout(model)
        self.temperature = temperature

    def __repr__(self) -> str:
        return f"LLMProvider(name={self.name!r}, model={self.model!r})"

    def complete(self, system_prompt: str, user_prompt: str, action: str = "complete") -> str:
        """Run one completion and return the response text.

        The timeout is handed to the HTTP client, so a slow provider raises
        instead of holding the caller.

        Raises:
            ProviderFailure: On any transport error, timeout or empty response
        """
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        start_time = time.time()
        try:
            response = litellm.completion(**kwargs)
        except Exception as e:
            obs_log(
                "llm.call",
                action=action,
                provider=self.name,
                model=self.model,
                status="error",
                error=str(e),
                duration_ms=int((time.time() - start_time) * 1000),
            )
            raise ProviderFailure(self.name, str(e)) from e

        usage = getattr(response, "usage", None)
        tokens = {
            "prompt": usage.prompt_tokens if usage else 0,
            "completion": usage.completion_tokens if usage else 0,
            "total": usage.total_tokens if usage else 0,
        }
        try:
            cost_usd = completion_cost(response)
        except Exception:
            cost_usd = 0.0

        obs_log(
            "llm.call",
            action=action,
            provider=self.name,
            model=self.model,
            tokens=tokens,
            cost_usd=cost_usd,
            duration_ms=int((time.time() - start_time) * 1000),
            status="success",
        )

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            raise ProviderFailure(self.name, "empty response")
        return text


def parse_json_object(provider: str, text: str) -> Dict[str, Any]:
    """Parse provider output that must be a JSON object.

    Raises:
        MalformedProviderResponse: If the text is not JSON or not an object
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedProviderResponse(provider, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedProviderResponse(
            provider, f"expected a JSON object, got {type(data).__name__}"
        )
    return data


class ProviderChain:
    """Ordered providers tried one after another until one answers.

    Each provider is isolated: its failure (error, timeout, empty or
    malformed output) is recorded and the next provider is tried.
    """

    def __init__(self, providers: List[LLMProvider]):
        self.providers = list(providers)

    def __len__(self) -> int:
        return len(self.providers)

    def complete_json(
        self, system_prompt: str, user_prompt: str, action: str = "complete"
    ) -> Tuple[Dict[str, Any], LLMProvider]:
        """Return the first JSON object any provider produces, and that provider.

        Raises:
            SummarizationUnavailable: If every provider failed (or none exist)
        """
        failures: List[ProviderFailure] = []

        for provider in self.providers:
            breaker = get_circuit_breaker(provider.name)
            if not breaker.check_can_proceed():
                logger.info(f"Skipping provider {provider.name}: circuit open")
                failures.append(ProviderFailure(provider.name, "circuit open"))
                continue

            try:
                text = provider.complete(system_prompt, user_prompt, action=action)
                data = parse_json_object(provider.name, text)
            except ProviderFailure as e:
                breaker.record_failure(e)
                failures.append(e)
                logger.warning(f"Provider {provider.name} failed, trying next: {e.reason}")
                continue

            breaker.record_success()
            return data, provider

        raise SummarizationUnavailable(failures)


def build_providers(provider_configs: List[Dict[str, Any]]) -> ProviderChain:
    """Build the chain from [[llm.providers]] entries, in configured order.

    Entries whose api_key is still an unexpanded env: reference are
    skipped as unconfigured.
    """
    providers = []
    for entry in provider_configs:
        name = entry.get("name") or entry.get("model", "")
        api_key = entry.get("api_key") or None
        if api_key and api_key.startswith("env:"):
            logger.info(f"Provider {name} not configured ({api_key[4:]} unset), skipping")
            continue
        providers.append(
            LLMProvider(
                name=name,
                model=entry.get("model", ""),
                api_key=api_key,
                api_base=entry.get("api_base") or None,
                timeout=entry.get("timeout"),
            )
        )
    return ProviderChain(providers)
