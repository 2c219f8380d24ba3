"""Startup health check of the configured LLM providers."""

import asyncio
import logging
from typing import Dict, Optional

import litellm

from .providers import LLMProvider, ProviderChain

logger = logging.getLogger(__name__)


def check_provider(provider: LLMProvider) -> Optional[str]:
    """Probe one provider. Returns None when healthy, else the error text."""
    model_params = {"model": provider.model, "timeout": provider.timeout}
    if provider.api_key:
        model_params["api_key"] = provider.api_key
    if provider.api_base:
        model_params["api_base"] = provider.api_base

    try:
        result = asyncio.run(litellm.ahealth_check(model_params))
    except Exception as e:
        return str(e)

    if isinstance(result, dict) and result.get("error"):
        return str(result["error"])
    return None


def check_providers(chain: ProviderChain) -> Dict[str, Optional[str]]:
    """Health-check every provider in the chain.

    Failures are reported, not raised: the chain tolerates unavailable
    providers at call time.

    Returns:
        Provider name -> None if healthy, else the error text
    """
    results = {}
    for provider in chain.providers:
        error = check_provider(provider)
        if error:
            logger.warning(f"LLM provider {provider.name} unavailable: {error}")
        else:
            logger.info(f"LLM provider {provider.name} ({provider.model}) OK")
        results[provider.name] = error
    return results
