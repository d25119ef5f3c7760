"""
LLM Provider Wrapper

Builds LangChain chat models for the agents, trying providers in order
(Groq -> OpenAI -> Anthropic) and skipping any without an API key.

Usage:
    from agents.llm_provider import get_llm

    llm = get_llm("resolution")
    response = await llm.ainvoke(messages)
"""

import os
import logging
from typing import Dict, Any, Optional, Union
from enum import Enum

logger = logging.getLogger(__name__)


class ModelTier(Enum):
    """Model tiers for different use cases."""
    RESOLUTION = "resolution"    # Settles markets: best model, deterministic


# Model configurations by tier and provider
MODEL_CONFIG = {
    ModelTier.RESOLUTION: {
        "groq": {"model": "llama-3.3-70b-versatile", "temperature": 0.0, "max_tokens": 512},
        "openai": {"model": "gpt-4o", "temperature": 0.0, "max_tokens": 512},
        "anthropic": {"model": "claude-3-5-sonnet-20241022", "temperature": 0.0, "max_tokens": 512},
    },
}

# Provider priority order
PROVIDER_ORDER = ["groq", "openai", "anthropic"]


def _get_api_key(provider: str) -> Optional[str]:
    """Get API key for a provider."""
    key_map = {
        "groq": "GROQ_API_KEY",
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
    }
    return os.getenv(key_map.get(provider, ""))


def _create_llm(provider: str, config: Dict[str, Any]):
    """Create an LLM instance for a provider."""
    api_key = _get_api_key(provider)
    if not api_key:
        return None

    temperature = config.get("temperature", 0.3)
    max_tokens = config.get("max_tokens")

    if provider == "groq":
        from langchain_groq import ChatGroq
        return ChatGroq(
            model=config["model"],
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    elif provider == "openai":
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=config["model"],
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    elif provider == "anthropic":
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(
            model=config["model"],
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens or 1024,
        )

    return None


def get_llm(tier: Union[str, ModelTier] = ModelTier.RESOLUTION):
    """
    Get an LLM instance for the specified tier.

    Args:
        tier: Model tier name or ModelTier enum

    Returns:
        LLM instance, or None if no provider has an API key configured
    """
    if isinstance(tier, str):
        tier = ModelTier(tier.lower())

    tier_config = MODEL_CONFIG[tier]

    # Try providers in order
    for prov in PROVIDER_ORDER:
        if prov in tier_config:
            llm = _create_llm(prov, tier_config[prov])
            if llm:
                logger.info(f"Using {prov} ({tier_config[prov]['model']}) for tier '{tier.value}'")
                return llm

    logger.warning(f"No LLM providers configured for tier '{tier.value}'")
    return None
