"""
Agents Package

LLM-backed agents used by the market engine:
- Resolution oracle that settles markets from a news summary
- Provider wrapper with Groq / OpenAI / Anthropic fallback
"""

from agents.llm_provider import ModelTier, get_llm
from agents.resolution_oracle import (
    ResolutionOracle,
    OracleRequest,
    OracleDecision,
    OracleFailure,
)

__all__ = [
    # Providers
    "ModelTier",
    "get_llm",

    # Resolution
    "ResolutionOracle",
    "OracleRequest",
    "OracleDecision",
    "OracleFailure",
]
