"""
Resolution Oracle Agent

Reads a market title and a news summary and decides which outcome was
actually realised. The chat model is passed in at construction, so tests
and alternative providers can substitute their own.

Example:
- Input:  "Will India win the T20 series?" + "India beat Australia 3-1..."
          outcomes [("OUT_A", "Yes"), ("OUT_B", "No")]
- Output: OracleDecision(winner="OUT_A", confidence=0.97, reasoning="...")
"""

import re
import json
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class OracleFailure(Exception):
    """
    The oracle could not produce a usable decision.

    `retriable` is set for timeouts and transport errors, where asking
    again later may succeed.
    """

    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.retriable = retriable


class OracleDecision(BaseModel):
    """Structured answer the model must return. JSON types are not coerced."""
    model_config = ConfigDict(strict=True)

    winner: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = Field(..., min_length=1)


@dataclass
class OracleRequest:
    market_title: str
    news_summary: str
    outcomes: List[Tuple[str, str]]  # (outcome_id, label)


def build_system_prompt(outcomes: Sequence[Tuple[str, str]]) -> str:
    outcome_list = "\n".join(f'  - ID: "{oid}" -> Label: "{label}"' for oid, label in outcomes)

    return f"""You are a fair and impartial prediction market resolver for a virtual-points platform.

Your job is to read a market title and a news summary, then determine which outcome
has ACTUALLY been realised in the real world.

Available outcomes:
{outcome_list}

Rules:
1. Choose EXACTLY ONE winner from the provided outcome IDs.
2. Confidence must be a float between 0.0 and 1.0.
3. If the news summary is ambiguous or inconclusive, set confidence below 0.5 and pick the most likely outcome.
4. Respond ONLY with a valid JSON object, no markdown fences, no extra text:
{{
  "winner": "<exact outcome ID>",
  "confidence": <float 0-1>,
  "reasoning": "<one or two sentences explaining your decision>"
}}"""


def build_user_prompt(market_title: str, news_summary: str) -> str:
    return f'Market title: "{market_title}"\n\nNews summary:\n{news_summary.strip()}'


def parse_decision(raw: str) -> OracleDecision:
    """Parse the model's text into an OracleDecision or raise OracleFailure."""
    if not raw or not raw.strip():
        raise OracleFailure("LLM returned an empty response")

    text = raw.strip()
    # Models sometimes wrap JSON in ```json fences despite instructions
    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise OracleFailure(f"LLM response is not valid JSON: {raw[:200]}")

    if not isinstance(data, dict):
        raise OracleFailure("LLM response is not a JSON object")

    try:
        return OracleDecision.model_validate(data)
    except ValidationError as e:
        raise OracleFailure(f"LLM response failed schema validation: {e}")


class ResolutionOracle:
    """
    Asks a chat model to pick the winning outcome of a market.
    """

    def __init__(self, llm, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.llm = llm
        self.timeout = timeout

    async def decide(self, request: OracleRequest) -> OracleDecision:
        """
        Resolve one market.

        Raises:
            OracleFailure: fewer than two outcomes, transport error, timeout,
                malformed or out-of-schema response, or a winner id that is
                not one of the supplied outcomes.
        """
        if len(request.outcomes) < 2:
            raise OracleFailure("A market must have at least two outcomes to resolve")

        messages = [
            SystemMessage(content=build_system_prompt(request.outcomes)),
            HumanMessage(content=build_user_prompt(request.market_title, request.news_summary)),
        ]

        try:
            response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise OracleFailure(f"LLM did not answer within {self.timeout}s", retriable=True)
        except Exception as e:
            raise OracleFailure(f"LLM call failed: {e}", retriable=True)

        content = getattr(response, "content", response)
        if not isinstance(content, str):
            raise OracleFailure("LLM returned a non-text response")

        decision = parse_decision(content)

        valid_ids = {oid for oid, _ in request.outcomes}
        if decision.winner not in valid_ids:
            logger.warning(f"Oracle picked unknown outcome '{decision.winner}' for '{request.market_title[:50]}'")
            raise OracleFailure(
                f'LLM returned an unknown outcome ID "{decision.winner}". '
                f"Valid IDs: {', '.join(sorted(valid_ids))}"
            )

        return decision
