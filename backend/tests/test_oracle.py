"""Resolution oracle adapter tests."""

import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from agents.resolution_oracle import (
    OracleFailure, OracleRequest, ResolutionOracle, parse_decision
)
from tests.conftest import ScriptedLLM

REQUEST = OracleRequest(
    market_title="Will India win the T20 series?",
    news_summary="India beat Australia 3-1 to take the series.",
    outcomes=[("OUT_YES", "Yes"), ("OUT_NO", "No")]
)


def reply(**fields):
    data = {"winner": "OUT_YES", "confidence": 0.97, "reasoning": "India won 3-1."}
    data.update(fields)
    return json.dumps(data)


async def test_decision_from_langchain_chat_model():
    oracle = ResolutionOracle(FakeListChatModel(responses=[reply()]))

    decision = await oracle.decide(REQUEST)

    assert decision.winner == "OUT_YES"
    assert decision.confidence == pytest.approx(0.97)
    assert decision.reasoning == "India won 3-1."


async def test_prompt_lists_every_outcome_id_and_the_news():
    llm = ScriptedLLM(reply=reply())
    await ResolutionOracle(llm).decide(REQUEST)

    system, human = llm.calls[0]
    assert 'ID: "OUT_YES" -> Label: "Yes"' in system.content
    assert 'ID: "OUT_NO" -> Label: "No"' in system.content
    assert "Will India win the T20 series?" in human.content
    assert "India beat Australia 3-1" in human.content


async def test_unknown_winner_is_rejected():
    oracle = ResolutionOracle(ScriptedLLM(reply=reply(winner="OUT_MAYBE")))
    with pytest.raises(OracleFailure, match="unknown outcome ID"):
        await oracle.decide(REQUEST)


async def test_needs_two_outcomes_before_calling():
    llm = ScriptedLLM(reply=reply())
    request = OracleRequest("Solo?", "news", [("OUT_YES", "Yes")])
    with pytest.raises(OracleFailure):
        await ResolutionOracle(llm).decide(request)
    assert llm.calls == []


async def test_timeout_is_retriable():
    oracle = ResolutionOracle(ScriptedLLM(reply=reply(), delay=1.0), timeout=0.05)
    with pytest.raises(OracleFailure) as exc:
        await oracle.decide(REQUEST)
    assert exc.value.retriable


async def test_transport_error_is_retriable():
    oracle = ResolutionOracle(ScriptedLLM(error=ConnectionError("reset by peer")))
    with pytest.raises(OracleFailure) as exc:
        await oracle.decide(REQUEST)
    assert exc.value.retriable


def test_parse_accepts_fenced_json():
    decision = parse_decision("```json\n" + reply() + "\n```")
    assert decision.winner == "OUT_YES"


@pytest.mark.parametrize("raw", [
    "",
    "The answer is Yes.",
    "[1, 2, 3]",
    reply(confidence=1.5),
    reply(confidence=-0.1),
    reply(winner=""),
    reply(reasoning=""),
    reply(confidence="0.9"),
    reply(winner=7),
    json.dumps({"winner": "OUT_YES", "confidence": 0.5}),
])
def test_parse_rejects_bad_responses(raw):
    with pytest.raises(OracleFailure) as exc:
        parse_decision(raw)
    assert not exc.value.retriable


def test_parse_accepts_whole_number_confidence():
    assert parse_decision(reply(confidence=1)).confidence == 1.0
