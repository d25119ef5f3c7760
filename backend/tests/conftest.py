"""Shared fixtures: a market manager on a temporary database and a scripted chat model."""

import asyncio
import threading
import json
from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.messages import AIMessage

from agents.resolution_oracle import ResolutionOracle
from config import EngineConfig
from market import MarketManager, MarketDatabase, InvalidationBus

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class ScriptedLLM:
    """Stands in for a LangChain chat model; replies with whatever the test sets."""

    def __init__(self, reply: str = "", error: Exception = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    def answer(self, winner: str, confidence: float = 0.9, reasoning: str = "The news says so."):
        self.reply = json.dumps({"winner": winner, "confidence": confidence, "reasoning": reasoning})

    async def ainvoke(self, messages):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return AIMessage(content=self.reply)


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def events():
    return InvalidationBus()


@pytest.fixture
def manager(tmp_path, llm, events):
    db = MarketDatabase(str(tmp_path / "market.db"))
    oracle = ResolutionOracle(llm, timeout=0.5)
    return MarketManager(db, oracle=oracle, events=events, config=EngineConfig())


def set_balance(manager: MarketManager, user_id: str, balance: int):
    with manager.db.transaction() as conn:
        conn.execute("UPDATE users SET balance = ? WHERE user_id = ?", (balance, user_id))


@pytest.fixture
def make_user(manager):
    def _make(name: str = "alice", balance: int = 1000):
        user = manager.create_user(name)
        set_balance(manager, user.user_id, balance)
        return manager.get_user(user.user_id)
    return _make


@pytest.fixture
def make_market(manager):
    def _make(labels=("Yes", "No"), closes_in=timedelta(days=7), initial_points=None, title="Will it rain?"):
        return manager.create_market(
            title=title,
            outcome_labels=list(labels),
            closes_at=NOW + closes_in,
            initial_points=initial_points
        )
    return _make


def run_concurrently(*calls):
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(i, call):
        barrier.wait()
        results[i] = call()

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def fail_inserts_into(manager: MarketManager, table: str):
    """Make every insert into `table` abort, as a failing disk or constraint would."""
    with manager.db.connection() as conn:
        conn.execute(f"""
            CREATE TRIGGER fail_{table}_insert BEFORE INSERT ON {table}
            BEGIN
                SELECT RAISE(ABORT, 'simulated write failure');
            END
        """)
