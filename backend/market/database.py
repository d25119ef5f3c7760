"""
SQLite Storage for the Points Market

Persistent storage for users, markets, outcomes, bets, resolutions and
payouts. Every write path goes through `MarketDatabase.transaction()`,
which opens a `BEGIN IMMEDIATE` transaction so balance and pool updates
are serialized across connections.
"""

import os
import sqlite3
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from market.models import (
    User, Market, Outcome, Bet, Resolution, Payout,
    MarketStatus, from_iso
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "storage", "market.db")
DEFAULT_BUSY_TIMEOUT = 5.0


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
        streak_count INTEGER NOT NULL DEFAULT 0 CHECK (streak_count >= 0),
        last_daily_claim TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS markets (
        market_id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT 'general',
        closes_at TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'OPEN',
        news_summary TEXT,
        resolved_at TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS outcomes (
        outcome_id TEXT PRIMARY KEY,
        market_id TEXT NOT NULL,
        label TEXT NOT NULL,
        position INTEGER NOT NULL,
        total_points INTEGER NOT NULL DEFAULT 0 CHECK (total_points >= 0),
        FOREIGN KEY (market_id) REFERENCES markets(market_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bets (
        bet_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        outcome_id TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(user_id),
        FOREIGN KEY (outcome_id) REFERENCES outcomes(outcome_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS resolutions (
        resolution_id TEXT PRIMARY KEY,
        market_id TEXT NOT NULL UNIQUE,
        winner_outcome_id TEXT NOT NULL,
        confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
        reasoning TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (market_id) REFERENCES markets(market_id),
        FOREIGN KEY (winner_outcome_id) REFERENCES outcomes(outcome_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payouts (
        payout_id TEXT PRIMARY KEY,
        market_id TEXT NOT NULL,
        bet_id TEXT NOT NULL UNIQUE,
        user_id TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount >= 0),
        created_at TEXT NOT NULL,
        FOREIGN KEY (bet_id) REFERENCES bets(bet_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_balance ON users(balance)",
    "CREATE INDEX IF NOT EXISTS idx_markets_status ON markets(status)",
    "CREATE INDEX IF NOT EXISTS idx_outcomes_market ON outcomes(market_id)",
    "CREATE INDEX IF NOT EXISTS idx_bets_outcome ON bets(outcome_id)",
    "CREATE INDEX IF NOT EXISTS idx_bets_user ON bets(user_id)",
]


class MarketDatabase:
    """
    Handle on one SQLite database file.

    Passed explicitly to the engine components; there is no module-level
    connection.
    """

    def __init__(self, path: Optional[str] = None, busy_timeout: float = DEFAULT_BUSY_TIMEOUT):
        self.path = path or DEFAULT_DB_PATH
        self.busy_timeout = busy_timeout
        db_dir = os.path.dirname(self.path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly below.
        conn = sqlite3.connect(self.path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only access."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for one serializable write transaction.

        Takes the write lock up front, commits on clean exit and rolls back
        on any exception before re-raising it.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    def init_schema(self):
        """Initialize the database schema."""
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info(f"Market database ready at {self.path}")


# ==================== ROW MAPPERS ====================

def row_to_user(row: sqlite3.Row) -> User:
    return User(
        user_id=row["user_id"],
        name=row["name"],
        balance=row["balance"],
        streak_count=row["streak_count"],
        last_daily_claim=from_iso(row["last_daily_claim"]),
        created_at=from_iso(row["created_at"])
    )


def row_to_outcome(row: sqlite3.Row) -> Outcome:
    return Outcome(
        outcome_id=row["outcome_id"],
        market_id=row["market_id"],
        label=row["label"],
        total_points=row["total_points"]
    )


def row_to_market(row: sqlite3.Row, outcomes: Optional[List[Outcome]] = None) -> Market:
    return Market(
        market_id=row["market_id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        closes_at=from_iso(row["closes_at"]),
        status=MarketStatus(row["status"]),
        news_summary=row["news_summary"],
        resolved_at=from_iso(row["resolved_at"]),
        created_at=from_iso(row["created_at"]),
        outcomes=outcomes or []
    )


def row_to_bet(row: sqlite3.Row) -> Bet:
    return Bet(
        bet_id=row["bet_id"],
        user_id=row["user_id"],
        outcome_id=row["outcome_id"],
        amount=row["amount"],
        created_at=from_iso(row["created_at"])
    )


def row_to_resolution(row: sqlite3.Row) -> Resolution:
    return Resolution(
        resolution_id=row["resolution_id"],
        market_id=row["market_id"],
        winner_outcome_id=row["winner_outcome_id"],
        confidence=row["confidence"],
        reasoning=row["reasoning"],
        created_at=from_iso(row["created_at"])
    )


def row_to_payout(row: sqlite3.Row) -> Payout:
    return Payout(
        payout_id=row["payout_id"],
        market_id=row["market_id"],
        bet_id=row["bet_id"],
        user_id=row["user_id"],
        amount=row["amount"],
        created_at=from_iso(row["created_at"])
    )


# ==================== QUERIES ====================
# All take an open connection so they can run inside a caller's transaction.

def fetch_user(conn: sqlite3.Connection, user_id: str) -> Optional[User]:
    row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
    return row_to_user(row) if row else None


def fetch_outcomes(conn: sqlite3.Connection, market_id: str) -> List[Outcome]:
    rows = conn.execute(
        "SELECT * FROM outcomes WHERE market_id = ? ORDER BY position",
        (market_id,)
    ).fetchall()
    return [row_to_outcome(r) for r in rows]


def fetch_market(conn: sqlite3.Connection, market_id: str) -> Optional[Market]:
    """Load a market together with its outcomes."""
    row = conn.execute("SELECT * FROM markets WHERE market_id = ?", (market_id,)).fetchone()
    if not row:
        return None
    return row_to_market(row, fetch_outcomes(conn, market_id))


def fetch_markets_by_status(conn: sqlite3.Connection, status: MarketStatus) -> List[Market]:
    rows = conn.execute(
        "SELECT * FROM markets WHERE status = ? ORDER BY closes_at",
        (status.value,)
    ).fetchall()
    return [row_to_market(r, fetch_outcomes(conn, r["market_id"])) for r in rows]


def fetch_resolution(conn: sqlite3.Connection, market_id: str) -> Optional[Resolution]:
    row = conn.execute("SELECT * FROM resolutions WHERE market_id = ?", (market_id,)).fetchone()
    return row_to_resolution(row) if row else None


def fetch_market_bets(conn: sqlite3.Connection, market_id: str) -> List[Bet]:
    rows = conn.execute("""
        SELECT b.* FROM bets b
        JOIN outcomes o ON o.outcome_id = b.outcome_id
        WHERE o.market_id = ?
        ORDER BY b.created_at, b.rowid
    """, (market_id,)).fetchall()
    return [row_to_bet(r) for r in rows]


def fetch_user_bets(conn: sqlite3.Connection, user_id: str) -> List[Bet]:
    rows = conn.execute(
        "SELECT * FROM bets WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
        (user_id,)
    ).fetchall()
    return [row_to_bet(r) for r in rows]


def fetch_market_payouts(conn: sqlite3.Connection, market_id: str) -> List[Payout]:
    rows = conn.execute(
        "SELECT * FROM payouts WHERE market_id = ? ORDER BY rowid",
        (market_id,)
    ).fetchall()
    return [row_to_payout(r) for r in rows]


def fetch_top_users(conn: sqlite3.Connection, limit: int) -> List[User]:
    rows = conn.execute(
        "SELECT * FROM users ORDER BY balance DESC, created_at ASC LIMIT ?",
        (limit,)
    ).fetchall()
    return [row_to_user(r) for r in rows]
