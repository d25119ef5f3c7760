"""
Points Market Manager

Single entry point for the API and the scheduler:
- Create users and markets
- Place wagers and claim daily rewards
- Close and resolve markets
- Leaderboard and platform stats

Owns no global state; the database handle, oracle and invalidation bus
are passed in by whoever builds it.
"""

import sqlite3
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from agents.resolution_oracle import ResolutionOracle
from config import EngineConfig
from market import database as db
from market.database import MarketDatabase
from market.events import InvalidationBus
from market.ledger import Ledger
from market.lifecycle import MarketLifecycle
from market.pricing import implied_prices, quote, PayoutQuote, DEFAULT_STAKE
from market.rewards import RewardScheduler
from market.models import (
    User, Market, Outcome, Bet, Resolution, Payout, LeaderboardEntry,
    MarketStatus, WagerResult, ClaimResult, LifecycleResult, ResolveResult,
    as_utc, utc_now, to_iso,
    generate_user_id, generate_market_id, generate_outcome_id
)

logger = logging.getLogger(__name__)


class MarketManager:
    """
    Facade over the ledger, reward scheduler and market lifecycle.
    """

    def __init__(
        self,
        database: MarketDatabase,
        oracle: Optional[ResolutionOracle] = None,
        events: Optional[InvalidationBus] = None,
        config: Optional[EngineConfig] = None
    ):
        self.db = database
        self.config = config or EngineConfig()
        self.events = events or InvalidationBus()

        self.db.init_schema()

        self.ledger = Ledger(self.db, self.events)
        self.rewards = RewardScheduler(self.db, self.events)
        self.lifecycle = MarketLifecycle(self.db, oracle, self.events)

    # ==================== USER MANAGEMENT ====================

    def create_user(self, name: str, user_id: Optional[str] = None) -> User:
        """Provision a user for an identity the upstream auth layer vouches for."""
        user = User(
            user_id=user_id or generate_user_id(),
            name=name,
            balance=self.config.initial_balance
        )
        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO users (user_id, name, balance, streak_count, last_daily_claim, created_at)
                VALUES (?, ?, ?, 0, NULL, ?)
            """, (user.user_id, user.name, user.balance, to_iso(user.created_at)))
        logger.info(f"Created user {user.user_id} ({name})")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        with self.db.connection() as conn:
            return db.fetch_user(conn, user_id)

    def get_or_create_user(self, user_id: str, name: str) -> User:
        user = self.get_user(user_id)
        if user:
            return user
        try:
            return self.create_user(name, user_id=user_id)
        except sqlite3.IntegrityError:
            # Provisioned concurrently by another request
            return self.get_user(user_id)

    def get_user_bets(self, user_id: str) -> List[Bet]:
        """Get all bets by a user, newest first."""
        with self.db.connection() as conn:
            return db.fetch_user_bets(conn, user_id)

    # ==================== MARKET MANAGEMENT ====================

    def create_market(
        self,
        title: str,
        outcome_labels: Sequence[str],
        closes_at: datetime,
        description: str = "",
        category: str = "general",
        initial_points: Optional[Sequence[int]] = None
    ) -> Market:
        """
        Create an OPEN market with its outcomes.

        Args:
            title: The question being predicted
            outcome_labels: At least two distinct labels, in display order
            closes_at: When betting stops
            description: Free text shown with the market
            category: Grouping label ("Cricket", "Finance", ...)
            initial_points: Optional seed liquidity per outcome

        Raises:
            ValueError: fewer than two outcomes, duplicate labels, or bad seed
        """
        labels = [label.strip() for label in outcome_labels]
        if len(labels) < 2:
            raise ValueError("A market needs at least two outcomes")
        if len(set(labels)) != len(labels) or not all(labels):
            raise ValueError("Outcome labels must be non-empty and distinct")

        seed = list(initial_points) if initial_points is not None else [0] * len(labels)
        if len(seed) != len(labels) or any(p < 0 for p in seed):
            raise ValueError("initial_points must give one non-negative value per outcome")

        market = Market(
            market_id=generate_market_id(),
            title=title,
            closes_at=as_utc(closes_at),
            description=description,
            category=category,
            status=MarketStatus.OPEN
        )
        market.outcomes = [
            Outcome(
                outcome_id=generate_outcome_id(),
                market_id=market.market_id,
                label=label,
                total_points=points
            )
            for label, points in zip(labels, seed)
        ]

        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO markets (market_id, title, description, category, closes_at, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                market.market_id,
                market.title,
                market.description,
                market.category,
                to_iso(market.closes_at),
                market.status.value,
                to_iso(market.created_at)
            ))
            for position, outcome in enumerate(market.outcomes):
                conn.execute("""
                    INSERT INTO outcomes (outcome_id, market_id, label, position, total_points)
                    VALUES (?, ?, ?, ?, ?)
                """, (outcome.outcome_id, market.market_id, outcome.label, position, outcome.total_points))

        logger.info(f"Created market {market.market_id}: {title[:50]}")
        return market

    def get_market(self, market_id: str) -> Optional[Market]:
        """Get market by ID, with outcomes."""
        with self.db.connection() as conn:
            return db.fetch_market(conn, market_id)

    def get_resolution(self, market_id: str) -> Optional[Resolution]:
        with self.db.connection() as conn:
            return db.fetch_resolution(conn, market_id)

    def get_market_payouts(self, market_id: str) -> List[Payout]:
        with self.db.connection() as conn:
            return db.fetch_market_payouts(conn, market_id)

    def list_markets(self, status: MarketStatus = MarketStatus.OPEN) -> List[Market]:
        """Markets in one status, soonest closing first."""
        with self.db.connection() as conn:
            return db.fetch_markets_by_status(conn, status)

    def list_open_markets(self, now: Optional[datetime] = None) -> List[Market]:
        """Markets still accepting bets."""
        now = as_utc(now) if now else utc_now()
        return [m for m in self.list_markets(MarketStatus.OPEN) if m.is_open(now)]

    def get_market_bets(self, market_id: str) -> List[Bet]:
        """Get all bets on a market."""
        with self.db.connection() as conn:
            return db.fetch_market_bets(conn, market_id)

    def describe_market(self, market: Market) -> Dict:
        """Market dict with per-outcome pricing, as shown to bettors."""
        data = market.to_dict()
        data["pricing"] = [p.to_dict() for p in implied_prices(market.outcomes)]
        return data

    def quote(self, market_id: str, outcome_id: Optional[str], stake: int = DEFAULT_STAKE) -> Optional[PayoutQuote]:
        """Preview the payout of a stake without placing it."""
        market = self.get_market(market_id)
        if not market:
            return None
        return quote(market.outcomes, outcome_id, stake)

    # ==================== BETTING & REWARDS ====================

    def place_wager(
        self,
        user_id: Optional[str],
        outcome_id: str,
        amount: int,
        now: Optional[datetime] = None
    ) -> WagerResult:
        return self.ledger.place_wager(user_id, outcome_id, amount, now)

    def claim_daily_reward(self, user_id: Optional[str], now: Optional[datetime] = None) -> ClaimResult:
        return self.rewards.claim(user_id, now)

    # ==================== LIFECYCLE ====================

    def close_market(self, market_id: str) -> LifecycleResult:
        return self.lifecycle.close(market_id)

    def close_expired_markets(self, now: Optional[datetime] = None) -> List[str]:
        return self.lifecycle.close_expired(now)

    def set_news_summary(self, market_id: str, news_summary: str) -> LifecycleResult:
        return self.lifecycle.set_news_summary(market_id, news_summary)

    async def resolve_market(self, market_id: str, now: Optional[datetime] = None) -> ResolveResult:
        return await self.lifecycle.resolve(market_id, now)

    async def resolve_pending(self, now: Optional[datetime] = None) -> List[ResolveResult]:
        return await self.lifecycle.resolve_pending(now)

    # ==================== LEADERBOARD ====================

    def get_leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        """Get top users by balance."""
        limit = limit or self.config.leaderboard_size
        with self.db.connection() as conn:
            users = db.fetch_top_users(conn, limit)

        return [
            LeaderboardEntry(
                rank=i + 1,
                user_id=user.user_id,
                name=user.name,
                balance=user.balance,
                streak_count=user.streak_count
            )
            for i, user in enumerate(users)
        ]

    # ==================== STATS ====================

    def get_platform_stats(self) -> Dict:
        """Get overall platform statistics."""
        with self.db.connection() as conn:
            counts = conn.execute("""
                SELECT
                    (SELECT COUNT(*) FROM users) AS total_users,
                    (SELECT COUNT(*) FROM bets) AS total_bets,
                    (SELECT COALESCE(SUM(amount), 0) FROM bets) AS total_volume,
                    (SELECT COUNT(*) FROM markets WHERE status = 'OPEN') AS open_markets,
                    (SELECT COUNT(*) FROM markets WHERE status = 'CLOSED') AS closed_markets,
                    (SELECT COUNT(*) FROM markets WHERE status = 'RESOLVED') AS resolved_markets
            """).fetchone()
        return dict(counts)
