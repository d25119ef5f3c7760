"""
Market Lifecycle

OPEN -> CLOSED -> RESOLVED, nothing else.

- close():   OPEN -> CLOSED. Pools and bets are untouched.
- resolve(): CLOSED (with a news summary) -> RESOLVED. Asks the oracle for
  the winner, then writes the Resolution, settles winning bets and flips
  the status in a single transaction.

The oracle call runs outside any transaction. If it fails the market is
left CLOSED and resolve() can simply be called again.
"""

import asyncio
import sqlite3
import logging
from datetime import datetime
from typing import Dict, List, Optional

from agents.resolution_oracle import ResolutionOracle, OracleRequest, OracleDecision, OracleFailure
from market.database import (
    MarketDatabase, fetch_market, fetch_market_bets, fetch_markets_by_status
)
from market.events import InvalidationBus, LEADERBOARD_TAG
from market.models import (
    Bet, Market, MarketStatus, Payout, Resolution,
    LifecycleResult, ResolveResult, ErrorKind, DomainRejection,
    as_utc, utc_now, to_iso, generate_payout_id, generate_resolution_id
)

logger = logging.getLogger(__name__)


def settle_bets(bets: List[Bet], winner_outcome_id: str) -> Dict[str, int]:
    """
    Pari-mutuel split of a market's staked points.

    Each winning bet gets floor(amount * pool / winning_pool); the rounding
    remainder goes to the earliest winning bet so the credited total equals
    the pool. If nobody backed the winner every bet is refunded.

    Args:
        bets: All bets on the market, oldest first
        winner_outcome_id: The resolved outcome

    Returns:
        Mapping of bet_id -> points to credit (winners or refunds only)
    """
    pool = sum(b.amount for b in bets)
    winners = [b for b in bets if b.outcome_id == winner_outcome_id]
    winning_pool = sum(b.amount for b in winners)

    if winning_pool == 0:
        return {b.bet_id: b.amount for b in bets}

    shares = {b.bet_id: (b.amount * pool) // winning_pool for b in winners}
    remainder = pool - sum(shares.values())
    if remainder:
        shares[winners[0].bet_id] += remainder
    return shares


class MarketLifecycle:
    """Drives markets through close and resolve."""

    def __init__(
        self,
        db: MarketDatabase,
        oracle: Optional[ResolutionOracle] = None,
        events: Optional[InvalidationBus] = None
    ):
        self.db = db
        self.oracle = oracle
        self.events = events

    # ==================== CLOSE ====================

    def close(self, market_id: str) -> LifecycleResult:
        """Stop accepting bets on an OPEN market."""
        try:
            with self.db.transaction() as conn:
                market = fetch_market(conn, market_id)
                if not market:
                    raise DomainRejection(ErrorKind.NOT_FOUND, "Market not found")
                if market.status != MarketStatus.OPEN:
                    raise DomainRejection(
                        ErrorKind.INVALID_LIFECYCLE_TRANSITION,
                        f"Only OPEN markets can be closed (current: {market.status.value})"
                    )
                conn.execute(
                    "UPDATE markets SET status = ? WHERE market_id = ? AND status = ?",
                    (MarketStatus.CLOSED.value, market_id, MarketStatus.OPEN.value)
                )
        except DomainRejection as e:
            return LifecycleResult.rejected(e.kind, e.message, market_id=market_id)
        except sqlite3.Error as e:
            logger.error(f"Close transaction failed for {market_id}: {e}")
            return LifecycleResult.rejected(ErrorKind.TRANSACTION_FAILURE, "Failed to close market", market_id=market_id)

        logger.info(f"Market {market_id} closed")
        return LifecycleResult(
            success=True,
            message="Market closed",
            market_id=market_id,
            status=MarketStatus.CLOSED
        )

    def close_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Close every OPEN market whose closing time has passed."""
        now = as_utc(now) if now else utc_now()

        with self.db.connection() as conn:
            open_markets = fetch_markets_by_status(conn, MarketStatus.OPEN)

        closed = []
        for market in open_markets:
            if now >= market.closes_at:
                result = self.close(market.market_id)
                if result.success:
                    closed.append(market.market_id)
        return closed

    # ==================== NEWS ====================

    def set_news_summary(self, market_id: str, news_summary: str) -> LifecycleResult:
        """Attach the news summary the oracle will read."""
        if not news_summary or not news_summary.strip():
            return LifecycleResult.rejected(ErrorKind.VALIDATION_ERROR, "News summary cannot be empty", market_id=market_id)

        try:
            with self.db.transaction() as conn:
                market = fetch_market(conn, market_id)
                if not market:
                    raise DomainRejection(ErrorKind.NOT_FOUND, "Market not found")
                if market.status == MarketStatus.RESOLVED:
                    raise DomainRejection(ErrorKind.INVALID_LIFECYCLE_TRANSITION, "Market is already resolved")
                conn.execute(
                    "UPDATE markets SET news_summary = ? WHERE market_id = ?",
                    (news_summary.strip(), market_id)
                )
        except DomainRejection as e:
            return LifecycleResult.rejected(e.kind, e.message, market_id=market_id)
        except sqlite3.Error as e:
            logger.error(f"News update failed for {market_id}: {e}")
            return LifecycleResult.rejected(ErrorKind.TRANSACTION_FAILURE, "Failed to update market", market_id=market_id)

        return LifecycleResult(success=True, message="News summary saved", market_id=market_id, status=market.status)

    # ==================== RESOLVE ====================

    async def resolve(self, market_id: str, now: Optional[datetime] = None) -> ResolveResult:
        """
        Resolve a CLOSED market through the oracle.

        Returns:
            ResolveResult with the Resolution and payouts, or the reason
            resolution did not happen. On any failure the market stays
            CLOSED.
        """
        market = await asyncio.to_thread(self._load_market, market_id)

        rejection = self._check_resolvable(market, market_id)
        if rejection:
            return rejection

        if self.oracle is None:
            return ResolveResult.rejected(
                ErrorKind.ORACLE_FAILURE, "No resolution oracle configured",
                market_id=market_id, status=market.status, retriable=True
            )

        request = OracleRequest(
            market_title=market.title,
            news_summary=market.news_summary,
            outcomes=[(o.outcome_id, o.label) for o in market.outcomes]
        )

        try:
            decision = await self.oracle.decide(request)
        except OracleFailure as e:
            logger.warning(f"Oracle failed for market {market_id}: {e}")
            return ResolveResult.rejected(
                ErrorKind.ORACLE_FAILURE, str(e),
                market_id=market_id, status=MarketStatus.CLOSED, retriable=e.retriable
            )

        # Checked again here so a substituted oracle cannot settle on an invented id
        if market.outcome(decision.winner) is None:
            logger.warning(f"Rejected oracle winner '{decision.winner}' for market {market_id}")
            return ResolveResult.rejected(
                ErrorKind.ORACLE_FAILURE, f'Unknown outcome ID "{decision.winner}"',
                market_id=market_id, status=MarketStatus.CLOSED
            )

        now = as_utc(now) if now else utc_now()

        try:
            resolution, payouts = await asyncio.to_thread(self._commit_resolution, market_id, decision, now)
        except DomainRejection as e:
            return ResolveResult.rejected(e.kind, e.message, market_id=market_id, **e.details)
        except sqlite3.Error as e:
            logger.error(f"Resolve transaction failed for {market_id}: {e}")
            return ResolveResult.rejected(
                ErrorKind.TRANSACTION_FAILURE, "Failed to resolve market",
                market_id=market_id, status=MarketStatus.CLOSED, retriable=True
            )

        logger.info(
            f"Market {market_id} resolved: winner {decision.winner} "
            f"(confidence {decision.confidence:.2f}), {len(payouts)} payout(s)"
        )

        if self.events and payouts:
            self.events.publish(LEADERBOARD_TAG)

        return ResolveResult(
            success=True,
            message="Market resolved",
            market_id=market_id,
            status=MarketStatus.RESOLVED,
            resolution=resolution,
            payouts=payouts
        )

    async def resolve_pending(self, now: Optional[datetime] = None) -> List[ResolveResult]:
        """Resolve every CLOSED market that already has a news summary."""
        closed = await asyncio.to_thread(self._load_closed_markets)

        results = []
        for market in closed:
            if market.news_summary:
                results.append(await self.resolve(market.market_id, now))
        return results

    def _check_resolvable(self, market: Optional[Market], market_id: str) -> Optional[ResolveResult]:
        if not market:
            return ResolveResult.rejected(ErrorKind.NOT_FOUND, "Market not found", market_id=market_id)
        if market.status != MarketStatus.CLOSED:
            return ResolveResult.rejected(
                ErrorKind.INVALID_LIFECYCLE_TRANSITION,
                f"Market must be CLOSED before resolving (current: {market.status.value})",
                market_id=market_id, status=market.status
            )
        if not market.news_summary:
            return ResolveResult.rejected(
                ErrorKind.INVALID_LIFECYCLE_TRANSITION,
                "Market has no news summary to feed to the resolution agent",
                market_id=market_id, status=market.status
            )
        if len(market.outcomes) < 2:
            return ResolveResult.rejected(
                ErrorKind.VALIDATION_ERROR,
                "A market must have at least two outcomes to resolve",
                market_id=market_id, status=market.status
            )
        return None

    def _load_closed_markets(self) -> List[Market]:
        with self.db.connection() as conn:
            return fetch_markets_by_status(conn, MarketStatus.CLOSED)

    def _load_market(self, market_id: str) -> Optional[Market]:
        with self.db.connection() as conn:
            return fetch_market(conn, market_id)

    def _commit_resolution(self, market_id: str, decision: OracleDecision, now: datetime):
        with self.db.transaction() as conn:
            return self._persist_resolution(conn, market_id, decision, now)

    def _persist_resolution(self, conn: sqlite3.Connection, market_id: str, decision: OracleDecision, now: datetime):
        # Another resolver may have finished while the oracle was thinking
        market = fetch_market(conn, market_id)
        if market.status != MarketStatus.CLOSED:
            raise DomainRejection(
                ErrorKind.INVALID_LIFECYCLE_TRANSITION,
                f"Market must be CLOSED before resolving (current: {market.status.value})",
                status=market.status
            )

        resolution = Resolution(
            resolution_id=generate_resolution_id(),
            market_id=market_id,
            winner_outcome_id=decision.winner,
            confidence=decision.confidence,
            reasoning=decision.reasoning,
            created_at=now
        )
        conn.execute("""
            INSERT INTO resolutions (resolution_id, market_id, winner_outcome_id, confidence, reasoning, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            resolution.resolution_id,
            resolution.market_id,
            resolution.winner_outcome_id,
            resolution.confidence,
            resolution.reasoning,
            to_iso(resolution.created_at)
        ))

        bets = fetch_market_bets(conn, market_id)
        credits = settle_bets(bets, decision.winner)

        payouts = []
        for bet in bets:
            amount = credits.get(bet.bet_id)
            if not amount:
                continue
            payout = Payout(
                payout_id=generate_payout_id(),
                market_id=market_id,
                bet_id=bet.bet_id,
                user_id=bet.user_id,
                amount=amount,
                created_at=now
            )
            conn.execute("""
                INSERT INTO payouts (payout_id, market_id, bet_id, user_id, amount, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (payout.payout_id, market_id, bet.bet_id, bet.user_id, amount, to_iso(now)))
            conn.execute(
                "UPDATE users SET balance = balance + ? WHERE user_id = ?",
                (amount, bet.user_id)
            )
            payouts.append(payout)

        conn.execute(
            "UPDATE markets SET status = ?, resolved_at = ? WHERE market_id = ?",
            (MarketStatus.RESOLVED.value, to_iso(now), market_id)
        )

        return resolution, payouts
