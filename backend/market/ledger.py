"""
Ledger - wager placement.

A wager moves points from a user's balance into an outcome's pool and
appends a bet record. All three writes happen in one BEGIN IMMEDIATE
transaction: either all of them land or none do.
"""

import sqlite3
import logging
from datetime import datetime
from typing import Optional

from market.database import MarketDatabase, fetch_user, fetch_market
from market.events import InvalidationBus, LEADERBOARD_TAG
from market.models import (
    Bet, WagerResult, ErrorKind, DomainRejection, MarketStatus,
    as_utc, utc_now, to_iso, generate_bet_id
)

logger = logging.getLogger(__name__)


class Ledger:
    """Places wagers against the market database."""

    def __init__(self, db: MarketDatabase, events: Optional[InvalidationBus] = None):
        self.db = db
        self.events = events

    def place_wager(
        self,
        user_id: Optional[str],
        outcome_id: str,
        amount: int,
        now: Optional[datetime] = None
    ) -> WagerResult:
        """
        Stake `amount` points from `user_id` on `outcome_id`.

        Returns:
            WagerResult with the new bet and balance, or the reason the
            wager was rejected. A rejected wager changes nothing.
        """
        if not user_id:
            return WagerResult.rejected(ErrorKind.UNAUTHENTICATED, "Unauthenticated")

        if isinstance(amount, bool) or not isinstance(amount, int):
            return WagerResult.rejected(ErrorKind.VALIDATION_ERROR, "Amount must be a whole number of points")
        if amount <= 0:
            return WagerResult.rejected(ErrorKind.VALIDATION_ERROR, "Amount must be greater than zero")

        now = as_utc(now) if now else utc_now()

        try:
            with self.db.transaction() as conn:
                bet, new_balance = self._apply_wager(conn, user_id, outcome_id, amount, now)
        except DomainRejection as e:
            logger.info(f"Wager rejected for {user_id} on {outcome_id}: {e.message}")
            return WagerResult.rejected(e.kind, e.message)
        except sqlite3.Error as e:
            logger.error(f"Wager transaction failed for {user_id} on {outcome_id}: {e}")
            return WagerResult.rejected(ErrorKind.TRANSACTION_FAILURE, "Failed to place bet")

        logger.info(f"Bet {bet.bet_id}: {user_id} staked {amount} on {outcome_id}")

        if self.events:
            self.events.publish(LEADERBOARD_TAG)

        return WagerResult(
            success=True,
            message="Bet placed successfully",
            bet=bet,
            new_balance=new_balance
        )

    def _apply_wager(self, conn: sqlite3.Connection, user_id: str, outcome_id: str, amount: int, now: datetime):
        user = fetch_user(conn, user_id)
        if not user:
            raise DomainRejection(ErrorKind.NOT_FOUND, "User not found")
        if user.balance < amount:
            raise DomainRejection(
                ErrorKind.INSUFFICIENT_BALANCE,
                f"Insufficient points. Need {amount}, have {user.balance}"
            )

        row = conn.execute(
            "SELECT market_id FROM outcomes WHERE outcome_id = ?", (outcome_id,)
        ).fetchone()
        if not row:
            raise DomainRejection(ErrorKind.NOT_FOUND, "Outcome not found")

        market = fetch_market(conn, row["market_id"])
        if market.status != MarketStatus.OPEN:
            raise DomainRejection(ErrorKind.MARKET_NOT_OPEN, "Market is closed")
        if now >= market.closes_at:
            raise DomainRejection(ErrorKind.MARKET_EXPIRED, "Market has expired")

        cursor = conn.execute(
            "UPDATE users SET balance = balance - ? WHERE user_id = ? AND balance >= ?",
            (amount, user_id, amount)
        )
        if cursor.rowcount != 1:
            raise DomainRejection(ErrorKind.INSUFFICIENT_BALANCE, "Insufficient points")

        conn.execute(
            "UPDATE outcomes SET total_points = total_points + ? WHERE outcome_id = ?",
            (amount, outcome_id)
        )

        bet = Bet(
            bet_id=generate_bet_id(),
            user_id=user_id,
            outcome_id=outcome_id,
            amount=amount,
            created_at=now
        )
        conn.execute(
            "INSERT INTO bets (bet_id, user_id, outcome_id, amount, created_at) VALUES (?, ?, ?, ?, ?)",
            (bet.bet_id, bet.user_id, bet.outcome_id, bet.amount, to_iso(bet.created_at))
        )

        return bet, user.balance - amount
