"""
Daily Reward Scheduler

Rules:
- A user may claim DAILY_REWARD_POINTS once per UTC calendar day.
- A claim on the day after the previous claim extends the streak.
- Any gap of one or more missed days resets the streak to 1.

Days are compared as UTC "YYYY-MM-DD" keys, not as 24-hour windows:
a claim at 23:59:59.999Z followed by one at 00:00:00.000Z is a
consecutive-day claim.
"""

import sqlite3
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from market.database import MarketDatabase, fetch_user
from market.events import InvalidationBus, LEADERBOARD_TAG
from market.models import (
    ClaimResult, ErrorKind, DomainRejection,
    as_utc, utc_now, to_iso
)

logger = logging.getLogger(__name__)

DAILY_REWARD_POINTS = 100


def utc_day(moment: datetime) -> str:
    """Calendar day key of a timestamp, in UTC."""
    return as_utc(moment).strftime("%Y-%m-%d")


def start_of_next_utc_day(moment: datetime) -> datetime:
    moment = as_utc(moment)
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


@dataclass
class ClaimDecision:
    """Outcome of evaluating a claim, before anything is written."""
    eligible: bool
    new_streak: int
    next_claim_at: datetime


def evaluate_claim(now: datetime, last_claim: Optional[datetime], streak: int) -> ClaimDecision:
    """
    Decide whether a claim at `now` is allowed and what the streak becomes.

    Pure function; no I/O.
    """
    today = utc_day(now)
    next_claim_at = start_of_next_utc_day(now)

    if last_claim is None:
        return ClaimDecision(eligible=True, new_streak=1, next_claim_at=next_claim_at)

    last_day = utc_day(last_claim)
    if last_day == today:
        return ClaimDecision(eligible=False, new_streak=streak, next_claim_at=next_claim_at)

    yesterday = utc_day(as_utc(now) - timedelta(days=1))
    if last_day == yesterday:
        return ClaimDecision(eligible=True, new_streak=streak + 1, next_claim_at=next_claim_at)

    return ClaimDecision(eligible=True, new_streak=1, next_claim_at=next_claim_at)


class RewardScheduler:
    """Applies daily reward claims to user rows."""

    def __init__(self, db: MarketDatabase, events: Optional[InvalidationBus] = None):
        self.db = db
        self.events = events

    def claim(self, user_id: Optional[str], now: Optional[datetime] = None) -> ClaimResult:
        if not user_id:
            return ClaimResult.rejected(ErrorKind.UNAUTHENTICATED, "Unauthenticated")

        now = as_utc(now) if now else utc_now()

        try:
            with self.db.transaction() as conn:
                result = self._apply_claim(conn, user_id, now)
        except DomainRejection as e:
            return ClaimResult.rejected(e.kind, e.message, **e.details)
        except sqlite3.Error as e:
            logger.error(f"Daily claim transaction failed for {user_id}: {e}")
            return ClaimResult.rejected(ErrorKind.TRANSACTION_FAILURE, "Failed to claim daily reward")

        logger.info(f"Daily reward: {user_id} +{DAILY_REWARD_POINTS}, streak {result.new_streak}")

        if self.events:
            self.events.publish(LEADERBOARD_TAG)

        return result

    def _apply_claim(self, conn: sqlite3.Connection, user_id: str, now: datetime) -> ClaimResult:
        user = fetch_user(conn, user_id)
        if not user:
            raise DomainRejection(ErrorKind.NOT_FOUND, "User not found")

        decision = evaluate_claim(now, user.last_daily_claim, user.streak_count)
        if not decision.eligible:
            raise DomainRejection(
                ErrorKind.ALREADY_CLAIMED_TODAY,
                "Daily reward already claimed today",
                next_claim_at=decision.next_claim_at
            )

        conn.execute("""
            UPDATE users
            SET balance = balance + ?, streak_count = ?, last_daily_claim = ?
            WHERE user_id = ?
        """, (DAILY_REWARD_POINTS, decision.new_streak, to_iso(now), user_id))

        return ClaimResult(
            success=True,
            message="Daily reward claimed",
            points_awarded=DAILY_REWARD_POINTS,
            new_balance=user.balance + DAILY_REWARD_POINTS,
            new_streak=decision.new_streak,
            next_claim_at=decision.next_claim_at
        )
