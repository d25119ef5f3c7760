"""
Points Market Models

Data models for the virtual-points prediction market.
Users stake points on outcomes; markets resolve through an LLM oracle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any
import uuid


class MarketStatus(Enum):
    """Market lifecycle status. Transitions only move forward."""
    OPEN = "OPEN"            # Accepting bets
    CLOSED = "CLOSED"        # No more bets, awaiting resolution
    RESOLVED = "RESOLVED"    # Winner recorded, payouts settled


class ErrorKind(Enum):
    """Why an engine operation was rejected."""
    UNAUTHENTICATED = "unauthenticated"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    MARKET_NOT_OPEN = "market_not_open"
    MARKET_EXPIRED = "market_expired"
    ALREADY_CLAIMED_TODAY = "already_claimed_today"
    INVALID_LIFECYCLE_TRANSITION = "invalid_lifecycle_transition"
    ORACLE_FAILURE = "oracle_failure"
    TRANSACTION_FAILURE = "transaction_failure"


class DomainRejection(Exception):
    """
    Raised inside a transaction block to abort it with a domain error.

    Caught at the operation boundary and turned into a result object,
    so callers never see it.
    """

    def __init__(self, kind: ErrorKind, message: str, **details: Any):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details


# ==================== TIME HELPERS ====================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


# ==================== ENTITIES ====================

@dataclass
class User:
    """Point-holding account. Identity itself lives upstream."""
    user_id: str
    name: str
    balance: int = 0
    streak_count: int = 0
    last_daily_claim: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "balance": self.balance,
            "streak_count": self.streak_count,
            "last_daily_claim": to_iso(self.last_daily_claim),
            "created_at": to_iso(self.created_at)
        }


@dataclass
class Outcome:
    """One possible answer to a market question, with its stake pool."""
    outcome_id: str
    market_id: str
    label: str
    total_points: int = 0

    def to_dict(self) -> Dict:
        return {
            "outcome_id": self.outcome_id,
            "market_id": self.market_id,
            "label": self.label,
            "total_points": self.total_points
        }


@dataclass
class Market:
    """A question with two or more outcomes and a betting deadline."""
    market_id: str
    title: str
    closes_at: datetime
    description: str = ""
    category: str = "general"
    status: MarketStatus = MarketStatus.OPEN
    news_summary: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    outcomes: List[Outcome] = field(default_factory=list)

    @property
    def total_pool(self) -> int:
        return sum(o.total_points for o in self.outcomes)

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """Check if market is accepting bets."""
        if self.status != MarketStatus.OPEN:
            return False
        now = as_utc(now) if now else utc_now()
        return now < self.closes_at

    def outcome(self, outcome_id: str) -> Optional[Outcome]:
        for o in self.outcomes:
            if o.outcome_id == outcome_id:
                return o
        return None

    def to_dict(self) -> Dict:
        return {
            "market_id": self.market_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "status": self.status.value,
            "closes_at": to_iso(self.closes_at),
            "news_summary": self.news_summary,
            "resolved_at": to_iso(self.resolved_at),
            "created_at": to_iso(self.created_at),
            "total_pool": self.total_pool,
            "is_open": self.is_open(),
            "outcomes": [o.to_dict() for o in self.outcomes]
        }


@dataclass
class Bet:
    """Append-only record of a stake placed on an outcome."""
    bet_id: str
    user_id: str
    outcome_id: str
    amount: int
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict:
        return {
            "bet_id": self.bet_id,
            "user_id": self.user_id,
            "outcome_id": self.outcome_id,
            "amount": self.amount,
            "created_at": to_iso(self.created_at)
        }


@dataclass
class Resolution:
    """The oracle's verdict for a market. At most one per market."""
    resolution_id: str
    market_id: str
    winner_outcome_id: str
    confidence: float
    reasoning: str
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict:
        return {
            "resolution_id": self.resolution_id,
            "market_id": self.market_id,
            "winner_outcome_id": self.winner_outcome_id,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "created_at": to_iso(self.created_at)
        }


@dataclass
class Payout:
    """Points credited to a winning (or refunded) bet at resolution."""
    payout_id: str
    market_id: str
    bet_id: str
    user_id: str
    amount: int
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict:
        return {
            "payout_id": self.payout_id,
            "market_id": self.market_id,
            "bet_id": self.bet_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "created_at": to_iso(self.created_at)
        }


@dataclass
class LeaderboardEntry:
    """Entry in the leaderboard."""
    rank: int
    user_id: str
    name: str
    balance: int
    streak_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "name": self.name,
            "balance": self.balance,
            "streak_count": self.streak_count
        }


# ==================== RESULTS ====================

@dataclass
class OperationResult:
    """Base result: either success, or a typed error with a message."""
    success: bool
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def rejected(cls, kind: ErrorKind, message: str, **details: Any):
        return cls(success=False, error=kind, message=message, **details)

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "error": self.error.value if self.error else None,
            "message": self.message
        }


@dataclass
class WagerResult(OperationResult):
    bet: Optional[Bet] = None
    new_balance: Optional[int] = None

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data["bet"] = self.bet.to_dict() if self.bet else None
        data["new_balance"] = self.new_balance
        return data


@dataclass
class ClaimResult(OperationResult):
    points_awarded: int = 0
    new_balance: Optional[int] = None
    new_streak: Optional[int] = None
    next_claim_at: Optional[datetime] = None

    @property
    def already_claimed(self) -> bool:
        return self.error == ErrorKind.ALREADY_CLAIMED_TODAY

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data.update({
            "already_claimed": self.already_claimed,
            "points_awarded": self.points_awarded,
            "new_balance": self.new_balance,
            "new_streak": self.new_streak,
            "next_claim_at": to_iso(self.next_claim_at)
        })
        return data


@dataclass
class LifecycleResult(OperationResult):
    market_id: Optional[str] = None
    status: Optional[MarketStatus] = None

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data["market_id"] = self.market_id
        data["status"] = self.status.value if self.status else None
        return data


@dataclass
class ResolveResult(LifecycleResult):
    resolution: Optional[Resolution] = None
    payouts: List[Payout] = field(default_factory=list)
    retriable: bool = False

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data["resolution"] = self.resolution.to_dict() if self.resolution else None
        data["payouts"] = [p.to_dict() for p in self.payouts]
        data["retriable"] = self.retriable
        return data


# ==================== ID GENERATORS ====================

def generate_user_id() -> str:
    """Generate unique user ID."""
    return f"USR_{uuid.uuid4().hex[:12].upper()}"


def generate_market_id() -> str:
    """Generate unique market ID."""
    return f"MKT_{uuid.uuid4().hex[:12].upper()}"


def generate_outcome_id() -> str:
    return f"OUT_{uuid.uuid4().hex[:12].upper()}"


def generate_bet_id() -> str:
    """Generate unique bet ID."""
    return f"BET_{uuid.uuid4().hex[:12].upper()}"


def generate_resolution_id() -> str:
    return f"RES_{uuid.uuid4().hex[:12].upper()}"


def generate_payout_id() -> str:
    return f"PAY_{uuid.uuid4().hex[:12].upper()}"
