"""
Points Market Module

Virtual-points prediction market: pool pricing, wagers, daily rewards,
and oracle-driven market resolution.
"""

from market.models import (
    User, Market, Outcome, Bet, Resolution, Payout, LeaderboardEntry,
    MarketStatus, ErrorKind,
    WagerResult, ClaimResult, LifecycleResult, ResolveResult,
)
from market.pricing import implied_prices, payout_for, quote, OutcomePricing, PayoutQuote
from market.database import MarketDatabase
from market.events import InvalidationBus, LEADERBOARD_TAG
from market.rewards import DAILY_REWARD_POINTS
from market.manager import MarketManager

__all__ = [
    # Models
    "User",
    "Market",
    "Outcome",
    "Bet",
    "Resolution",
    "Payout",
    "LeaderboardEntry",
    "MarketStatus",
    "ErrorKind",

    # Results
    "WagerResult",
    "ClaimResult",
    "LifecycleResult",
    "ResolveResult",

    # Pricing
    "implied_prices",
    "payout_for",
    "quote",
    "OutcomePricing",
    "PayoutQuote",

    # Infrastructure
    "MarketDatabase",
    "InvalidationBus",
    "LEADERBOARD_TAG",
    "DAILY_REWARD_POINTS",

    # Manager
    "MarketManager",
]
