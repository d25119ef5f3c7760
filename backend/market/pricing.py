"""
Pool Pricing

Implied prices and payouts derived from outcome pools.

Binary markets use the constant-product rule:

    price(Yes) = pool(No) / (pool(Yes) + pool(No))

N-outcome markets generalise it with a leave-one-out share:

    price_i = (total - points_i) / (total * (N - 1))

For N = 2 this is exactly the binary rule. Prices are clamped to
[MIN_PRICE, MAX_PRICE] and are NOT renormalised afterwards, so for N > 2
a clamped market's prices may not sum to 1.

An empty outcome counts as one virtual point, and `total` is the sum of
these effective points. An empty market therefore opens at a uniform 1/N,
and an empty side of a funded market never prices at exactly 1.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from market.models import Outcome

VIRTUAL_LIQUIDITY = 1
MIN_PRICE = 0.0001
MAX_PRICE = 0.9999
DEFAULT_STAKE = 50
PRICE_DECIMALS = 4


@dataclass
class OutcomePricing:
    """Price data for one outcome."""
    outcome_id: str
    label: str
    price: float
    total_points: int

    @property
    def price_percent(self) -> str:
        return f"{self.price * 100:.2f}%"

    def to_dict(self) -> Dict:
        return {
            "outcome_id": self.outcome_id,
            "label": self.label,
            "price": round(self.price, PRICE_DECIMALS),
            "price_percent": self.price_percent,
            "total_points": self.total_points
        }


@dataclass
class PayoutQuote:
    """Preview of what a stake on one outcome would return."""
    outcome_id: str
    label: str
    stake: int
    price: float
    potential_payout: int
    total_pool: int

    @property
    def net_profit(self) -> int:
        return self.potential_payout - self.stake

    @property
    def payout_label(self) -> str:
        return (
            f'If you bet {self.stake} pts on "{self.label}", '
            f"you could win {self.potential_payout} pts (+{self.net_profit} pts profit)"
        )

    def to_dict(self) -> Dict:
        return {
            "outcome_id": self.outcome_id,
            "label": self.label,
            "stake": self.stake,
            "price": round(self.price, PRICE_DECIMALS),
            "potential_payout": self.potential_payout,
            "net_profit": self.net_profit,
            "payout_label": self.payout_label,
            "total_pool": self.total_pool
        }


def clamp_price(price: float) -> float:
    return min(max(price, MIN_PRICE), MAX_PRICE)


def implied_prices(outcomes: Sequence[Outcome]) -> List[OutcomePricing]:
    """
    Compute the implied price of every outcome in a market.

    Args:
        outcomes: Outcomes of one market, in display order

    Returns:
        One OutcomePricing per outcome, same order, prices clamped to
        [MIN_PRICE, MAX_PRICE]
    """
    n = len(outcomes)
    if n == 0:
        return []

    effective = [o.total_points or VIRTUAL_LIQUIDITY for o in outcomes]
    total = sum(effective)

    pricings = []
    for o, points in zip(outcomes, effective):
        if n == 1:
            price = 1.0
        else:
            price = (total - points) / (total * (n - 1))

        pricings.append(OutcomePricing(
            outcome_id=o.outcome_id,
            label=o.label,
            price=clamp_price(price),
            total_points=o.total_points
        ))

    return pricings


def payout_for(stake: int, price: float) -> int:
    """Gross payout for a stake at the given price, rounded half up."""
    if price <= 0:
        raise ValueError("price must be positive")
    return int(math.floor(stake / price + 0.5))


def quote(
    outcomes: Sequence[Outcome],
    outcome_id: Optional[str],
    stake: int = DEFAULT_STAKE
) -> Optional[PayoutQuote]:
    """
    Preview the payout for staking on one outcome.

    Falls back to the first outcome when outcome_id is not in the market.
    """
    pricings = implied_prices(outcomes)
    if not pricings:
        return None

    selected = next((p for p in pricings if p.outcome_id == outcome_id), pricings[0])
    # Payout is derived from the price as displayed, rounded to 4 decimals
    price = round(selected.price, PRICE_DECIMALS)

    return PayoutQuote(
        outcome_id=selected.outcome_id,
        label=selected.label,
        stake=stake,
        price=price,
        potential_payout=payout_for(stake, price),
        total_pool=sum(o.total_points for o in outcomes)
    )
