"""
Seed the market database with sample markets.

Each outcome gets random starting liquidity so prices are not all 50/50
on an empty install. Seeded points are display liquidity only: they are
not backed by bets and are never paid out at resolution.

Usage:
    python seed.py
"""

import random
import logging
from datetime import datetime, timedelta, timezone

from config import EngineConfig
from market import MarketManager, MarketDatabase

logger = logging.getLogger(__name__)

SAMPLE_MARKETS = [
    {
        "title": "Will Team India win the next T20 series against Australia?",
        "description": "The upcoming T20 series is scheduled to start next week. This market predicts the overall series winner.",
        "category": "Cricket",
        "days_open": 7,
        "outcomes": ["Yes", "No"],
    },
    {
        "title": "Will the BSE Sensex cross 85,000 points by end of March?",
        "description": "The Indian stock market has been volatile. This market predicts if the BSE Sensex will hit the 85k milestone.",
        "category": "Finance",
        "days_open": 30,
        "outcomes": ["Yes", "No"],
    },
    {
        "title": "Will a major Indian startup IPO in Q2?",
        "description": "Several unicorns are rumored to be planning their public debuts.",
        "category": "Tech",
        "days_open": 60,
        "outcomes": ["Yes", "No"],
    },
    {
        "title": "Will the monsoon arrive in Kerala before June 1st?",
        "description": "Predicting the onset of the Southwest Monsoon in India.",
        "category": "Environment",
        "days_open": 14,
        "outcomes": ["Yes", "No"],
    },
]


def seed(manager: MarketManager, rng: random.Random = None):
    rng = rng or random.Random()
    now = datetime.now(timezone.utc)

    created = []
    for sample in SAMPLE_MARKETS:
        market = manager.create_market(
            title=sample["title"],
            outcome_labels=sample["outcomes"],
            closes_at=now + timedelta(days=sample["days_open"]),
            description=sample["description"],
            category=sample["category"],
            initial_points=[rng.randint(1000, 5999) for _ in sample["outcomes"]]
        )
        created.append(market)
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    config = EngineConfig.from_env()
    mm = MarketManager(MarketDatabase(config.db_path), config=config)
    markets = seed(mm)
    logger.info(f"Seeding complete: {len(markets)} market(s)")
