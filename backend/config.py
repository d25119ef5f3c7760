"""
Runtime configuration for the points market service.

Values come from the environment (a local .env is loaded first).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


@dataclass
class EngineConfig:
    """Configuration for the market engine and its API."""
    # Storage
    db_path: Optional[str] = None    # None -> storage/market.db next to the code

    # Users
    initial_balance: int = 0         # New users start with nothing; daily rewards fund them

    # Oracle
    oracle_timeout_seconds: float = 30.0
    oracle_model_tier: str = "resolution"

    # Leaderboard read cache
    leaderboard_size: int = 10
    leaderboard_ttl_seconds: int = 60

    # Scheduler intervals (seconds)
    close_check_interval: int = 60
    resolve_check_interval: int = 600

    # Admin endpoints
    admin_api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "EngineConfig":
        load_dotenv()
        return cls(
            db_path=os.getenv("MARKET_DB_PATH") or None,
            initial_balance=_int_env("INITIAL_BALANCE", 0),
            oracle_timeout_seconds=_float_env("ORACLE_TIMEOUT_SECONDS", 30.0),
            oracle_model_tier=os.getenv("ORACLE_MODEL_TIER", "resolution"),
            leaderboard_size=_int_env("LEADERBOARD_SIZE", 10),
            leaderboard_ttl_seconds=_int_env("LEADERBOARD_TTL_SECONDS", 60),
            close_check_interval=_int_env("CLOSE_CHECK_INTERVAL_SECONDS", 60),
            resolve_check_interval=_int_env("RESOLVE_CHECK_INTERVAL_SECONDS", 600),
            admin_api_key=os.getenv("ADMIN_API_KEY") or None,
        )
