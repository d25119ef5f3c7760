"""
Points Market API

Main API endpoints:
- /markets/*        - Browse markets, pricing and payout previews
- /bets             - Place a wager
- /rewards/daily    - Claim the daily points reward
- /leaderboard      - Top users by balance (cached)
- /admin/markets/*  - Create, close, attach news, resolve (X-Admin-Key)

Identity is handled upstream: the authenticated user id arrives in the
X-User-Id header. Requests without it are treated as unauthenticated.

Run:
    uvicorn api:create_app --factory
"""

import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from threading import Lock
from typing import Callable, List, Optional

from fastapi import FastAPI, HTTPException, Query, Header, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from agents.llm_provider import get_llm
from agents.resolution_oracle import ResolutionOracle
from config import EngineConfig
from market import MarketManager, MarketDatabase, InvalidationBus, LEADERBOARD_TAG, ErrorKind, MarketStatus
from market.models import OperationResult
from scheduler import setup_scheduler, shutdown_scheduler

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("PointsMarket-API")

# HTTP status per rejection kind
ERROR_STATUS = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_BALANCE: 409,
    ErrorKind.MARKET_NOT_OPEN: 409,
    ErrorKind.MARKET_EXPIRED: 409,
    ErrorKind.ALREADY_CLAIMED_TODAY: 409,
    ErrorKind.INVALID_LIFECYCLE_TRANSITION: 409,
    ErrorKind.ORACLE_FAILURE: 502,
    ErrorKind.TRANSACTION_FAILURE: 500,
}


def raise_for_result(result: OperationResult):
    """Turn a rejected engine result into an HTTPException carrying the result body."""
    if result.success:
        return
    status = ERROR_STATUS.get(result.error, 400)
    if result.error == ErrorKind.ORACLE_FAILURE and getattr(result, "retriable", False):
        status = 503
    raise HTTPException(status_code=status, detail=result.to_dict())


# ==================== LEADERBOARD CACHE ====================

class TTLCache:
    """
    Caches one computed value for `ttl_seconds`.
    Cleared early when the engine publishes the matching invalidation tag.
    """

    def __init__(self, loader: Callable[[], list], ttl_seconds: int):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self._value: Optional[list] = None
        self._loaded_at = 0.0
        self._lock = Lock()

    def get(self) -> list:
        with self._lock:
            now = time.monotonic()
            if self._value is None or now - self._loaded_at >= self.ttl_seconds:
                self._value = self.loader()
                self._loaded_at = now
            return self._value

    def invalidate(self, tag: str = ""):
        with self._lock:
            self._value = None


# ==================== REQUEST MODELS ====================

class BetRequest(BaseModel):
    outcome_id: str = Field(..., min_length=1, max_length=100)
    amount: int = Field(..., gt=0, le=1_000_000)


class UserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CreateMarketRequest(BaseModel):
    title: str = Field(..., min_length=3, max_length=300)
    description: str = Field(default="", max_length=2000)
    category: str = Field(default="general", max_length=50)
    closes_at: datetime
    outcomes: List[str] = Field(..., min_length=2, max_length=20)
    initial_points: Optional[List[int]] = None

    @field_validator("outcomes")
    @classmethod
    def validate_outcomes(cls, v: List[str]) -> List[str]:
        cleaned = [label.strip() for label in v]
        if any(not label for label in cleaned):
            raise ValueError("Outcome labels cannot be empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("Outcome labels must be distinct")
        return cleaned


class NewsRequest(BaseModel):
    news_summary: str = Field(..., min_length=1, max_length=5000)


# ==================== DEPENDENCIES ====================

def current_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Authenticated user id from the upstream identity layer, if any."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


def get_manager(request: Request) -> MarketManager:
    return request.app.state.manager


def verify_admin_key(request: Request, x_admin_key: str = Header(None)) -> bool:
    """Verify admin API key for protected endpoints."""
    expected = request.app.state.config.admin_api_key
    if not expected or not x_admin_key or x_admin_key != expected:
        raise HTTPException(
            status_code=403,
            detail="Invalid or missing admin API key"
        )
    return True


# ==================== APP FACTORY ====================

def build_oracle(config: EngineConfig) -> Optional[ResolutionOracle]:
    llm = get_llm(config.oracle_model_tier)
    if llm is None:
        logger.warning("No LLM provider configured - markets cannot be resolved until one is")
        return None
    return ResolutionOracle(llm, timeout=config.oracle_timeout_seconds)


def create_app(
    config: Optional[EngineConfig] = None,
    manager: Optional[MarketManager] = None,
    run_scheduler: bool = True
) -> FastAPI:
    """
    Build the FastAPI app.

    Tests pass their own manager (temporary database, fake oracle) and
    disable the scheduler.
    """
    config = config or EngineConfig.from_env()
    if manager is None:
        manager = MarketManager(
            MarketDatabase(config.db_path),
            oracle=build_oracle(config),
            events=InvalidationBus(),
            config=config
        )

    leaderboard_cache = TTLCache(
        lambda: [e.to_dict() for e in manager.get_leaderboard(config.leaderboard_size)],
        config.leaderboard_ttl_seconds
    )
    manager.events.subscribe(LEADERBOARD_TAG, leaderboard_cache.invalidate)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Points Market API...")
        scheduler = None
        if run_scheduler:
            scheduler = await setup_scheduler(manager, config)
        yield
        logger.info("Shutting down Points Market API...")
        if scheduler:
            await shutdown_scheduler(scheduler)

    app = FastAPI(
        title="Points Market API",
        description="Virtual-points prediction market with AI resolution",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.manager = manager
    app.state.leaderboard_cache = leaderboard_cache

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-User-Id", "X-Admin-Key"],
    )

    # ==================== HEALTH ====================

    @app.get("/")
    def read_root():
        return {
            "status": "online",
            "service": "Points Market API",
            "version": "1.0.0"
        }

    @app.get("/health")
    def health(mm: MarketManager = Depends(get_manager)):
        return {
            "status": "healthy",
            "oracle_configured": mm.lifecycle.oracle is not None,
            "stats": mm.get_platform_stats()
        }

    # ==================== MARKETS ====================

    @app.get("/markets")
    def list_markets(
        status: Optional[str] = Query(default=None, pattern="^(OPEN|CLOSED|RESOLVED)$"),
        category: Optional[str] = None,
        limit: int = Query(default=50, le=200),
        mm: MarketManager = Depends(get_manager)
    ):
        """List markets with pricing. Defaults to markets still taking bets."""
        if status:
            markets = mm.list_markets(MarketStatus(status))
        else:
            markets = mm.list_open_markets()
        if category:
            markets = [m for m in markets if m.category.lower() == category.lower()]
        return {
            "markets": [mm.describe_market(m) for m in markets[:limit]],
            "total": len(markets)
        }

    @app.get("/markets/{market_id}")
    def get_market(market_id: str, mm: MarketManager = Depends(get_manager)):
        """Single market with pricing, resolution and payouts if resolved."""
        market = mm.get_market(market_id)
        if not market:
            raise HTTPException(status_code=404, detail="Market not found")

        resolution = mm.get_resolution(market_id)
        bets = mm.get_market_bets(market_id)
        return {
            "market": mm.describe_market(market),
            "resolution": resolution.to_dict() if resolution else None,
            "payouts": [p.to_dict() for p in mm.get_market_payouts(market_id)] if resolution else [],
            "bets_count": len(bets),
            "recent_bets": [b.to_dict() for b in bets[-5:]]
        }

    @app.get("/markets/{market_id}/quote")
    def get_quote(
        market_id: str,
        outcome_id: Optional[str] = None,
        stake: int = Query(default=50, gt=0, le=1_000_000),
        mm: MarketManager = Depends(get_manager)
    ):
        """Preview the payout of a stake before placing it."""
        preview = mm.quote(market_id, outcome_id, stake)
        if preview is None:
            raise HTTPException(status_code=404, detail="Market not found")
        return {"quote": preview.to_dict()}

    # ==================== BETTING & REWARDS ====================

    @app.post("/bets")
    def place_bet(
        request: BetRequest,
        user_id: Optional[str] = Depends(current_user_id),
        mm: MarketManager = Depends(get_manager)
    ):
        """Place a bet on an outcome."""
        result = mm.place_wager(user_id, request.outcome_id, request.amount)
        raise_for_result(result)
        return result.to_dict()

    @app.post("/rewards/daily")
    def claim_daily_reward(
        user_id: Optional[str] = Depends(current_user_id),
        mm: MarketManager = Depends(get_manager)
    ):
        """Claim today's points. Rejections include the next claim time."""
        result = mm.claim_daily_reward(user_id)
        raise_for_result(result)
        return result.to_dict()

    # ==================== USERS ====================

    @app.post("/users")
    def provision_user(
        request: UserRequest,
        user_id: Optional[str] = Depends(current_user_id),
        mm: MarketManager = Depends(get_manager)
    ):
        """Create the market account for the authenticated identity."""
        if not user_id:
            raise HTTPException(status_code=401, detail="Unauthenticated")
        user = mm.get_or_create_user(user_id, request.name)
        return {"user": user.to_dict()}

    @app.get("/users/me")
    def get_me(
        user_id: Optional[str] = Depends(current_user_id),
        mm: MarketManager = Depends(get_manager)
    ):
        if not user_id:
            raise HTTPException(status_code=401, detail="Unauthenticated")
        user = mm.get_user(user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return {
            "user": user.to_dict(),
            "bets": [b.to_dict() for b in mm.get_user_bets(user_id)]
        }

    # ==================== LEADERBOARD ====================

    @app.get("/leaderboard")
    def get_leaderboard():
        """Top users by balance. May be up to the cache TTL stale."""
        return {"users": leaderboard_cache.get()}

    # ==================== ADMIN ====================

    @app.post("/admin/markets")
    def create_market(
        request: CreateMarketRequest,
        admin_verified: bool = Depends(verify_admin_key),
        mm: MarketManager = Depends(get_manager)
    ):
        try:
            market = mm.create_market(
                title=request.title,
                outcome_labels=request.outcomes,
                closes_at=request.closes_at,
                description=request.description,
                category=request.category,
                initial_points=request.initial_points
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"market": mm.describe_market(market)}

    @app.post("/admin/markets/{market_id}/close")
    def close_market(
        market_id: str,
        admin_verified: bool = Depends(verify_admin_key),
        mm: MarketManager = Depends(get_manager)
    ):
        result = mm.close_market(market_id)
        raise_for_result(result)
        return result.to_dict()

    @app.post("/admin/markets/{market_id}/news")
    def set_news(
        market_id: str,
        request: NewsRequest,
        admin_verified: bool = Depends(verify_admin_key),
        mm: MarketManager = Depends(get_manager)
    ):
        result = mm.set_news_summary(market_id, request.news_summary)
        raise_for_result(result)
        return result.to_dict()

    @app.post("/admin/markets/{market_id}/resolve")
    async def resolve_market(
        market_id: str,
        admin_verified: bool = Depends(verify_admin_key),
        mm: MarketManager = Depends(get_manager)
    ):
        """Resolve a CLOSED market through the oracle."""
        result = await mm.resolve_market(market_id)
        raise_for_result(result)
        return result.to_dict()

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
