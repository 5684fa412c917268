"""Store vocabulary and engine result types — results are frozen dataclasses."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# ---------------------------------------------------------------------------
# Store tables and row vocabularies
# ---------------------------------------------------------------------------

TABLE_USER_ASSETS = "user_assets"
TABLE_ASSETS = "assets"
TABLE_TOKENS = "tokens"
TABLE_TRANSACTIONS = "transactions"
TABLE_LIQUIDITY_POOLS = "liquidity_pools"
TABLE_LIQUIDITY_POSITIONS = "liquidity_positions"
TABLE_MARKETPLACE_LISTINGS = "marketplace_listings"
TABLE_VALUE_SNAPSHOTS = "value_snapshots"

ASSET_STATUS_APPROVED = "approved"
LISTING_STATUS_ACTIVE = "active"
TX_TYPE_BUY = "buy"
# "confirmed" is what older trade rows carry for a settled transaction.
TX_SETTLED_STATUSES = ("completed", "confirmed")

CATEGORY_LIQUIDITY = "Liquidity"
CATEGORY_TOKEN_HOLDINGS = "Token Holdings"

SNAPSHOT_PORTFOLIO = "portfolio"
SNAPSHOT_TOKEN = "token"


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceData:
    """A single quote from the price oracle."""

    symbol: str
    price: float
    change_24h: float
    volume_24h: float
    last_updated: datetime
    source: str = "fallback"


@dataclass(frozen=True)
class AssetBreakdown:
    """Portfolio value held in one asset category."""

    type: str
    value: float
    percentage: float
    count: int


@dataclass(frozen=True)
class PortfolioMetrics:
    total_value: float
    change_24h: float
    change_amount: float
    asset_breakdown: tuple[AssetBreakdown, ...] = ()
    degraded: bool = False


@dataclass(frozen=True)
class LiquidityMetrics:
    total_liquidity: float
    user_liquidity: float
    apr: float
    volume_24h: float
    fees_24h: float
    user_fees_24h: float
    degraded: bool = False


@dataclass(frozen=True)
class PoolMetrics:
    """Derived pool fields persisted back onto the pool row."""

    total_liquidity: float
    apr: float
    volume_24h: float
    fees_24h: float


@dataclass(frozen=True)
class RefreshSummary:
    """Outcome counters for one refresh sweep."""

    started_at: datetime
    finished_at: datetime
    assets_updated: int = 0
    pools_updated: int = 0
    tokens_updated: int = 0
    failures: int = 0


ZERO_PORTFOLIO = PortfolioMetrics(total_value=0.0, change_24h=0.0, change_amount=0.0)
ZERO_LIQUIDITY = LiquidityMetrics(
    total_liquidity=0.0,
    user_liquidity=0.0,
    apr=0.0,
    volume_24h=0.0,
    fees_24h=0.0,
    user_fees_24h=0.0,
)
