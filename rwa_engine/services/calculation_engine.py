"""Calculation engine — portfolio valuation, pool metrics, market prices, refresh sweep."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Awaitable, Callable

from .. import pricing
from ..clock import Clock, utc_now
from ..config import EngineConfig
from ..errors import NotFoundError
from ..interfaces.store import Order, RowStore, eq, gte, in_
from ..models import (
    ASSET_STATUS_APPROVED,
    CATEGORY_LIQUIDITY,
    CATEGORY_TOKEN_HOLDINGS,
    LISTING_STATUS_ACTIVE,
    SNAPSHOT_PORTFOLIO,
    SNAPSHOT_TOKEN,
    TABLE_ASSETS,
    TABLE_LIQUIDITY_POOLS,
    TABLE_LIQUIDITY_POSITIONS,
    TABLE_MARKETPLACE_LISTINGS,
    TABLE_TOKENS,
    TABLE_TRANSACTIONS,
    TABLE_USER_ASSETS,
    TX_SETTLED_STATUSES,
    TX_TYPE_BUY,
    ZERO_LIQUIDITY,
    ZERO_PORTFOLIO,
    AssetBreakdown,
    LiquidityMetrics,
    PoolMetrics,
    PortfolioMetrics,
    RefreshSummary,
)
from ..oracles.price_oracle import PriceOracle
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2

DEFAULT_ASSET_VALUE = 1_000_000.0
DEFAULT_MARKET_PRICE = 1.0
DEFAULT_TOTAL_TOKENS = 1000.0

DEFAULT_LOCATION = "Dubai"
DEFAULT_PROPERTY_SIZE = 10000.0
DEFAULT_PROPERTY_TYPE = "commercial"

# asset type → (commodity name, default quantity); a row's own `commodity`
# column overrides the name
COMMODITY_ASSETS: dict[str, tuple[str, float]] = {
    "Gold": ("gold", 100.0),
    "Oil": ("oil", 1000.0),
    "Commodities": ("commodities", 1.0),
}


class CalculationEngine:
    """Aggregates store rows and oracle prices into the platform's derived views.

    Read paths fail soft: a failing computation is retried once and then
    returns a zero result flagged ``degraded``. A missing pool is not a
    transient failure and raises :class:`NotFoundError`.
    """

    def __init__(
        self,
        config: EngineConfig,
        store: RowStore,
        oracle: PriceOracle,
        snapshots: SnapshotStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._store = store
        self._oracle = oracle
        self._snapshots = snapshots
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _with_retry(
        self, label: str, func: Callable[..., Awaitable[Any]], *args: Any
    ) -> Any:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return await func(*args)
            except NotFoundError:
                raise
            except Exception as e:
                logger.warning(
                    "%s failed (attempt %d/%d): %s", label, attempt, MAX_ATTEMPTS, e
                )
                if attempt == MAX_ATTEMPTS:
                    raise

    async def _change_24h(self, entity_type: str, entity_id: str, current: float) -> float:
        if self._snapshots is None:
            return 0.0
        try:
            previous = await self._snapshots.value_at(
                entity_type, entity_id, self._clock() - timedelta(hours=24)
            )
        except Exception as e:
            logger.warning("Snapshot lookup for %s %s failed: %s", entity_type, entity_id, e)
            return 0.0
        return pricing.percentage_change(current, previous)

    async def get_asset_current_value(self, asset: dict[str, Any]) -> float:
        """Current value of a pledged asset row (``user_assets`` or ``assets``)."""
        asset_type = asset.get("asset_type") or asset.get("type") or ""
        stored = asset.get("estimated_value", asset.get("value_amount"))
        stored_value = pricing.to_float(stored, default=DEFAULT_ASSET_VALUE)

        if asset_type == "Real Estate":
            year_built = asset.get("year_built")
            try:
                value = self._oracle.calculate_real_estate_value(
                    location=asset.get("location") or DEFAULT_LOCATION,
                    size=pricing.to_float(asset.get("size")) or DEFAULT_PROPERTY_SIZE,
                    property_type=asset.get("property_type") or DEFAULT_PROPERTY_TYPE,
                    year_built=int(year_built) if year_built else None,
                )
            except ValueError as e:
                logger.warning(
                    "Real estate valuation failed for asset %s, using stored value: %s",
                    asset.get("id"), e,
                )
                return stored_value
        elif asset_type in COMMODITY_ASSETS:
            commodity, default_quantity = COMMODITY_ASSETS[asset_type]
            quote = await self._oracle.get_commodity_price(asset.get("commodity") or commodity)
            quantity = pricing.to_float(asset.get("quantity")) or default_quantity
            value = quote.price * quantity
        else:
            return stored_value

        if not pricing.is_valid_price(value):
            logger.warning("Invalid value %r for asset %s, using stored value", value, asset.get("id"))
            return stored_value
        return value

    async def _base_price(self, token_id: str) -> float:
        token = await self._store.select_one(TABLE_TOKENS, [eq("id", token_id)])
        if token is None:
            return DEFAULT_MARKET_PRICE
        price = pricing.to_float(token.get("price_per_token"))
        if price > 0 and pricing.is_valid_price(price):
            return price
        return DEFAULT_MARKET_PRICE

    # ------------------------------------------------------------------
    # Portfolio
    # ------------------------------------------------------------------

    async def calculate_portfolio_value(self, user_id: str) -> PortfolioMetrics:
        try:
            return await self._with_retry(
                f"Portfolio calculation for {user_id}", self._portfolio_value, user_id
            )
        except Exception as e:
            logger.error("Portfolio calculation error for %s: %s", user_id, e)
            return replace(ZERO_PORTFOLIO, degraded=True)

    async def _portfolio_value(self, user_id: str) -> PortfolioMetrics:
        user_assets = await self._store.select(
            TABLE_USER_ASSETS,
            [eq("user_id", user_id), eq("status", ASSET_STATUS_APPROVED)],
        )
        positions = await self._store.select(
            TABLE_LIQUIDITY_POSITIONS, [eq("user_id", user_id)]
        )
        buys = await self._store.select(
            TABLE_TRANSACTIONS,
            [
                eq("user_id", user_id),
                eq("type", TX_TYPE_BUY),
                in_("status", TX_SETTLED_STATUSES),
            ],
        )

        total_value = 0.0
        values: dict[str, float] = {}
        counts: dict[str, int] = {}

        def add(category: str, value: float) -> None:
            nonlocal total_value
            total_value += value
            values[category] = values.get(category, 0.0) + value
            counts[category] = counts.get(category, 0) + 1

        for asset in user_assets:
            current_value = await self.get_asset_current_value(asset)
            add(asset.get("asset_type") or "Other", current_value)

        for position in positions:
            add(CATEGORY_LIQUIDITY, pricing.to_float(position.get("amount")))

        holdings: dict[str, float] = {}
        for tx in buys:
            token_id = tx.get("token_id")
            if not token_id:
                continue
            holdings[token_id] = holdings.get(token_id, 0.0) + pricing.to_float(tx.get("amount"))

        for token_id, amount in holdings.items():
            price = await self.calculate_market_price(token_id)
            add(CATEGORY_TOKEN_HOLDINGS, amount * price)

        breakdown: tuple[AssetBreakdown, ...] = ()
        if total_value > 0:
            breakdown = tuple(
                AssetBreakdown(
                    type=category,
                    value=value,
                    percentage=value / total_value * 100,
                    count=counts[category],
                )
                for category, value in values.items()
            )

        change_24h = await self._change_24h(SNAPSHOT_PORTFOLIO, user_id, total_value)
        if self._snapshots is not None:
            await self._snapshots.record(SNAPSHOT_PORTFOLIO, user_id, total_value)

        logger.debug(
            "Portfolio %s: $%.2f across %d categories", user_id, total_value, len(breakdown)
        )
        return PortfolioMetrics(
            total_value=total_value,
            change_24h=change_24h,
            change_amount=total_value * change_24h / 100,
            asset_breakdown=breakdown,
        )

    # ------------------------------------------------------------------
    # Liquidity pools
    # ------------------------------------------------------------------

    async def calculate_liquidity_metrics(
        self, pool_id: str, user_id: str | None = None
    ) -> LiquidityMetrics:
        try:
            return await self._with_retry(
                f"Liquidity metrics for pool {pool_id}",
                self._liquidity_metrics,
                pool_id,
                user_id,
            )
        except NotFoundError:
            raise
        except Exception as e:
            logger.error("Liquidity metrics calculation error for %s: %s", pool_id, e)
            return replace(ZERO_LIQUIDITY, degraded=True)

    async def _liquidity_metrics(
        self, pool_id: str, user_id: str | None
    ) -> LiquidityMetrics:
        pool = await self._store.select_one(TABLE_LIQUIDITY_POOLS, [eq("id", pool_id)])
        if pool is None:
            raise NotFoundError("Pool", pool_id)

        positions = await self._store.select(
            TABLE_LIQUIDITY_POSITIONS, [eq("pool_id", pool_id)]
        )
        total_liquidity = sum(pricing.to_float(p.get("amount")) for p in positions)

        user_liquidity = 0.0
        if user_id:
            user_liquidity = sum(
                pricing.to_float(p.get("amount"))
                for p in positions
                if p.get("user_id") == user_id
            )

        volume_24h = await self._volume_24h(pool)
        fee_rate = self._config.fee_rate

        apr = self._oracle.calculate_pool_apr(
            total_liquidity=total_liquidity,
            volume_24h=volume_24h,
            fee_rate=fee_rate,
            pool_risk=pricing.pool_risk_multiplier(pool.get("name") or ""),
        )

        fees_24h = volume_24h * fee_rate
        user_fees_24h = (
            fees_24h * (user_liquidity / total_liquidity)
            if user_liquidity > 0 and total_liquidity > 0
            else 0.0
        )

        await self._oracle.update_pool_metrics(
            pool_id,
            PoolMetrics(
                total_liquidity=total_liquidity,
                apr=apr,
                volume_24h=volume_24h,
                fees_24h=fees_24h,
            ),
        )

        return LiquidityMetrics(
            total_liquidity=total_liquidity,
            user_liquidity=user_liquidity,
            apr=apr,
            volume_24h=volume_24h,
            fees_24h=fees_24h,
            user_fees_24h=user_fees_24h,
        )

    async def _volume_24h(self, pool: dict[str, Any]) -> float:
        """Traded value over the trailing 24 hours.

        Pool-scoped by the pool's token ids unless the engine is configured
        for platform-wide volume or the pool carries no token ids.
        """
        since = (self._clock() - timedelta(hours=24)).isoformat()
        filters = [gte("created_at", since)]

        if self._config.volume_scope == "pool":
            token_ids = [t for t in (pool.get("token_a_id"), pool.get("token_b_id")) if t]
            if token_ids:
                filters.append(in_("token_id", token_ids))
            else:
                logger.debug("Pool %s has no token ids, using platform volume", pool.get("id"))

        trades = await self._store.select(TABLE_TRANSACTIONS, filters, columns="total_value")
        return sum(pricing.to_float(t.get("total_value")) for t in trades)

    # ------------------------------------------------------------------
    # Marketplace pricing
    # ------------------------------------------------------------------

    async def calculate_market_price(self, token_id: str) -> float:
        try:
            return await self._with_retry(
                f"Market price for token {token_id}", self._market_price, token_id
            )
        except Exception as e:
            logger.error("Market price calculation error for %s: %s", token_id, e)
            return DEFAULT_MARKET_PRICE

    async def _market_price(self, token_id: str) -> float:
        since = (self._clock() - timedelta(days=self._config.trade_window_days)).isoformat()
        trades = await self._store.select(
            TABLE_TRANSACTIONS,
            [eq("token_id", token_id), gte("created_at", since)],
            columns="price,amount,created_at",
            order=Order("created_at", descending=True),
            limit=self._config.trade_sample_size,
        )
        if not trades:
            return await self._base_price(token_id)

        weighted = pricing.weighted_average_price(trades)
        if weighted is None:
            return await self._base_price(token_id)

        listings = await self._store.select(
            TABLE_MARKETPLACE_LISTINGS,
            [eq("token_id", token_id), eq("status", LISTING_STATUS_ACTIVE)],
            columns="amount,price_per_token",
        )
        listed_supply = sum(pricing.to_float(listing.get("amount")) for listing in listings)
        price = weighted * pricing.supply_multiplier(listed_supply)

        if not pricing.is_valid_price(price):
            logger.warning("Invalid market price %r for token %s, using base price", price, token_id)
            return await self._base_price(token_id)
        return price

    # ------------------------------------------------------------------
    # Refresh sweep
    # ------------------------------------------------------------------

    async def _run_phase(
        self,
        name: str,
        rows: list[dict[str, Any]],
        worker: Callable[[dict[str, Any]], Awaitable[bool]],
    ) -> tuple[int, int]:
        """Process rows with bounded concurrency; returns (succeeded, failed)."""
        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def guarded(row: dict[str, Any]) -> bool:
            async with semaphore:
                try:
                    return await worker(row)
                except Exception as e:
                    logger.error("Refresh of %s %s failed: %s", name, row.get("id"), e)
                    return False

        results = await asyncio.gather(*(guarded(row) for row in rows))
        succeeded = sum(1 for ok in results if ok)
        return succeeded, len(results) - succeeded

    async def _refresh_asset(self, asset: dict[str, Any]) -> bool:
        value = await self.get_asset_current_value(asset)
        total_tokens = pricing.to_float(asset.get("total_tokens")) or DEFAULT_TOTAL_TOKENS
        token_price = self._oracle.calculate_token_price(value, total_tokens)
        return await self._oracle.update_asset_pricing(
            str(asset["id"]), token_price, current_value=value
        )

    async def _refresh_pool(self, pool: dict[str, Any]) -> bool:
        metrics = await self.calculate_liquidity_metrics(pool["id"])
        return not metrics.degraded

    async def _refresh_token(self, token: dict[str, Any]) -> bool:
        token_id = token["id"]
        # A failed computation leaves the stored price untouched.
        price = await self._with_retry(
            f"Market price for token {token_id}", self._market_price, token_id
        )
        await self._store.update(
            TABLE_TOKENS,
            {"price_per_token": price, "updated_at": self._clock().isoformat()},
            [eq("id", token_id)],
        )
        if self._snapshots is not None:
            await self._snapshots.record(SNAPSHOT_TOKEN, token_id, price)
        return True

    async def _load(self, table: str, filters: list, columns: str = "*") -> list[dict[str, Any]] | None:
        try:
            return await self._store.select(table, filters, columns=columns)
        except Exception as e:
            logger.error("Refresh could not load %s: %s", table, e)
            return None

    async def refresh_all_metrics(self) -> RefreshSummary:
        """Recompute and persist asset values, pool metrics and token prices."""
        started_at = self._clock()
        logger.info("Starting metrics refresh")

        updated: dict[str, int] = {}
        failures = 0

        phases: list[tuple[str, str, list, str, Callable[[dict[str, Any]], Awaitable[bool]]]] = [
            ("asset", TABLE_ASSETS, [], "*", self._refresh_asset),
            ("pool", TABLE_LIQUIDITY_POOLS, [eq("is_active", True)], "*", self._refresh_pool),
            ("token", TABLE_TOKENS, [], "id", self._refresh_token),
        ]
        for name, table, filters, columns, worker in phases:
            rows = await self._load(table, filters, columns)
            if rows is None:
                failures += 1
                updated[name] = 0
                continue
            succeeded, failed = await self._run_phase(name, rows, worker)
            updated[name] = succeeded
            failures += failed

        summary = RefreshSummary(
            started_at=started_at,
            finished_at=self._clock(),
            assets_updated=updated["asset"],
            pools_updated=updated["pool"],
            tokens_updated=updated["token"],
            failures=failures,
        )
        logger.info(
            "Metrics refresh completed: %d assets, %d pools, %d tokens, %d failures",
            summary.assets_updated,
            summary.pools_updated,
            summary.tokens_updated,
            summary.failures,
        )
        return summary
