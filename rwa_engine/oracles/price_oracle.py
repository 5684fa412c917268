"""Price oracle — cached external quotes, valuation formulas, price persistence."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from .. import pricing
from ..clock import Clock, utc_now
from ..config import PriceOracleConfig
from ..interfaces.price_oracle import CommodityFeed, CryptoFeed
from ..interfaces.store import RowStore, eq
from ..models import TABLE_ASSETS, TABLE_LIQUIDITY_POOLS, TABLE_TOKENS, PoolMetrics, PriceData

logger = logging.getLogger(__name__)

COMMODITY_FALLBACK_PRICES: dict[str, float] = {
    "gold": 2000.0,
    "silver": 24.0,
    "oil": 80.0,
    "copper": 4.0,
}
DEFAULT_COMMODITY_PRICE = 100.0

CRYPTO_FALLBACK_PRICES: dict[str, float] = {
    "BTC": 45000.0,
    "ETH": 3000.0,
    "USDC": 1.0,
    "USDT": 1.0,
}
DEFAULT_CRYPTO_PRICE = 1.0


class PriceOracle:
    """Supplies prices and valuations independent of any user or pool.

    External lookups are cached per key for ``cache_ttl_seconds``, and
    concurrent misses on one key share a single feed request. Lookups
    never raise: a failing feed yields the static fallback table (which is
    not cached, so the next call tries the feed again).
    """

    def __init__(
        self,
        config: PriceOracleConfig,
        store: RowStore,
        commodity_feed: CommodityFeed | None = None,
        crypto_feed: CryptoFeed | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._commodity_feed = commodity_feed
        self._crypto_feed = crypto_feed
        self._clock = clock
        self._ttl = timedelta(seconds=config.cache_ttl_seconds)
        self._cache: dict[str, tuple[PriceData, datetime]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cached(self, key: str) -> PriceData | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        data, expires_at = entry
        if self._clock() < expires_at:
            return data
        del self._cache[key]
        return None

    def _store_cache(self, key: str, data: PriceData) -> None:
        self._cache[key] = (data, self._clock() + self._ttl)

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # External quotes
    # ------------------------------------------------------------------

    async def get_commodity_price(self, commodity: str) -> PriceData:
        name = commodity.lower()
        cache_key = f"commodity_{name}"

        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        async with self._lock(cache_key):
            cached = self._cached(cache_key)
            if cached is not None:
                return cached

            try:
                if self._commodity_feed is None:
                    raise LookupError("no commodity feed configured")
                prices = await self._commodity_feed.fetch_prices([name])
                price = prices.get(name)
                if price is None or not pricing.is_valid_price(price):
                    raise LookupError(f"no usable {name} quote")
            except Exception as e:
                logger.warning("Failed to fetch %s price, using fallback: %s", name, e)
                return self._commodity_fallback(name)

            data = PriceData(
                symbol=name.upper(),
                price=price,
                change_24h=0.0,
                volume_24h=0.0,
                last_updated=self._clock(),
                source="pyth",
            )
            self._store_cache(cache_key, data)
            return data

    async def get_crypto_price(self, symbol: str) -> PriceData:
        cache_key = f"crypto_{symbol.lower()}"

        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        async with self._lock(cache_key):
            cached = self._cached(cache_key)
            if cached is not None:
                return cached

            try:
                if self._crypto_feed is None:
                    raise LookupError("no crypto feed configured")
                data = await self._crypto_feed.fetch_quote(symbol)
                if not pricing.is_valid_price(data.price):
                    raise LookupError(f"invalid {symbol} quote {data.price}")
            except Exception as e:
                logger.warning("Failed to fetch %s price, using fallback: %s", symbol, e)
                return self._crypto_fallback(symbol)

            self._store_cache(cache_key, data)
            return data

    def _commodity_fallback(self, name: str) -> PriceData:
        return PriceData(
            symbol=name.upper(),
            price=COMMODITY_FALLBACK_PRICES.get(name, DEFAULT_COMMODITY_PRICE),
            change_24h=0.0,
            volume_24h=0.0,
            last_updated=self._clock(),
        )

    def _crypto_fallback(self, symbol: str) -> PriceData:
        return PriceData(
            symbol=symbol.upper(),
            price=CRYPTO_FALLBACK_PRICES.get(symbol.upper(), DEFAULT_CRYPTO_PRICE),
            change_24h=0.0,
            volume_24h=0.0,
            last_updated=self._clock(),
        )

    # ------------------------------------------------------------------
    # Formulas
    # ------------------------------------------------------------------

    def calculate_real_estate_value(
        self,
        location: str,
        size: float,
        property_type: str,
        year_built: int | None = None,
    ) -> float:
        return pricing.calculate_real_estate_value(
            location,
            size,
            property_type,
            year_built=year_built,
            current_year=self._clock().year,
        )

    def calculate_token_price(
        self, asset_value: float, total_supply: float, demand_multiplier: float = 1.0
    ) -> float:
        return pricing.calculate_token_price(asset_value, total_supply, demand_multiplier)

    def calculate_pool_apr(
        self,
        total_liquidity: float,
        volume_24h: float,
        fee_rate: float,
        pool_risk: float,
    ) -> float:
        return pricing.calculate_pool_apr(total_liquidity, volume_24h, fee_rate, pool_risk)

    # ------------------------------------------------------------------
    # Persistence (best-effort)
    # ------------------------------------------------------------------

    async def update_asset_pricing(
        self,
        asset_id: str,
        new_price: float,
        current_value: float | None = None,
    ) -> bool:
        """Write a new token price for an asset and its tokens; False on failure."""
        if not pricing.is_valid_price(new_price):
            logger.error("Refusing to persist invalid price %r for asset %s", new_price, asset_id)
            return False

        now = self._clock().isoformat()
        asset_values: dict[str, object] = {"token_price": new_price, "updated_at": now}
        if current_value is not None and pricing.is_valid_price(current_value):
            asset_values["value_amount"] = current_value

        try:
            await self._store.update(TABLE_ASSETS, asset_values, [eq("id", asset_id)])
            await self._store.update(
                TABLE_TOKENS,
                {"price_per_token": new_price, "updated_at": now},
                [eq("asset_id", asset_id)],
            )
        except Exception as e:
            logger.error("Failed to update asset pricing for %s: %s", asset_id, e)
            return False
        return True

    async def update_pool_metrics(self, pool_id: str, metrics: PoolMetrics) -> bool:
        """Write derived metrics onto the pool row; False on failure."""
        values = (metrics.total_liquidity, metrics.apr, metrics.volume_24h, metrics.fees_24h)
        if not all(pricing.is_valid_price(v) for v in values):
            logger.error("Refusing to persist invalid metrics %r for pool %s", metrics, pool_id)
            return False

        try:
            await self._store.update(
                TABLE_LIQUIDITY_POOLS,
                {
                    "total_liquidity": metrics.total_liquidity,
                    "apr": metrics.apr,
                    "volume_24h": metrics.volume_24h,
                    "fees_24h": metrics.fees_24h,
                    "updated_at": self._clock().isoformat(),
                },
                [eq("id", pool_id)],
            )
        except Exception as e:
            logger.error("Failed to update pool metrics for %s: %s", pool_id, e)
            return False
        return True
