"""Unit tests for the price oracle — caching, fallbacks, price persistence."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from rwa_engine.errors import PriceFeedError
from rwa_engine.models import PoolMetrics, PriceData
from rwa_engine.oracles.price_oracle import PriceOracle


def _quote(symbol: str, price: float) -> PriceData:
    return PriceData(
        symbol=symbol,
        price=price,
        change_24h=1.5,
        volume_24h=1000.0,
        last_updated=datetime(2026, 6, 1, tzinfo=timezone.utc),
        source="coingecko",
    )


class TestCommodityPrice:
    @pytest.mark.asyncio
    async def test_feed_price_returned(self, oracle: PriceOracle, commodity_feed: AsyncMock) -> None:
        data = await oracle.get_commodity_price("Gold")
        assert data.symbol == "GOLD"
        assert data.price == 2300.0
        assert data.source == "pyth"
        commodity_feed.fetch_prices.assert_awaited_once_with(["gold"])

    @pytest.mark.asyncio
    async def test_cache_hit_within_ttl(self, oracle: PriceOracle, commodity_feed: AsyncMock, clock) -> None:
        first = await oracle.get_commodity_price("gold")
        clock.advance(seconds=299)
        second = await oracle.get_commodity_price("gold")
        assert second == first
        assert commodity_feed.fetch_prices.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self, oracle: PriceOracle, commodity_feed: AsyncMock, clock) -> None:
        await oracle.get_commodity_price("gold")
        clock.advance(seconds=300)
        commodity_feed.fetch_prices.return_value = {"gold": 2400.0}
        data = await oracle.get_commodity_price("gold")
        assert data.price == 2400.0
        assert commodity_feed.fetch_prices.await_count == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self, oracle: PriceOracle, commodity_feed: AsyncMock) -> None:
        await oracle.get_commodity_price("gold")
        oracle.clear_cache()
        await oracle.get_commodity_price("gold")
        assert commodity_feed.fetch_prices.await_count == 2

    @pytest.mark.asyncio
    async def test_feed_error_uses_fallback(self, oracle: PriceOracle, commodity_feed: AsyncMock) -> None:
        commodity_feed.fetch_prices.side_effect = ConnectionError("down")
        data = await oracle.get_commodity_price("gold")
        assert data.price == 2000.0
        assert data.change_24h == 0.0
        assert data.source == "fallback"

    @pytest.mark.asyncio
    async def test_missing_quote_uses_fallback(self, oracle: PriceOracle, commodity_feed: AsyncMock) -> None:
        commodity_feed.fetch_prices.return_value = {}
        assert (await oracle.get_commodity_price("silver")).price == 24.0
        assert (await oracle.get_commodity_price("oil")).price == 80.0
        assert (await oracle.get_commodity_price("copper")).price == 4.0
        assert (await oracle.get_commodity_price("unobtainium")).price == 100.0

    @pytest.mark.asyncio
    async def test_invalid_quote_uses_fallback(self, oracle: PriceOracle, commodity_feed: AsyncMock) -> None:
        commodity_feed.fetch_prices.return_value = {"gold": float("nan")}
        assert (await oracle.get_commodity_price("gold")).price == 2000.0

    @pytest.mark.asyncio
    async def test_fallback_not_cached(self, oracle: PriceOracle, commodity_feed: AsyncMock) -> None:
        commodity_feed.fetch_prices.side_effect = [ConnectionError("down"), {"gold": 2300.0}]
        assert (await oracle.get_commodity_price("gold")).price == 2000.0
        assert (await oracle.get_commodity_price("gold")).price == 2300.0

    @pytest.mark.asyncio
    async def test_no_feed_configured(self, oracle_config, store, clock) -> None:
        bare = PriceOracle(oracle_config, store, clock=clock)
        assert (await bare.get_commodity_price("gold")).price == 2000.0
        assert (await bare.get_crypto_price("ETH")).price == 3000.0


class TestCryptoPrice:
    @pytest.mark.asyncio
    async def test_feed_quote_returned_and_cached(self, oracle: PriceOracle, crypto_feed: AsyncMock) -> None:
        crypto_feed.fetch_quote.return_value = _quote("BTC", 64000.0)
        first = await oracle.get_crypto_price("BTC")
        second = await oracle.get_crypto_price("btc")
        assert first.price == 64000.0
        assert second is first
        crypto_feed.fetch_quote.assert_awaited_once_with("BTC")

    @pytest.mark.asyncio
    async def test_feed_error_uses_fallback(self, oracle: PriceOracle, crypto_feed: AsyncMock) -> None:
        crypto_feed.fetch_quote.side_effect = PriceFeedError("rate limited")
        assert (await oracle.get_crypto_price("BTC")).price == 45000.0
        assert (await oracle.get_crypto_price("usdc")).price == 1.0
        assert (await oracle.get_crypto_price("XYZ")).price == 1.0

    @pytest.mark.asyncio
    async def test_invalid_quote_uses_fallback(self, oracle: PriceOracle, crypto_feed: AsyncMock) -> None:
        crypto_feed.fetch_quote.return_value = _quote("ETH", -5.0)
        data = await oracle.get_crypto_price("ETH")
        assert data.price == 3000.0
        assert data.source == "fallback"


class TestFormulas:
    def test_real_estate_uses_clock_year(self, oracle: PriceOracle) -> None:
        # clock year is 2026: a 2016 building is ten years old
        value = oracle.calculate_real_estate_value("Dubai", 5000, "commercial", year_built=2016)
        undepreciated = oracle.calculate_real_estate_value("Dubai", 5000, "commercial")
        assert value == pytest.approx(undepreciated * 0.9)

    def test_token_price_delegates(self, oracle: PriceOracle) -> None:
        assert oracle.calculate_token_price(1_000_000, 1000) == pytest.approx(1000.0)

    def test_pool_apr_delegates(self, oracle: PriceOracle) -> None:
        assert oracle.calculate_pool_apr(0, 1000, 0.003, 1.0) == 0.0


class TestPersistence:
    @pytest.mark.asyncio
    async def test_update_asset_pricing_writes_asset_and_tokens(self, make_store, oracle_config, clock) -> None:
        store = make_store(
            {
                "assets": [{"id": "a1", "token_price": 1.0}],
                "tokens": [
                    {"id": "t1", "asset_id": "a1", "price_per_token": 1.0},
                    {"id": "t2", "asset_id": "other", "price_per_token": 7.0},
                ],
            }
        )
        oracle = PriceOracle(oracle_config, store, clock=clock)

        assert await oracle.update_asset_pricing("a1", 2500.0, current_value=2_500_000.0) is True
        assert store.rows("assets")[0]["token_price"] == 2500.0
        assert store.rows("assets")[0]["value_amount"] == 2_500_000.0
        assert store.rows("tokens")[0]["price_per_token"] == 2500.0
        assert store.rows("tokens")[1]["price_per_token"] == 7.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", [-1.0, float("nan"), float("inf")])
    async def test_update_asset_pricing_refuses_invalid(self, oracle: PriceOracle, store, bad: float) -> None:
        assert await oracle.update_asset_pricing("a1", bad) is False
        assert store.updates == []

    @pytest.mark.asyncio
    async def test_update_asset_pricing_store_failure(self, oracle_config, clock) -> None:
        failing = AsyncMock()
        failing.update.side_effect = RuntimeError("boom")
        oracle = PriceOracle(oracle_config, failing, clock=clock)
        assert await oracle.update_asset_pricing("a1", 10.0) is False

    @pytest.mark.asyncio
    async def test_update_pool_metrics(self, make_store, oracle_config, clock) -> None:
        store = make_store({"liquidity_pools": [{"id": "p1"}]})
        oracle = PriceOracle(oracle_config, store, clock=clock)
        metrics = PoolMetrics(total_liquidity=100.0, apr=12.5, volume_24h=50.0, fees_24h=0.15)

        assert await oracle.update_pool_metrics("p1", metrics) is True
        row = store.rows("liquidity_pools")[0]
        assert row["total_liquidity"] == 100.0
        assert row["apr"] == 12.5
        assert row["volume_24h"] == 50.0
        assert row["fees_24h"] == 0.15
        assert "updated_at" in row

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["total_liquidity", "apr", "volume_24h", "fees_24h"])
    async def test_update_pool_metrics_refuses_non_finite(self, make_store, oracle_config, clock, field: str) -> None:
        store = make_store({"liquidity_pools": [{"id": "p1", "apr": 3.0}]})
        oracle = PriceOracle(oracle_config, store, clock=clock)
        values = {"total_liquidity": 100.0, "apr": 12.5, "volume_24h": 50.0, "fees_24h": 0.15}
        values[field] = float("nan")

        assert await oracle.update_pool_metrics("p1", PoolMetrics(**values)) is False
        assert store.updates == []
        assert store.rows("liquidity_pools")[0] == {"id": "p1", "apr": 3.0}

    @pytest.mark.asyncio
    async def test_update_pool_metrics_failure(self, oracle_config, clock) -> None:
        failing = AsyncMock()
        failing.update.side_effect = RuntimeError("boom")
        oracle = PriceOracle(oracle_config, failing, clock=clock)
        metrics = PoolMetrics(total_liquidity=0.0, apr=0.0, volume_24h=0.0, fees_24h=0.0)
        assert await oracle.update_pool_metrics("p1", metrics) is False


class TestConcurrentLookups:
    @pytest.mark.asyncio
    async def test_concurrent_commodity_misses_share_one_request(
        self, oracle: PriceOracle, commodity_feed: AsyncMock
    ) -> None:
        async def slow_fetch(symbols: list[str]) -> dict[str, float]:
            await asyncio.sleep(0.01)
            return {"gold": 2300.0}

        commodity_feed.fetch_prices.side_effect = slow_fetch

        results = await asyncio.gather(*(oracle.get_commodity_price("gold") for _ in range(5)))

        assert [r.price for r in results] == [2300.0] * 5
        assert commodity_feed.fetch_prices.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_crypto_misses_share_one_request(
        self, oracle: PriceOracle, crypto_feed: AsyncMock
    ) -> None:
        async def slow_quote(symbol: str) -> PriceData:
            await asyncio.sleep(0.01)
            return _quote(symbol, 64000.0)

        crypto_feed.fetch_quote.side_effect = slow_quote

        await asyncio.gather(*(oracle.get_crypto_price("BTC") for _ in range(4)))

        assert crypto_feed.fetch_quote.await_count == 1

    @pytest.mark.asyncio
    async def test_different_commodities_fetched_independently(
        self, oracle: PriceOracle, commodity_feed: AsyncMock
    ) -> None:
        commodity_feed.fetch_prices.return_value = {"gold": 2300.0, "silver": 25.0}

        gold, silver = await asyncio.gather(
            oracle.get_commodity_price("gold"), oracle.get_commodity_price("silver")
        )

        assert (gold.price, silver.price) == (2300.0, 25.0)
        assert commodity_feed.fetch_prices.await_count == 2
