"""Shared test fixtures, sample rows and an in-memory row store."""
from __future__ import annotations

import copy
import textwrap
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Sequence
from unittest.mock import AsyncMock

import pytest

from rwa_engine.config import (
    AppConfig,
    CoinGeckoConfig,
    EngineConfig,
    PriceOracleConfig,
    PythConfig,
    StoreConfig,
)
from rwa_engine.interfaces.store import Filter, Order
from rwa_engine.oracles.price_oracle import PriceOracle
from rwa_engine.services import CalculationEngine, ReadModels, SnapshotStore

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def iso_ago(**delta: float) -> str:
    return (NOW - timedelta(**delta)).isoformat()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def _matches(row: dict[str, Any], f: Filter) -> bool:
    value = row.get(f.column)
    if f.op == "eq":
        return value == f.value
    if f.op == "in":
        return value in f.value
    if value is None:
        return False
    if f.op == "gte":
        return value >= f.value
    return value <= f.value


class InMemoryStore:
    """RowStore over plain dict tables with scripted select failures.

    ``fail_selects[table] = n`` makes the next ``n`` selects on ``table``
    raise ``error``; ``n = -1`` fails forever.
    """

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.fail_selects: dict[str, int] = {}
        self.error: Exception = RuntimeError("store unavailable")
        self.updates: list[tuple[str, dict[str, Any], tuple[Filter, ...]]] = []
        self.select_calls: list[tuple[str, tuple[Filter, ...]]] = []

    def _maybe_fail(self, table: str) -> None:
        remaining = self.fail_selects.get(table, 0)
        if remaining == 0:
            return
        if remaining > 0:
            self.fail_selects[table] = remaining - 1
        raise self.error

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: str = "*",
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self.select_calls.append((table, tuple(filters)))
        self._maybe_fail(table)
        rows = [
            copy.deepcopy(row)
            for row in self.tables.get(table, [])
            if all(_matches(row, f) for f in filters)
        ]
        if order is not None:
            rows.sort(key=lambda r: r.get(order.column) or "", reverse=order.descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def select_one(
        self, table: str, filters: Sequence[Filter]
    ) -> dict[str, Any] | None:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def update(
        self, table: str, values: dict[str, Any], filters: Sequence[Filter]
    ) -> None:
        self.updates.append((table, dict(values), tuple(filters)))
        for row in self.tables.get(table, []):
            if all(_matches(row, f) for f in filters):
                row.update(values)

    async def insert(self, table: str, row: dict[str, Any]) -> None:
        self.tables.setdefault(table, []).append(dict(row))

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine_config() -> EngineConfig:
    return EngineConfig(refresh_interval_minutes=5, max_concurrency=3)


@pytest.fixture()
def oracle_config() -> PriceOracleConfig:
    return PriceOracleConfig(
        cache_ttl_seconds=300,
        pyth=PythConfig(
            hermes_url="https://hermes.example.com/v2/updates/price/latest",
            feeds={"gold": "aaa111", "silver": "bbb222"},
        ),
        coingecko=CoinGeckoConfig(base_url="https://cg.example.com/simple/price"),
    )


@pytest.fixture()
def sample_app_config(
    engine_config: EngineConfig, oracle_config: PriceOracleConfig
) -> AppConfig:
    return AppConfig(
        engine=engine_config,
        store=StoreConfig(
            supabase_url="https://project.supabase.co", supabase_key="service-key"
        ),
        price_oracle=oracle_config,
    )


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_store() -> Callable[..., InMemoryStore]:
    return InMemoryStore


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def commodity_feed() -> AsyncMock:
    feed = AsyncMock()
    feed.fetch_prices.return_value = {"gold": 2300.0}
    return feed


@pytest.fixture()
def crypto_feed() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def oracle(
    oracle_config: PriceOracleConfig,
    store: InMemoryStore,
    commodity_feed: AsyncMock,
    crypto_feed: AsyncMock,
    clock: FakeClock,
) -> PriceOracle:
    return PriceOracle(
        oracle_config, store, commodity_feed=commodity_feed, crypto_feed=crypto_feed, clock=clock
    )


@pytest.fixture()
def snapshots(store: InMemoryStore, clock: FakeClock) -> SnapshotStore:
    return SnapshotStore(store, clock=clock)


@pytest.fixture()
def engine(
    engine_config: EngineConfig,
    store: InMemoryStore,
    oracle: PriceOracle,
    snapshots: SnapshotStore,
    clock: FakeClock,
) -> CalculationEngine:
    return CalculationEngine(engine_config, store, oracle, snapshots, clock=clock)


@pytest.fixture()
def read_models(
    engine: CalculationEngine,
    store: InMemoryStore,
    snapshots: SnapshotStore,
    clock: FakeClock,
) -> ReadModels:
    return ReadModels(engine, store, snapshots, clock=clock)


# ---------------------------------------------------------------------------
# Sample rows
# ---------------------------------------------------------------------------


@pytest.fixture()
def dubai_office() -> dict[str, Any]:
    return {
        "id": "ua-1",
        "user_id": "user-1",
        "asset_type": "Real Estate",
        "description": "Office tower floor",
        "estimated_value": 2_500_000,
        "status": "approved",
        "location": "Dubai",
        "size": 5000,
        "property_type": "commercial",
    }


@pytest.fixture()
def sample_pool() -> dict[str, Any]:
    return {
        "id": "pool-1",
        "name": "ETH/USDC",
        "token_a": "ETH",
        "token_b": "USDC",
        "token_a_id": "tok-a",
        "token_b_id": "tok-b",
        "total_liquidity": 0,
        "apr": 0,
        "volume_24h": 0,
        "fees_24h": 0,
        "is_active": True,
    }


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    engine:
      refresh_interval_minutes: 10
      max_concurrency: 4
      fee_rate: 0.003
      volume_scope: pool
    store:
      supabase_url: "https://project.supabase.co/"
      supabase_key: "service-key"
      timeout: 15
    price_oracle:
      cache_ttl_seconds: 120
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {GOLD: "aaa", silver: "bbb"}
      coingecko:
        base_url: "https://cg.example.com"
        coin_ids: {sol: solana}
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
