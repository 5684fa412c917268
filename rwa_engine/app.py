"""Service wiring — builds the long-lived engine objects once per process."""
from __future__ import annotations

from dataclasses import dataclass

from .clock import Clock, utc_now
from .config import AppConfig
from .interfaces.store import RowStore
from .oracles import CoinGeckoFeed, PriceOracle, PythOracle
from .services import CalculationEngine, ReadModels, RefreshScheduler, SnapshotStore
from .store import SupabaseStore


@dataclass
class Services:
    store: RowStore
    oracle: PriceOracle
    snapshots: SnapshotStore
    engine: CalculationEngine
    read_models: ReadModels
    scheduler: RefreshScheduler


def build_services(
    config: AppConfig,
    store: RowStore | None = None,
    clock: Clock = utc_now,
) -> Services:
    """Construct the service graph; ``store`` defaults to the configured Supabase project."""
    if store is None:
        store = SupabaseStore(config.store)

    oracle = PriceOracle(
        config.price_oracle,
        store,
        commodity_feed=PythOracle(config.price_oracle.pyth),
        crypto_feed=CoinGeckoFeed(config.price_oracle.coingecko, clock=clock),
        clock=clock,
    )
    snapshots = SnapshotStore(store, clock=clock)
    engine = CalculationEngine(config.engine, store, oracle, snapshots, clock=clock)

    return Services(
        store=store,
        oracle=oracle,
        snapshots=snapshots,
        engine=engine,
        read_models=ReadModels(engine, store, snapshots, clock=clock),
        scheduler=RefreshScheduler(engine, config.engine.refresh_interval_minutes),
    )
