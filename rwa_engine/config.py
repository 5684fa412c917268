"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

VOLUME_SCOPES = ("pool", "platform")

DEFAULT_COIN_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
}

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    refresh_interval_minutes: int = 5
    max_concurrency: int = 5
    fee_rate: float = 0.003
    volume_scope: str = "pool"
    trade_window_days: int = 7
    trade_sample_size: int = 20


@dataclass(frozen=True)
class StoreConfig:
    supabase_url: str = ""
    supabase_key: str = ""
    timeout: int = 30


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CoinGeckoConfig:
    base_url: str = "https://api.coingecko.com/api/v3/simple/price"
    timeout: int = 10
    api_key: str = ""
    coin_ids: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COIN_IDS))


@dataclass(frozen=True)
class PriceOracleConfig:
    cache_ttl_seconds: int = 300
    pyth: PythConfig = field(default_factory=PythConfig)
    coingecko: CoinGeckoConfig = field(default_factory=CoinGeckoConfig)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        refresh_interval_minutes=int(raw.get("refresh_interval_minutes", 5)),
        max_concurrency=int(raw.get("max_concurrency", 5)),
        fee_rate=float(raw.get("fee_rate", 0.003)),
        volume_scope=str(raw.get("volume_scope", "pool")),
        trade_window_days=int(raw.get("trade_window_days", 7)),
        trade_sample_size=int(raw.get("trade_sample_size", 20)),
    )


def _build_store(raw: dict[str, Any]) -> StoreConfig:
    return StoreConfig(
        supabase_url=str(raw.get("supabase_url", "")).rstrip("/"),
        supabase_key=str(raw.get("supabase_key", "")),
        timeout=int(raw.get("timeout", 30)),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    cg_raw = raw.get("coingecko", {})
    coin_ids = dict(DEFAULT_COIN_IDS)
    coin_ids.update({str(k).upper(): v for k, v in cg_raw.get("coin_ids", {}).items()})
    return PriceOracleConfig(
        cache_ttl_seconds=int(raw.get("cache_ttl_seconds", 300)),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds={
                str(k).lower(): str(v)
                for k, v in pyth_raw.get("feeds", {}).items()
                if v
            },
        ),
        coingecko=CoinGeckoConfig(
            base_url=cg_raw.get("base_url", CoinGeckoConfig.base_url),
            timeout=int(cg_raw.get("timeout", 10)),
            api_key=cg_raw.get("api_key", ""),
            coin_ids=coin_ids,
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine", {})),
        store=_build_store(raw.get("store", {})),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.store.supabase_url:
        raise ValueError("store.supabase_url must be configured")
    if not cfg.store.supabase_key:
        raise ValueError("store.supabase_key must be configured")

    engine = cfg.engine
    if engine.refresh_interval_minutes <= 0:
        raise ValueError("engine.refresh_interval_minutes must be positive")
    if engine.max_concurrency < 1:
        raise ValueError("engine.max_concurrency must be at least 1")
    if engine.volume_scope not in VOLUME_SCOPES:
        raise ValueError(
            f"engine.volume_scope must be one of {VOLUME_SCOPES}, "
            f"got '{engine.volume_scope}'"
        )
    if not 0 <= engine.fee_rate < 1:
        raise ValueError("engine.fee_rate must be in [0, 1)")

    if cfg.price_oracle.cache_ttl_seconds < 0:
        raise ValueError("price_oracle.cache_ttl_seconds must not be negative")
