"""Pure pricing formulas for asset valuation, token pricing and pools — no I/O."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable


@dataclass(frozen=True)
class LocationPricing:
    price_per_sqft: float
    market_trend: float


REAL_ESTATE_PRICING: dict[str, LocationPricing] = {
    "New York": LocationPricing(price_per_sqft=1200.0, market_trend=0.05),
    "London": LocationPricing(price_per_sqft=900.0, market_trend=0.03),
    "Tokyo": LocationPricing(price_per_sqft=800.0, market_trend=0.02),
    "Dubai": LocationPricing(price_per_sqft=600.0, market_trend=0.08),
    "Singapore": LocationPricing(price_per_sqft=1100.0, market_trend=0.04),
}
DEFAULT_LOCATION = "Dubai"

PROPERTY_TYPE_MULTIPLIERS: dict[str, float] = {
    "residential": 1.0,
    "commercial": 1.2,
    "industrial": 0.8,
}

MAX_DEPRECIATION_FLOOR = 0.7
DEPRECIATION_PER_YEAR = 0.01

MIN_DEMAND_MULTIPLIER = 0.5
MAX_DEMAND_MULTIPLIER = 2.0

LOW_SUPPLY_THRESHOLD = 100.0
HIGH_SUPPLY_THRESHOLD = 10000.0
LOW_SUPPLY_PREMIUM = 1.1
HIGH_SUPPLY_DISCOUNT = 0.95


def calculate_real_estate_value(
    location: str,
    size: float,
    property_type: str,
    year_built: int | None = None,
    current_year: int | None = None,
) -> float:
    """Value a property from its location, floor area, type and age.

    value = size * $/sqft(location) * type_multiplier
                 * max(0.7, 1 - age * 0.01) * (1 + market_trend(location))

    Unknown locations are priced as Dubai. The depreciation term only applies
    when ``year_built`` is given; ``current_year`` must be supplied with it.

    Raises:
        ValueError: for an unknown property type.
    """
    pricing = REAL_ESTATE_PRICING.get(location) or REAL_ESTATE_PRICING[DEFAULT_LOCATION]

    multiplier = PROPERTY_TYPE_MULTIPLIERS.get(property_type)
    if multiplier is None:
        raise ValueError(f"Unknown property type '{property_type}'")

    price_per_sqft = pricing.price_per_sqft * multiplier

    if year_built:
        if current_year is None:
            raise ValueError("current_year is required when year_built is given")
        age = current_year - year_built
        price_per_sqft *= max(MAX_DEPRECIATION_FLOOR, 1 - age * DEPRECIATION_PER_YEAR)

    price_per_sqft *= 1 + pricing.market_trend

    return size * price_per_sqft


def clamp_demand(demand_multiplier: float) -> float:
    return max(MIN_DEMAND_MULTIPLIER, min(MAX_DEMAND_MULTIPLIER, demand_multiplier))


def calculate_token_price(
    asset_value: float, total_supply: float, demand_multiplier: float = 1.0
) -> float:
    """Per-token price of an asset split into ``total_supply`` units.

    The demand multiplier is clamped to [0.5, 2.0] before it is applied.
    """
    if total_supply <= 0:
        raise ValueError(f"total_supply must be positive, got {total_supply}")
    return (asset_value / total_supply) * clamp_demand(demand_multiplier)


def calculate_pool_apr(
    total_liquidity: float,
    volume_24h: float,
    fee_rate: float,
    pool_risk: float,
) -> float:
    """Annualised fee yield of a pool in percent, scaled by its risk multiplier."""
    if total_liquidity == 0:
        return 0.0
    annual_fees = volume_24h * fee_rate * 365
    return annual_fees / total_liquidity * 100 * pool_risk


def pool_risk_multiplier(pool_name: str) -> float:
    """Stable pools earn less, volatile crypto pools more."""
    if "USDC" in pool_name or "USDT" in pool_name:
        return 0.9
    if "BTC" in pool_name or "ETH" in pool_name:
        return 1.1
    return 1.0


def supply_multiplier(listed_supply: float) -> float:
    """Price adjustment for the amount of a token currently listed for sale.

    Thresholds are exclusive: exactly 100 or exactly 10000 units get 1.0.
    """
    if listed_supply < LOW_SUPPLY_THRESHOLD:
        return LOW_SUPPLY_PREMIUM
    if listed_supply > HIGH_SUPPLY_THRESHOLD:
        return HIGH_SUPPLY_DISCOUNT
    return 1.0


def weighted_average_price(trades: Iterable[dict[str, Any]]) -> float | None:
    """Volume-weighted average of trade prices, or None when there is no volume."""
    total_value = 0.0
    total_volume = 0.0
    for trade in trades:
        amount = to_float(trade.get("amount"))
        total_value += to_float(trade.get("price")) * amount
        total_volume += amount
    if total_volume <= 0:
        return None
    return total_value / total_volume


def percentage_change(current: float, previous: float | None) -> float:
    if previous is None or previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def is_valid_price(value: float) -> bool:
    return math.isfinite(value) and value >= 0


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce a numeric column (number, numeric string or NULL) to float."""
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    # numeric columns can hold NaN or Infinity
    return number if math.isfinite(number) else default
