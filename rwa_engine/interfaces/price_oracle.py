"""Price feed protocols — external quote sources behind the price oracle."""
from typing import Protocol

from ..models import PriceData


class CommodityFeed(Protocol):
    """Spot prices keyed by lower-case commodity name (gold, silver, ...)."""

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]: ...


class CryptoFeed(Protocol):
    """Market data for a single crypto symbol; raises when no quote is available."""

    async def fetch_quote(self, symbol: str) -> PriceData: ...
