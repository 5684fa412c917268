"""Pyth Network price feed — spot prices for commodities."""
from __future__ import annotations

import logging
import ssl
from typing import Any, Iterable

import aiohttp
import certifi

from ..config import PythConfig

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10


def _normalise_id(feed_id: Any) -> str:
    # Hermes returns ids without the 0x prefix
    return str(feed_id or "").lower().removeprefix("0x")


def parse_hermes_prices(
    parsed: Iterable[dict[str, Any]], feeds: dict[str, str]
) -> dict[str, float]:
    """Map Hermes ``parsed`` entries back to commodity names.

    Each entry carries an integer mantissa and a decimal exponent:
    ``{"id": "...", "price": {"price": "230012345678", "expo": -8}}``.
    """
    names_by_id: dict[str, list[str]] = {}
    for name, feed_id in feeds.items():
        names_by_id.setdefault(_normalise_id(feed_id), []).append(name)

    prices: dict[str, float] = {}
    for item in parsed:
        names = names_by_id.get(_normalise_id(item.get("id")))
        if not names:
            continue
        quote = item.get("price") or {}
        value = int(quote.get("price", 0)) * 10 ** int(quote.get("expo", 0))
        for name in names:
            prices[name] = value
    return prices


class PythOracle:
    """Commodity spot prices from the Pyth Hermes API, keyed by lowercase name."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]:
        """Fetch current prices for ``symbols`` (all configured feeds if None).

        Returns an empty dict on any HTTP or transport error; names without
        a configured feed are simply absent from the result.
        """
        feeds = self.price_feeds
        if symbols is not None:
            wanted = {s.lower() for s in symbols}
            feeds = {k: v for k, v in self.price_feeds.items() if k in wanted}

        if not feeds:
            return {}

        params = [("ids[]", feed_id) for feed_id in sorted(set(feeds.values()))]
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    self.hermes_url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS),
                ) as response:
                    if response.status != 200:
                        logger.error("Pyth price request failed: HTTP %s", response.status)
                        return {}
                    data = await response.json()
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        prices = parse_hermes_prices(data.get("parsed", []), feeds)
        for name, price in sorted(prices.items()):
            logger.debug("Pyth %s: $%.4f", name, price)
        return prices
