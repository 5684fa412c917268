"""CoinGecko market data feed for crypto quotes."""
from __future__ import annotations

import logging
import ssl

import aiohttp
import certifi

from ..clock import Clock, utc_now
from ..config import CoinGeckoConfig
from ..errors import PriceFeedError
from ..models import PriceData

logger = logging.getLogger(__name__)


class CoinGeckoFeed:
    """Fetch USD price, 24h change and 24h volume from the simple-price API."""

    def __init__(self, config: CoinGeckoConfig, clock: Clock = utc_now) -> None:
        self.base_url = config.base_url
        self.timeout = config.timeout
        self.api_key = config.api_key
        self.coin_ids = {k.upper(): v for k, v in config.coin_ids.items()}
        self._clock = clock

    def coin_id(self, symbol: str) -> str:
        return self.coin_ids.get(symbol.upper(), symbol.lower())

    async def fetch_quote(self, symbol: str) -> PriceData:
        coin_id = self.coin_id(symbol)
        params = {
            "ids": coin_id,
            "vs_currencies": "usd",
            "include_24hr_change": "true",
            "include_24hr_vol": "true",
        }
        headers = {"x-cg-demo-api-key": self.api_key} if self.api_key else {}

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.get(
                self.base_url,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    raise PriceFeedError(
                        f"CoinGecko request for {symbol} failed: HTTP {response.status}"
                    )
                data = await response.json()

        coin_data = data.get(coin_id)
        if not coin_data or coin_data.get("usd") is None:
            raise PriceFeedError(f"CoinGecko returned no data for {symbol}")

        return PriceData(
            symbol=symbol.upper(),
            price=float(coin_data["usd"]),
            change_24h=float(coin_data.get("usd_24h_change") or 0.0),
            volume_24h=float(coin_data.get("usd_24h_vol") or 0.0),
            last_updated=self._clock(),
            source="coingecko",
        )
