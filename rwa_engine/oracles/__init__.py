"""Price oracle and external quote feeds."""
from .coingecko import CoinGeckoFeed
from .price_oracle import PriceOracle
from .pyth import PythOracle

__all__ = ["CoinGeckoFeed", "PriceOracle", "PythOracle"]
