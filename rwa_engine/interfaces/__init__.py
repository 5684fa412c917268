"""Protocol interfaces for the valuation engine."""
from .price_oracle import CommodityFeed, CryptoFeed
from .store import Filter, Order, RowStore

__all__ = ["CommodityFeed", "CryptoFeed", "Filter", "Order", "RowStore"]
