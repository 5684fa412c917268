"""Read models — engine results reshaped for dashboard, portfolio, pool and market views."""
from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Iterable

from ..clock import Clock, utc_now
from ..errors import NotFoundError
from ..interfaces.store import RowStore, eq, in_
from ..models import (
    ASSET_STATUS_APPROVED,
    LISTING_STATUS_ACTIVE,
    SNAPSHOT_TOKEN,
    TABLE_LIQUIDITY_POOLS,
    TABLE_MARKETPLACE_LISTINGS,
    TABLE_TOKENS,
    TABLE_TRANSACTIONS,
    TABLE_USER_ASSETS,
    TX_SETTLED_STATUSES,
    TX_TYPE_BUY,
)
from ..pricing import percentage_change, to_float
from .calculation_engine import CalculationEngine
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)


class ReadModels:
    """Thin shaping layer over the calculation engine for UI consumers."""

    def __init__(
        self,
        engine: CalculationEngine,
        store: RowStore,
        snapshots: SnapshotStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._engine = engine
        self._store = store
        self._snapshots = snapshots
        self._clock = clock

    async def _token_change_24h(self, token_id: str, price: float) -> float:
        if self._snapshots is None:
            return 0.0
        try:
            previous = await self._snapshots.value_at(
                SNAPSHOT_TOKEN, token_id, self._clock() - timedelta(hours=24)
            )
        except Exception as e:
            logger.warning("Snapshot lookup for token %s failed: %s", token_id, e)
            return 0.0
        return percentage_change(price, previous)

    async def dashboard_stats(self, user_id: str) -> dict[str, Any]:
        portfolio = await self._engine.calculate_portfolio_value(user_id)

        pledged = await self._store.select(
            TABLE_USER_ASSETS, [eq("user_id", user_id)], columns="id,status"
        )
        buys = await self._store.select(
            TABLE_TRANSACTIONS,
            [
                eq("user_id", user_id),
                eq("type", TX_TYPE_BUY),
                in_("status", TX_SETTLED_STATUSES),
            ],
            columns="token_id,total_value",
        )

        return {
            "total_value": portfolio.total_value,
            "change_24h": portfolio.change_24h,
            "change_amount": portfolio.change_amount,
            "active_assets": sum(
                1 for a in pledged if a.get("status") == ASSET_STATUS_APPROVED
            ),
            "total_pledged": len(pledged),
            "portfolio_tokens": len({tx.get("token_id") for tx in buys if tx.get("token_id")}),
            "total_invested": sum(to_float(tx.get("total_value")) for tx in buys),
            "degraded": portfolio.degraded,
        }

    async def portfolio_breakdown(self, user_id: str) -> list[dict[str, Any]]:
        portfolio = await self._engine.calculate_portfolio_value(user_id)
        return [asdict(item) for item in portfolio.asset_breakdown]

    async def liquidity_pools(self, user_id: str | None = None) -> list[dict[str, Any]]:
        """Active pools with fresh metrics and the caller's share attached."""
        pools = await self._store.select(TABLE_LIQUIDITY_POOLS, [eq("is_active", True)])

        shaped: list[dict[str, Any]] = []
        for pool in pools:
            try:
                metrics = await self._engine.calculate_liquidity_metrics(pool["id"], user_id)
            except NotFoundError:
                logger.warning("Pool %s disappeared while listing pools", pool["id"])
                continue
            shaped.append(
                {
                    **pool,
                    "total_liquidity": metrics.total_liquidity,
                    "apr": metrics.apr,
                    "volume_24h": metrics.volume_24h,
                    "fees_24h": metrics.fees_24h,
                    "user_liquidity": metrics.user_liquidity,
                    "user_fees_24h": metrics.user_fees_24h,
                    "degraded": metrics.degraded,
                }
            )
        return shaped

    async def marketplace_listings(self) -> list[dict[str, Any]]:
        """Active listings annotated with live price, 24h change, NAV and liquidity."""
        listings = await self._store.select(
            TABLE_MARKETPLACE_LISTINGS, [eq("status", LISTING_STATUS_ACTIVE)]
        )
        token_ids = sorted({listing["token_id"] for listing in listings if listing.get("token_id")})
        tokens: dict[str, dict[str, Any]] = {}
        if token_ids:
            rows = await self._store.select(TABLE_TOKENS, [in_("id", token_ids)])
            tokens = {row["id"]: row for row in rows}

        prices: dict[str, float] = {}
        changes: dict[str, float] = {}
        for token_id in token_ids:
            prices[token_id] = await self._engine.calculate_market_price(token_id)
            changes[token_id] = await self._token_change_24h(token_id, prices[token_id])

        shaped: list[dict[str, Any]] = []
        for listing in listings:
            token_id = listing.get("token_id")
            token = tokens.get(token_id, {})
            current_price = prices.get(token_id, to_float(listing.get("price_per_token")))
            shaped.append(
                {
                    **listing,
                    "token": token or None,
                    "current_price": current_price,
                    "change_24h": changes.get(token_id, 0.0),
                    "nav": current_price * to_float(token.get("total_supply")),
                    "liquidity": current_price * to_float(listing.get("amount")),
                }
            )
        return shaped

    async def token_prices(self, token_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        result: dict[str, dict[str, Any]] = {}
        for token_id in token_ids:
            price = await self._engine.calculate_market_price(token_id)
            result[token_id] = {
                "price": price,
                "change_24h": await self._token_change_24h(token_id, price),
                "last_updated": self._clock().isoformat(),
            }
        return result
