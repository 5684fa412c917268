"""Supabase (PostgREST) row store client."""
from __future__ import annotations

import logging
import ssl
from datetime import datetime
from typing import Any, Sequence

import aiohttp
import certifi

from ..config import StoreConfig
from ..errors import StoreError
from ..interfaces.store import Filter, Order

logger = logging.getLogger(__name__)


def _format_value(value: Any) -> str:
    """Render a filter operand the way PostgREST expects it in a query string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _format_in_list(values: Sequence[Any]) -> str:
    items = []
    for value in values:
        text = _format_value(value)
        if any(ch in text for ch in ',()"'):
            text = '"' + text.replace('"', '\\"') + '"'
        items.append(text)
    return "(" + ",".join(items) + ")"


def build_query_params(
    filters: Sequence[Filter] = (),
    columns: str | None = None,
    order: Order | None = None,
    limit: int | None = None,
) -> list[tuple[str, str]]:
    """Translate filters, ordering and limit into PostgREST query parameters.

    Examples:
        eq("user_id", "u1")            → ("user_id", "eq.u1")
        in_("token_id", ["a", "b"])    → ("token_id", "in.(a,b)")
        Order("created_at", True)      → ("order", "created_at.desc")
    """
    params: list[tuple[str, str]] = []
    if columns:
        params.append(("select", columns))
    for f in filters:
        if f.op == "in":
            params.append((f.column, f"in.{_format_in_list(f.value)}"))
        else:
            params.append((f.column, f"{f.op}.{_format_value(f.value)}"))
    if order is not None:
        direction = "desc" if order.descending else "asc"
        params.append(("order", f"{order.column}.{direction}"))
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


class SupabaseStore:
    """Table access through the Supabase REST API using the service key."""

    def __init__(self, config: StoreConfig) -> None:
        self.base_url = f"{config.supabase_url}/rest/v1"
        self.timeout = config.timeout
        self._headers = {
            "apikey": config.supabase_key,
            "Authorization": f"Bearer {config.supabase_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]],
        json_body: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> Any:
        """Issue one REST call; raise StoreError on transport or HTTP failure."""
        url = f"{self.base_url}/{table}"
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status >= 300:
                        body = await response.text()
                        raise StoreError(
                            f"{method} {table} failed: HTTP {response.status} {body}",
                            status=response.status,
                        )
                    if response.status == 204:
                        return None
                    return await response.json()
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"{method} {table} failed: {e}") from e

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: str = "*",
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = build_query_params(filters, columns, order, limit)
        rows = await self._request("GET", table, params)
        logger.debug("Selected %d rows from %s", len(rows or []), table)
        return list(rows or [])

    async def select_one(
        self, table: str, filters: Sequence[Filter]
    ) -> dict[str, Any] | None:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def update(
        self, table: str, values: dict[str, Any], filters: Sequence[Filter]
    ) -> None:
        if not filters:
            raise StoreError(f"Refusing unfiltered update on {table}")
        params = build_query_params(filters)
        await self._request(
            "PATCH", table, params, json_body=values, prefer="return=minimal"
        )

    async def insert(self, table: str, row: dict[str, Any]) -> None:
        await self._request("POST", table, [], json_body=row, prefer="return=minimal")
