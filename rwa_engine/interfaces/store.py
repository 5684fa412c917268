"""Row store protocol — relational table access used by the engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

FILTER_OPS = ("eq", "gte", "lte", "in")


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op '{self.op}'")


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


class RowStore(Protocol):
    """Abstract interface for reading and updating table rows."""

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: str = "*",
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def select_one(
        self, table: str, filters: Sequence[Filter]
    ) -> dict[str, Any] | None: ...

    async def update(
        self, table: str, values: dict[str, Any], filters: Sequence[Filter]
    ) -> None: ...

    async def insert(self, table: str, row: dict[str, Any]) -> None: ...
