"""Historical value snapshots used for 24h change figures."""
from __future__ import annotations

import logging
from datetime import datetime

from ..clock import Clock, utc_now
from ..interfaces.store import Order, RowStore, eq, lte
from ..models import TABLE_VALUE_SNAPSHOTS
from ..pricing import to_float

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Append-only (entity_type, entity_id, recorded_at) → value history."""

    def __init__(self, store: RowStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def record(self, entity_type: str, entity_id: str, value: float) -> bool:
        try:
            await self._store.insert(
                TABLE_VALUE_SNAPSHOTS,
                {
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "value": value,
                    "recorded_at": self._clock().isoformat(),
                },
            )
        except Exception as e:
            logger.warning(
                "Failed to record %s snapshot for %s: %s", entity_type, entity_id, e
            )
            return False
        return True

    async def value_at(
        self, entity_type: str, entity_id: str, at: datetime
    ) -> float | None:
        """Latest recorded value at or before ``at``, or None without history."""
        row = await self._store.select(
            TABLE_VALUE_SNAPSHOTS,
            [
                eq("entity_type", entity_type),
                eq("entity_id", str(entity_id)),
                lte("recorded_at", at.isoformat()),
            ],
            order=Order("recorded_at", descending=True),
            limit=1,
        )
        if not row:
            return None
        return to_float(row[0].get("value"), default=0.0)
