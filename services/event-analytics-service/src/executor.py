"""
Beacon Event Analytics Service - Aggregation Executor.

Runs a QueryPlan against the event store under the query deadline and returns the
fully read result rows as dicts keyed by the plan's column names. No partial result is ever
returned: a store failure or an expired deadline raises.
"""
from __future__ import annotations

from typing import Any, AsyncIterator

import structlog

from queries import QueryPlan
from repository import EventStore, run_with_deadline

logger = structlog.get_logger(__name__)

Row = dict[str, Any]


class AggregationExecutor:
    """Executes aggregation plans."""

    def __init__(self, store: EventStore, deadline_seconds: float) -> None:
        self._store = store
        self._deadline_seconds = deadline_seconds

    async def stream(self, plan: QueryPlan) -> AsyncIterator[Row]:
        """Yield result rows in store order.

        The store drains its row stream before anything is yielded, so a failure or
        an expired deadline surfaces before the first row and never mid-sequence.
        """
        rows = await run_with_deadline(
            self._store.fetch_rows(plan, max_execution_time=self._deadline_seconds),
            f"query:{plan.metric.value}",
            self._deadline_seconds,
        )
        logger.debug("aggregation_rows_fetched", metric=plan.metric.value, rows=len(rows))
        columns = plan.columns
        for row in rows:
            yield dict(zip(columns, row))

    async def fetch_all(self, plan: QueryPlan) -> list[Row]:
        """Collect every row; an empty result is an empty list."""
        return [row async for row in self.stream(plan)]

    async def fetch_scalar(self, plan: QueryPlan) -> Any:
        """First value of the first row, or 0 when the store returned nothing."""
        rows = await self.fetch_all(plan)
        return rows[0].get("value", 0) if rows else 0
