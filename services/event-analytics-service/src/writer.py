"""
Beacon Event Analytics Service - Event Store Writer.

Appends a normalized batch through a prepared batch insert. A record that cannot be
appended is logged and skipped; the remaining records are committed as one unit.
Commit failure fails the whole batch and the caller is expected to resend it.
"""
from __future__ import annotations

from typing import Sequence

import structlog

from beacon_common.exceptions import PartialRecordError
from models import EventRecord, WriteResult
from repository import EventStore, run_with_deadline

logger = structlog.get_logger(__name__)


class EventWriter:
    """Writes event batches to the store under the ingestion deadline."""

    def __init__(self, store: EventStore, deadline_seconds: float) -> None:
        self._store = store
        self._deadline_seconds = deadline_seconds

    async def write(self, records: Sequence[EventRecord]) -> WriteResult:
        if not records:
            return WriteResult()
        result = await run_with_deadline(self._append(records), "ingest", self._deadline_seconds)
        logger.info(
            "events_written",
            submitted=result.submitted,
            written=result.written,
            skipped=result.skipped,
        )
        return result

    async def _append(self, records: Sequence[EventRecord]) -> WriteResult:
        batch = await self._store.prepare_batch()
        skipped: list[str] = []
        for record in records:
            try:
                batch.append(record)
            except PartialRecordError as e:
                skipped.append(e.event_id)
        written = await batch.commit()
        return WriteResult(submitted=len(records), written=written, skipped_ids=skipped)
