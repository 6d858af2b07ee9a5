"""
Beacon Event Analytics Service - Event Normalizer.

Validates an incoming batch and assigns server-owned fields: a fresh id per record,
the transport-observed origin address, the authenticated actor and one receive
timestamp for the whole batch.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Sequence
from uuid import UUID, uuid4

import pydantic
import structlog

from beacon_common.exceptions import BatchValidationError
from beacon_security.middleware import ActorIdentity
from models import EventRecord, EventSubmission, to_store_precision

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventNormalizer:
    """Turns raw submissions into storable EventRecords."""

    def __init__(
        self,
        clock: Clock | None = None,
        id_factory: Callable[[], UUID] = uuid4,
        max_batch_size: int | None = None,
    ) -> None:
        self._clock = clock or utc_now
        self._id_factory = id_factory
        self._max_batch_size = max_batch_size

    def parse(self, payload: Any) -> list[EventSubmission]:
        """Validate that payload is a sequence of well-formed submissions."""
        if isinstance(payload, (str, bytes, dict)) or not isinstance(payload, Sequence):
            raise BatchValidationError("batch must be an array of event objects")
        if self._max_batch_size is not None and len(payload) > self._max_batch_size:
            raise BatchValidationError(
                f"batch of {len(payload)} events exceeds limit of {self._max_batch_size}",
                details={"max_batch_size": self._max_batch_size},
            )
        submissions: list[EventSubmission] = []
        for index, item in enumerate(payload):
            if isinstance(item, EventSubmission):
                submissions.append(item)
                continue
            if not isinstance(item, dict):
                raise BatchValidationError(f"event at index {index} is not an object", index=index)
            try:
                submissions.append(EventSubmission.model_validate(item))
            except pydantic.ValidationError as e:
                raise BatchValidationError(
                    f"event at index {index} is malformed", index=index, cause=e,
                    details={"errors": e.errors(include_url=False, include_context=False)},
                ) from e
        return submissions

    def normalize(
        self,
        payload: Any,
        client_address: str,
        actor: ActorIdentity | None = None,
    ) -> list[EventRecord]:
        """Validate and stamp a batch. An empty batch yields an empty list."""
        submissions = self.parse(payload)
        if not submissions:
            logger.debug("empty_batch_received", client_address=client_address)
            return []

        received_at = to_store_precision(self._clock())
        records = [
            EventRecord(
                event_id=self._id_factory(),
                event_type=s.event_type,
                user_id=actor.actor_id if actor is not None else s.user_id,
                session_id=s.session_id,
                timestamp=received_at,
                page_path=s.page_path,
                referrer=s.referrer,
                user_agent=s.user_agent,
                ip_address=client_address,
                duration_ms=s.duration_ms,
                products=s.products,
                location=s.location,
                event_data=s.event_data,
            )
            for s in submissions
        ]
        logger.debug(
            "batch_normalized",
            count=len(records),
            received_at=received_at.isoformat(),
            actor_stamped=actor is not None,
        )
        return records
