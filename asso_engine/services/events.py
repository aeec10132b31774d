# SPDX-License-Identifier: Apache-2.0

"""
Event publishing to the caller-supplied sink.

The engine only signals side effects; delivery (reminders, ledger writes,
repayment schedules) belongs to whoever owns the sink. A failing sink never
undoes a successful command, so failures are logged, recorded on the span and
reported back in the PublishResult instead of being raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ..models.entities import DomainEvent


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


EventSink = Callable[[DomainEvent], None]


@dataclass
class PublishResult:
    """Result of publishing a batch of events."""
    success: bool
    published: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    error: Optional[str] = None


class EventPublisher:
    """Hands domain events to an event sink one at a time, in order."""

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink

    def publish(self, event: DomainEvent) -> PublishResult:
        """
        Publish one event.

        Args:
            event: Domain event to deliver

        Returns:
            PublishResult: Result of the publishing operation
        """
        with tracer.start_as_current_span("events.publish") as span:
            span.set_attributes({
                "event.id": event.id,
                "event.type": event.type.value,
                "event.association_id": event.association_id,
                "event.aggregate_id": event.aggregate_id
            })

            if self.sink is None:
                logger.debug(
                    "No event sink configured, dropping event",
                    extra={"extra_fields": {"event_id": event.id, "event_type": event.type.value}}
                )
                return PublishResult(success=True)

            try:
                self.sink(event)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))

                logger.error(
                    "Failed to publish domain event",
                    extra={
                        "extra_fields": {
                            "event_id": event.id,
                            "event_type": event.type.value,
                            "aggregate_id": event.aggregate_id,
                            "error": str(e)
                        }
                    },
                    exc_info=True
                )
                return PublishResult(success=False, failed=[event.id], error=str(e))

            logger.info(
                "Domain event published",
                extra={
                    "extra_fields": {
                        "event_id": event.id,
                        "event_type": event.type.value,
                        "aggregate_id": event.aggregate_id
                    }
                }
            )
            return PublishResult(success=True, published=[event.id])

    def publish_all(self, events: Iterable[DomainEvent]) -> PublishResult:
        """Publish events in order; a failure does not stop the rest of the batch."""
        result = PublishResult(success=True)
        for event in events:
            outcome = self.publish(event)
            result.published.extend(outcome.published)
            result.failed.extend(outcome.failed)
            if not outcome.success:
                result.success = False
                result.error = result.error or outcome.error
        return result
