"""
Workflow change notifications.

After every committed mutation the engine publishes one
``WorkflowChanged`` event; dashboards, inboxes and e-mail senders
subscribe instead of polling the envelope.  Delivery is in-process and
synchronous, in subscription order.  A subscriber that raises is logged
with its traceback and does not prevent delivery to the others: the
mutation it reports is already committed.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from workflow_kernel.domain.stage import TransitionEvent, WorkflowStatus
from workflow_kernel.logging_config import get_logger

logger = get_logger("domain.events")


class WorkflowEventType(str, Enum):
    """Kinds of workflow change."""

    WORKFLOW_STARTED = "workflow_started"
    STAGE_REVIEW_STARTED = "stage_review_started"
    STAGE_PAYMENT_RECORDED = "stage_payment_recorded"
    STAGE_PAYMENT_FAILED = "stage_payment_failed"
    STAGE_COMPLETED = "stage_completed"
    STAGE_REJECTED = "stage_rejected"
    WORKFLOW_COMPLETED = "workflow_completed"


EVENT_TYPE_BY_TRANSITION: dict[TransitionEvent, WorkflowEventType] = {
    TransitionEvent.START: WorkflowEventType.WORKFLOW_STARTED,
    TransitionEvent.BEGIN_REVIEW: WorkflowEventType.STAGE_REVIEW_STARTED,
    TransitionEvent.PAYMENT: WorkflowEventType.STAGE_PAYMENT_RECORDED,
    TransitionEvent.PAYMENT_FAILED: WorkflowEventType.STAGE_PAYMENT_FAILED,
    TransitionEvent.COMPLETE: WorkflowEventType.STAGE_COMPLETED,
    TransitionEvent.REJECT: WorkflowEventType.STAGE_REJECTED,
}


@dataclass(frozen=True)
class WorkflowChanged:
    """Notification that an envelope's workflow was mutated."""

    event_type: WorkflowEventType
    envelope_id: UUID
    stage_number: int
    workflow_status: WorkflowStatus
    current_stage: int
    version: int
    occurred_at: datetime
    actor_id: UUID | None = None


WorkflowSubscriber = Callable[[WorkflowChanged], None]


class WorkflowEventBus:
    """Synchronous in-process publish/subscribe for workflow changes."""

    def __init__(self) -> None:
        self._subscribers: list[WorkflowSubscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: WorkflowSubscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, event: WorkflowChanged) -> int:
        """Deliver to every subscriber; returns the number that succeeded."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber(event)
                delivered += 1
            except Exception:
                logger.error(
                    "workflow_subscriber_failed",
                    exc_info=True,
                    extra={
                        "event_type": event.event_type.value,
                        "envelope_id": str(event.envelope_id),
                        "subscriber": getattr(subscriber, "__qualname__", repr(subscriber)),
                    },
                )
        return delivered
