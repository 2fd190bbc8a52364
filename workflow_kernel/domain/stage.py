"""
Stage model (``workflow_kernel.domain.stage``).

Responsibility
--------------
Pure value objects for the sequential workflow: the stage lifecycle
state machine, the per-stage record, the envelope-scoped aggregate, the
builder input (``RequiredDocument``), payment results and transition
history records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or ``selectors/``.

Invariants enforced
-------------------
* SW-1: Lifecycle state machine -- ``STAGE_TRANSITIONS`` defines the only
  valid stage status changes.  ``completed`` and ``rejected`` have no
  outgoing edges.
* SW-2: Contiguous numbering -- stage numbers are exactly ``1..N``.
* SW-3: Single active stage -- at most one stage is in an
  ``ACTIVE_STAGE_STATUSES`` state.
* SW-4: Terminal rejection -- once a stage is rejected every higher stage
  is ``blocked`` forever and the workflow is ``rejected``.

SW-2..SW-4 are checked by ``workflow_kernel.domain.invariants``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from workflow_kernel.domain.values import EntityId, Money


# =========================================================================
# Stage Status Lifecycle (SW-1)
# =========================================================================


class StageStatus(str, Enum):
    """Stage lifecycle states."""

    BLOCKED = "blocked"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAYMENT_REQUIRED = "payment_required"
    PAYMENT_COMPLETED = "payment_completed"
    COMPLETED = "completed"
    REJECTED = "rejected"


STAGE_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.BLOCKED: frozenset({
        StageStatus.PENDING,
        StageStatus.PAYMENT_REQUIRED,
    }),
    StageStatus.PENDING: frozenset({
        StageStatus.IN_PROGRESS,
        StageStatus.COMPLETED,
        StageStatus.REJECTED,
    }),
    StageStatus.PAYMENT_REQUIRED: frozenset({
        StageStatus.PAYMENT_COMPLETED,
    }),
    StageStatus.PAYMENT_COMPLETED: frozenset({
        StageStatus.IN_PROGRESS,
        StageStatus.COMPLETED,
        StageStatus.REJECTED,
    }),
    StageStatus.IN_PROGRESS: frozenset({
        StageStatus.COMPLETED,
        StageStatus.REJECTED,
    }),
    StageStatus.COMPLETED: frozenset(),
    StageStatus.REJECTED: frozenset(),
}

TERMINAL_STAGE_STATUSES: frozenset[StageStatus] = frozenset({
    StageStatus.COMPLETED,
    StageStatus.REJECTED,
})

# A stage in one of these states is the workflow's "active" stage.
ACTIVE_STAGE_STATUSES: frozenset[StageStatus] = frozenset({
    StageStatus.IN_PROGRESS,
    StageStatus.PAYMENT_REQUIRED,
    StageStatus.PAYMENT_COMPLETED,
})

# States from which the owning entity may approve or reject.
DECIDABLE_STAGE_STATUSES: frozenset[StageStatus] = frozenset({
    StageStatus.PENDING,
    StageStatus.IN_PROGRESS,
    StageStatus.PAYMENT_COMPLETED,
})


def is_allowed_transition(from_status: StageStatus, to_status: StageStatus) -> bool:
    return to_status in STAGE_TRANSITIONS.get(from_status, frozenset())


class PaymentStatus(str, Enum):
    """Payment state of a fee-bearing stage."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    """Envelope-level workflow status."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.REJECTED,
})


class TransitionEvent(str, Enum):
    """Events recorded in the stage transition history."""

    START = "start"
    BEGIN_REVIEW = "begin_review"
    PAYMENT = "payment"
    PAYMENT_FAILED = "payment_failed"
    COMPLETE = "complete"
    REJECT = "reject"
    UNBLOCK = "unblock"


# =========================================================================
# Builder Input
# =========================================================================


@dataclass(frozen=True)
class RequiredDocument:
    """A document the envelope must carry, owned by one legal entity.

    Produced by the document catalog; immutable input to the builder.
    ``fee`` is None (or zero) when the entity charges nothing.
    """

    id: str
    name: str
    legal_entity_id: EntityId
    legal_entity_name: str
    is_required: bool = True
    fee: Money | None = None
    description: str = ""

    @property
    def has_fee(self) -> bool:
        return self.fee is not None and self.fee.is_positive


# =========================================================================
# Stage and Aggregate
# =========================================================================


@dataclass(frozen=True)
class WorkflowStage:
    """One legal entity's review step for one required document.

    ``can_start`` is derived (stage 1, or predecessor completed) and is
    recomputed by the transition functions after every change; it is never
    set independently.
    """

    stage_number: int
    document_id: str
    legal_entity_id: EntityId
    legal_entity_name: str
    status: StageStatus
    is_current: bool = False
    can_start: bool = False
    payment_required: bool = False
    payment_amount: Money | None = None
    payment_status: PaymentStatus | None = None
    payment_reference: str | None = None
    rejection_reason: str | None = None
    assigned_at: datetime | None = None
    completed_at: datetime | None = None
    rejected_at: datetime | None = None
    payment_completed_at: datetime | None = None
    completed_by: UUID | None = None
    rejected_by: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SequentialWorkflowData:
    """Envelope-scoped workflow aggregate.

    Created once by the builder, persisted by ``start_workflow`` and then
    mutated only by the transition functions.  ``version`` is the
    persistence row version used for optimistic concurrency; it is 0 for
    an aggregate that has never been saved.
    """

    envelope_id: UUID
    acid_number: str
    current_stage: int
    workflow_status: WorkflowStatus
    stages: tuple[WorkflowStage, ...]
    submitter_id: UUID | None = None
    version: int = 0
    started_at: datetime | None = None

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    def stage(self, stage_number: int) -> WorkflowStage | None:
        if 1 <= stage_number <= len(self.stages):
            return self.stages[stage_number - 1]
        return None

    @property
    def current(self) -> WorkflowStage | None:
        """The stage flagged ``is_current``, if any."""
        for stage in self.stages:
            if stage.is_current:
                return stage
        return None

    @property
    def assigned_entity_id(self) -> EntityId | None:
        """Legal entity currently holding the envelope."""
        if self.workflow_status != WorkflowStatus.IN_PROGRESS:
            return None
        current = self.current
        return current.legal_entity_id if current else None

    @property
    def can_proceed(self) -> bool:
        return any(s.is_current and s.can_start for s in self.stages) and (
            self.workflow_status not in TERMINAL_WORKFLOW_STATUSES
        )

    @property
    def is_terminal(self) -> bool:
        return self.workflow_status in TERMINAL_WORKFLOW_STATUSES


# =========================================================================
# Payment Result
# =========================================================================


@dataclass(frozen=True)
class PaymentResult:
    """Final outcome reported by the payment provider for one stage charge.

    The engine never talks to a payment network; it only records this.
    ``payment_reference`` is the provider's charge identifier and is the
    idempotency key for duplicate deliveries.
    """

    payment_reference: str
    succeeded: bool
    amount: Money
    payer_id: UUID | None = None
    failure_reason: str = ""


# =========================================================================
# Transition History
# =========================================================================


@dataclass(frozen=True)
class StageTransition:
    """Record of one stage status change. Immutable, append-only."""

    envelope_id: UUID
    stage_number: int
    event: TransitionEvent
    from_status: StageStatus | None
    to_status: StageStatus
    occurred_at: datetime
    actor_id: UUID | None = None
    reason: str | None = None
