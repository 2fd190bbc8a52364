"""
Status projector (``workflow_kernel.domain.projector``).

Responsibility
--------------
Derives every envelope-level aggregate -- display status, progress,
counts, fee totals, routing status -- from the stage list alone.  Nothing
computed here is stored; dashboards call ``project_workflow`` on each
read so the numbers cannot drift from the stages.

Display status precedence
-------------------------
``rejected > completed > in_progress / payment_required > not_started``

A workflow counts as started once any stage has been assigned to its
entity (``assigned_at`` set) or completed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from workflow_kernel.domain.stage import (
    PaymentStatus,
    StageStatus,
    WorkflowStage,
    WorkflowStatus,
)
from workflow_kernel.domain.values import Money


class DisplayStatus(str, Enum):
    """Envelope status as shown to users."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAYMENT_REQUIRED = "payment_required"
    COMPLETED = "completed"
    REJECTED = "rejected"


class EnvelopeRoutingStatus(str, Enum):
    """Where the envelope sits from the submitter's point of view."""

    DRAFT = "draft"
    SENT = "sent"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class WorkflowProjection:
    """Read-only aggregates computed from a stage list."""

    completed_count: int
    total_count: int
    progress_percent: float
    display_status: DisplayStatus
    routing_status: EnvelopeRoutingStatus
    current_stage_number: int | None
    can_proceed: bool
    total_fees: Money
    paid_fees: Money
    outstanding_fees: Money

    @property
    def workflow_status(self) -> WorkflowStatus:
        return DISPLAY_TO_WORKFLOW_STATUS[self.display_status]


DISPLAY_TO_WORKFLOW_STATUS: dict[DisplayStatus, WorkflowStatus] = {
    DisplayStatus.NOT_STARTED: WorkflowStatus.NOT_STARTED,
    DisplayStatus.IN_PROGRESS: WorkflowStatus.IN_PROGRESS,
    DisplayStatus.PAYMENT_REQUIRED: WorkflowStatus.IN_PROGRESS,
    DisplayStatus.COMPLETED: WorkflowStatus.COMPLETED,
    DisplayStatus.REJECTED: WorkflowStatus.REJECTED,
}


def _display_status(stages: Sequence[WorkflowStage]) -> DisplayStatus:
    if any(s.status == StageStatus.REJECTED for s in stages):
        return DisplayStatus.REJECTED
    if stages and all(s.status == StageStatus.COMPLETED for s in stages):
        return DisplayStatus.COMPLETED
    started = any(
        s.assigned_at is not None or s.status == StageStatus.COMPLETED
        for s in stages
    )
    if not started:
        return DisplayStatus.NOT_STARTED
    current = next((s for s in stages if s.is_current), None)
    if current is not None and current.status == StageStatus.PAYMENT_REQUIRED:
        return DisplayStatus.PAYMENT_REQUIRED
    return DisplayStatus.IN_PROGRESS


def _routing_status(
    display: DisplayStatus, completed_count: int
) -> EnvelopeRoutingStatus:
    if display == DisplayStatus.REJECTED:
        return EnvelopeRoutingStatus.REJECTED
    if display == DisplayStatus.COMPLETED:
        return EnvelopeRoutingStatus.APPROVED
    if display == DisplayStatus.NOT_STARTED:
        return EnvelopeRoutingStatus.DRAFT
    if completed_count == 0:
        return EnvelopeRoutingStatus.SENT
    return EnvelopeRoutingStatus.PENDING_REVIEW


def expected_workflow_status(stages: Sequence[WorkflowStage]) -> WorkflowStatus:
    """Workflow status implied by the stages."""
    return DISPLAY_TO_WORKFLOW_STATUS[_display_status(stages)]


def project_workflow(
    stages: Sequence[WorkflowStage],
    currency: str = "USD",
) -> WorkflowProjection:
    """Compute the projection for a stage list.

    Fee totals are in the stages' fee currency, which the builder keeps
    single; ``currency`` is used only when no stage carries a fee.
    """
    total_count = len(stages)
    completed_count = sum(1 for s in stages if s.status == StageStatus.COMPLETED)
    progress = (completed_count / total_count * 100) if total_count else 0.0
    display = _display_status(stages)

    fee_stages = [s for s in stages if s.payment_amount is not None]
    fee_currency = fee_stages[0].payment_amount.currency if fee_stages else currency
    total_fees = Money.zero(fee_currency)
    paid_fees = Money.zero(fee_currency)
    for s in fee_stages:
        total_fees = total_fees + s.payment_amount
        if s.payment_status == PaymentStatus.COMPLETED:
            paid_fees = paid_fees + s.payment_amount

    current = next((s for s in stages if s.is_current), None)
    terminal = display in (DisplayStatus.COMPLETED, DisplayStatus.REJECTED)

    return WorkflowProjection(
        completed_count=completed_count,
        total_count=total_count,
        progress_percent=progress,
        display_status=display,
        routing_status=_routing_status(display, completed_count),
        current_stage_number=current.stage_number if current else None,
        can_proceed=(
            not terminal and current is not None and current.can_start
        ),
        total_fees=total_fees,
        paid_fees=paid_fees,
        outstanding_fees=Money(
            total_fees.amount_minor - paid_fees.amount_minor, fee_currency
        ),
    )
