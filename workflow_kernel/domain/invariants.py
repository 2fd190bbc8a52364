"""
Structural invariants of a workflow aggregate.

``verify_workflow`` re-derives everything the transition functions are
supposed to maintain and reports each violation as a message.  The
engine runs ``assert_workflow_valid`` before every save, so a corrupt
aggregate is never persisted.
"""

from __future__ import annotations

from enum import Enum, unique

from workflow_kernel.domain.projector import expected_workflow_status
from workflow_kernel.domain.stage import (
    ACTIVE_STAGE_STATUSES,
    SequentialWorkflowData,
    StageStatus,
    WorkflowStatus,
)
from workflow_kernel.exceptions import WorkflowInvariantError


@unique
class WorkflowInvariant(str, Enum):
    """Invariants every persisted aggregate satisfies."""

    CONTIGUOUS_NUMBERING = "contiguous_numbering"
    """Stage numbers are exactly 1..N in order."""

    SINGLE_CURRENT = "single_current"
    """At most one stage is current; exactly one while active or rejected,
    and it is the stage named by ``current_stage``."""

    SINGLE_ACTIVE = "single_active"
    """At most one stage is in_progress / payment_required / payment_completed."""

    ORDERED_PROGRESS = "ordered_progress"
    """Stages before the current one are completed, stages after it blocked."""

    TERMINAL_REJECTION = "terminal_rejection"
    """A rejected stage implies a rejected workflow and blocked successors."""

    FIELD_CONSISTENCY = "field_consistency"
    """Reason/timestamp/payment fields appear only in their matching states."""

    SINGLE_FEE_CURRENCY = "single_fee_currency"
    """All stage fees are in one currency, so fee totals can be summed."""

    STATUS_AGREEMENT = "status_agreement"
    """``workflow_status`` equals the status derived from the stages."""


def verify_workflow(data: SequentialWorkflowData) -> list[str]:
    """Return a list of violation messages (empty when valid)."""
    violations: list[str] = []
    stages = data.stages

    def fail(inv: WorkflowInvariant, message: str) -> None:
        violations.append(f"{inv.value}: {message}")

    numbers = [s.stage_number for s in stages]
    if numbers != list(range(1, len(stages) + 1)):
        fail(WorkflowInvariant.CONTIGUOUS_NUMBERING, f"got {numbers}")
        return violations

    current = [s.stage_number for s in stages if s.is_current]
    if len(current) > 1:
        fail(WorkflowInvariant.SINGLE_CURRENT, f"stages {current} are all current")
    if data.workflow_status == WorkflowStatus.COMPLETED:
        if current:
            fail(WorkflowInvariant.SINGLE_CURRENT, "completed workflow has a current stage")
    elif current != [data.current_stage]:
        fail(
            WorkflowInvariant.SINGLE_CURRENT,
            f"current_stage={data.current_stage} but flagged {current}",
        )

    active = [s.stage_number for s in stages if s.status in ACTIVE_STAGE_STATUSES]
    if len(active) > 1:
        fail(WorkflowInvariant.SINGLE_ACTIVE, f"stages {active} are all active")

    if data.workflow_status != WorkflowStatus.COMPLETED:
        for s in stages:
            if s.stage_number < data.current_stage and s.status != StageStatus.COMPLETED:
                fail(
                    WorkflowInvariant.ORDERED_PROGRESS,
                    f"stage {s.stage_number} precedes current but is {s.status.value}",
                )
            if s.stage_number > data.current_stage and s.status != StageStatus.BLOCKED:
                fail(
                    WorkflowInvariant.ORDERED_PROGRESS,
                    f"stage {s.stage_number} follows current but is {s.status.value}",
                )

    rejected = [s.stage_number for s in stages if s.status == StageStatus.REJECTED]
    if rejected:
        if len(rejected) > 1:
            fail(WorkflowInvariant.TERMINAL_REJECTION, f"stages {rejected} all rejected")
        if data.workflow_status != WorkflowStatus.REJECTED:
            fail(WorkflowInvariant.TERMINAL_REJECTION, "rejected stage in non-rejected workflow")

    for s in stages:
        expected_can_start = s.stage_number == 1 or (
            stages[s.stage_number - 2].status == StageStatus.COMPLETED
        )
        if s.can_start != expected_can_start:
            fail(WorkflowInvariant.FIELD_CONSISTENCY, f"stage {s.stage_number} can_start drifted")
        if (s.rejection_reason is not None) != (s.status == StageStatus.REJECTED):
            fail(WorkflowInvariant.FIELD_CONSISTENCY, f"stage {s.stage_number} rejection_reason")
        if s.completed_at is not None and s.status != StageStatus.COMPLETED:
            fail(WorkflowInvariant.FIELD_CONSISTENCY, f"stage {s.stage_number} completed_at")
        if s.payment_required != (s.payment_amount is not None):
            fail(WorkflowInvariant.FIELD_CONSISTENCY, f"stage {s.stage_number} payment_amount")

    currencies = sorted(
        {s.payment_amount.currency for s in stages if s.payment_amount is not None}
    )
    if len(currencies) > 1:
        fail(WorkflowInvariant.SINGLE_FEE_CURRENCY, f"fees in {currencies}")

    derived = expected_workflow_status(stages)
    if derived != data.workflow_status:
        fail(
            WorkflowInvariant.STATUS_AGREEMENT,
            f"stored {data.workflow_status.value}, derived {derived.value}",
        )

    return violations


def assert_workflow_valid(data: SequentialWorkflowData) -> None:
    violations = verify_workflow(data)
    if violations:
        raise WorkflowInvariantError(str(data.envelope_id), violations)
