"""
Stage transitions (``workflow_kernel.domain.transitions``).

Responsibility
--------------
One pure function per workflow event.  Each takes the current aggregate
and returns a ``TransitionOutcome`` holding the new aggregate and the
history records describing what changed -- or raises, in which case the
input aggregate is untouched (all-or-nothing by construction: aggregates
are frozen and a new one is returned only on success).

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  Time arrives as a ``now`` argument,
identity as a resolved ``Actor``.  Persistence, locking and event
publication belong to ``workflow_kernel.services.workflow_service``.

Check order for stage-targeted events
-------------------------------------
1. Terminal workflow (rejected/completed) or not started -> InvalidTransitionError
2. Stage number is not ``current_stage``                 -> StaleStageError
3. Stage status does not allow the event (SW-1)          -> InvalidTransitionError
4. Actor lacks the capability                            -> NotAuthorizedError

Pointer rule
------------
``complete_stage`` is the only function that moves ``current_stage`` or
``is_current``.  Rejection and payment never do.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from workflow_kernel.domain.authorization import can_act_on_stage, can_pay_for_stage
from workflow_kernel.domain.builder import initial_stage_status
from workflow_kernel.domain.stage import (
    DECIDABLE_STAGE_STATUSES,
    PaymentResult,
    PaymentStatus,
    SequentialWorkflowData,
    StageStatus,
    StageTransition,
    TransitionEvent,
    WorkflowStage,
    WorkflowStatus,
    is_allowed_transition,
)
from workflow_kernel.domain.values import Actor
from workflow_kernel.exceptions import (
    InvalidTransitionError,
    NotAuthorizedError,
    PaymentMismatchError,
    StaleStageError,
)


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of applying one event to an aggregate."""

    workflow: SequentialWorkflowData
    event: TransitionEvent
    stage_number: int
    transitions: tuple[StageTransition, ...] = ()
    changed: bool = True


# =========================================================================
# Helpers
# =========================================================================


def _with_derived_flags(stages: list[WorkflowStage]) -> tuple[WorkflowStage, ...]:
    """Recompute ``can_start`` for every stage."""
    result = []
    for i, stage in enumerate(stages):
        can_start = i == 0 or stages[i - 1].status == StageStatus.COMPLETED
        if stage.can_start != can_start:
            stage = replace(stage, can_start=can_start)
        result.append(stage)
    return tuple(result)


def _require_started(
    workflow: SequentialWorkflowData,
    stage_number: int,
    event: TransitionEvent,
) -> None:
    if workflow.workflow_status == WorkflowStatus.IN_PROGRESS:
        return
    stage = workflow.stage(stage_number)
    raise InvalidTransitionError(
        str(workflow.envelope_id),
        stage_number,
        stage.status.value if stage else workflow.workflow_status.value,
        event.value,
        reason=f"workflow is {workflow.workflow_status.value}",
    )


def _require_current(
    workflow: SequentialWorkflowData, stage_number: int
) -> WorkflowStage:
    stage = workflow.stage(stage_number)
    if stage is None or stage_number != workflow.current_stage or not stage.is_current:
        raise StaleStageError(
            str(workflow.envelope_id), stage_number, workflow.current_stage
        )
    return stage


def _require_edge(
    workflow: SequentialWorkflowData,
    stage: WorkflowStage,
    to_status: StageStatus,
    event: TransitionEvent,
    allowed_from: frozenset[StageStatus] | None = None,
) -> None:
    permitted = is_allowed_transition(stage.status, to_status)
    if allowed_from is not None:
        permitted = permitted and stage.status in allowed_from
    if not permitted:
        raise InvalidTransitionError(
            str(workflow.envelope_id),
            stage.stage_number,
            stage.status.value,
            event.value,
        )


def _record(
    workflow: SequentialWorkflowData,
    stage_number: int,
    event: TransitionEvent,
    from_status: StageStatus | None,
    to_status: StageStatus,
    now: datetime,
    actor_id: UUID | None = None,
    reason: str | None = None,
) -> StageTransition:
    return StageTransition(
        envelope_id=workflow.envelope_id,
        stage_number=stage_number,
        event=event,
        from_status=from_status,
        to_status=to_status,
        occurred_at=now,
        actor_id=actor_id,
        reason=reason,
    )


def _replace_stage(
    workflow: SequentialWorkflowData, updated: WorkflowStage
) -> list[WorkflowStage]:
    stages = list(workflow.stages)
    stages[updated.stage_number - 1] = updated
    return stages


# =========================================================================
# Events
# =========================================================================


def start_workflow(
    workflow: SequentialWorkflowData,
    now: datetime,
    submitter_id: UUID | None = None,
) -> TransitionOutcome:
    """Send the envelope to the first legal entity.

    Stage 1 keeps its built status (``pending`` or ``payment_required``)
    and is stamped ``assigned_at``.
    """
    first = workflow.stage(1)
    if workflow.workflow_status != WorkflowStatus.NOT_STARTED or first is None:
        raise InvalidTransitionError(
            str(workflow.envelope_id),
            1,
            workflow.workflow_status.value,
            TransitionEvent.START.value,
            reason="workflow already started",
        )
    if not (first.is_current and first.can_start) or first.status not in (
        StageStatus.PENDING,
        StageStatus.PAYMENT_REQUIRED,
    ):
        raise InvalidTransitionError(
            str(workflow.envelope_id),
            1,
            first.status.value,
            TransitionEvent.START.value,
            reason="first stage is not reachable",
        )

    stages = _replace_stage(workflow, replace(first, assigned_at=now))
    started = replace(
        workflow,
        stages=_with_derived_flags(stages),
        current_stage=1,
        workflow_status=WorkflowStatus.IN_PROGRESS,
        submitter_id=submitter_id if submitter_id is not None else workflow.submitter_id,
        started_at=now,
    )
    return TransitionOutcome(
        workflow=started,
        event=TransitionEvent.START,
        stage_number=1,
        transitions=(
            _record(
                workflow, 1, TransitionEvent.START, None, first.status, now,
                actor_id=started.submitter_id,
            ),
        ),
    )


def begin_stage_review(
    workflow: SequentialWorkflowData,
    stage_number: int,
    actor: Actor | None,
    now: datetime,
) -> TransitionOutcome:
    """The owning entity picks up a ``pending`` stage (pending -> in_progress)."""
    event = TransitionEvent.BEGIN_REVIEW
    _require_started(workflow, stage_number, event)
    stage = _require_current(workflow, stage_number)
    _require_edge(
        workflow, stage, StageStatus.IN_PROGRESS, event,
        allowed_from=frozenset({StageStatus.PENDING}),
    )
    if not can_act_on_stage(stage, actor):
        raise NotAuthorizedError(
            str(workflow.envelope_id), stage_number,
            str(actor.actor_id) if actor else "unknown", "begin review of",
        )

    updated = replace(stage, status=StageStatus.IN_PROGRESS)
    return TransitionOutcome(
        workflow=replace(workflow, stages=_with_derived_flags(_replace_stage(workflow, updated))),
        event=event,
        stage_number=stage_number,
        transitions=(
            _record(
                workflow, stage_number, event, stage.status,
                StageStatus.IN_PROGRESS, now, actor_id=actor.actor_id,
            ),
        ),
    )


def complete_stage(
    workflow: SequentialWorkflowData,
    stage_number: int,
    actor: Actor | None,
    now: datetime,
    notes: str | None = None,
) -> TransitionOutcome:
    """Approve the current stage and advance the pointer.

    The next stage is unblocked into ``payment_required`` or ``pending``
    (mirroring the builder) and becomes current; after the last stage the
    workflow is completed and no stage remains current.
    """
    event = TransitionEvent.COMPLETE
    _require_started(workflow, stage_number, event)
    stage = _require_current(workflow, stage_number)
    _require_edge(
        workflow, stage, StageStatus.COMPLETED, event,
        allowed_from=DECIDABLE_STAGE_STATUSES,
    )
    if not can_act_on_stage(stage, actor):
        raise NotAuthorizedError(
            str(workflow.envelope_id), stage_number,
            str(actor.actor_id) if actor else "unknown", "complete",
        )

    done = replace(
        stage,
        status=StageStatus.COMPLETED,
        is_current=False,
        completed_at=now,
        completed_by=actor.actor_id,
        notes=notes,
    )
    stages = _replace_stage(workflow, done)
    records = [
        _record(
            workflow, stage_number, event, stage.status, StageStatus.COMPLETED,
            now, actor_id=actor.actor_id, reason=notes,
        )
    ]

    if stage_number < workflow.total_stages:
        nxt = stages[stage_number]
        unblocked_status = initial_stage_status(nxt.payment_required)
        _require_edge(workflow, nxt, unblocked_status, TransitionEvent.UNBLOCK)
        stages[stage_number] = replace(
            nxt, status=unblocked_status, is_current=True, assigned_at=now,
        )
        records.append(
            _record(
                workflow, stage_number + 1, TransitionEvent.UNBLOCK,
                nxt.status, unblocked_status, now,
            )
        )
        advanced = replace(
            workflow,
            stages=_with_derived_flags(stages),
            current_stage=stage_number + 1,
        )
    else:
        advanced = replace(
            workflow,
            stages=_with_derived_flags(stages),
            workflow_status=WorkflowStatus.COMPLETED,
        )

    return TransitionOutcome(
        workflow=advanced,
        event=event,
        stage_number=stage_number,
        transitions=tuple(records),
    )


def reject_stage(
    workflow: SequentialWorkflowData,
    stage_number: int,
    actor: Actor | None,
    reason: str,
    now: datetime,
) -> TransitionOutcome:
    """Reject the current stage; terminal for the whole workflow.

    ``current_stage`` and ``is_current`` stay on the rejected stage so
    consumers can show where the workflow stopped.  Later stages are
    already ``blocked`` and remain so.
    """
    event = TransitionEvent.REJECT
    _require_started(workflow, stage_number, event)
    stage = _require_current(workflow, stage_number)
    reason = (reason or "").strip()
    if not reason:
        raise InvalidTransitionError(
            str(workflow.envelope_id), stage_number, stage.status.value,
            event.value, reason="rejection reason is required",
        )
    _require_edge(
        workflow, stage, StageStatus.REJECTED, event,
        allowed_from=DECIDABLE_STAGE_STATUSES,
    )
    if not can_act_on_stage(stage, actor):
        raise NotAuthorizedError(
            str(workflow.envelope_id), stage_number,
            str(actor.actor_id) if actor else "unknown", "reject",
        )

    rejected = replace(
        stage,
        status=StageStatus.REJECTED,
        rejection_reason=reason,
        rejected_at=now,
        rejected_by=actor.actor_id,
    )
    stages = _replace_stage(workflow, rejected)
    for i in range(stage_number, len(stages)):
        if stages[i].status != StageStatus.BLOCKED or stages[i].is_current:
            stages[i] = replace(stages[i], status=StageStatus.BLOCKED, is_current=False)

    return TransitionOutcome(
        workflow=replace(
            workflow,
            stages=_with_derived_flags(stages),
            workflow_status=WorkflowStatus.REJECTED,
        ),
        event=event,
        stage_number=stage_number,
        transitions=(
            _record(
                workflow, stage_number, event, stage.status, StageStatus.REJECTED,
                now, actor_id=actor.actor_id, reason=reason,
            ),
        ),
    )


def record_stage_payment(
    workflow: SequentialWorkflowData,
    stage_number: int,
    result: PaymentResult,
    now: datetime,
    payer: Actor | None = None,
) -> TransitionOutcome:
    """Record the payment provider's final result for a stage's fee.

    Success moves the stage payment_required -> payment_completed ->
    in_progress; the entity still has to approve.  A failed result marks
    ``payment_status = failed`` and leaves the stage payable.  A repeated
    delivery of an already-recorded successful reference is a no-op.

    ``payer`` is checked only when the result names one.
    """
    event = TransitionEvent.PAYMENT
    if workflow.workflow_status == WorkflowStatus.REJECTED:
        _require_started(workflow, stage_number, event)

    target = workflow.stage(stage_number)
    if (
        result.succeeded
        and target is not None
        and target.payment_status == PaymentStatus.COMPLETED
        and target.payment_reference == result.payment_reference
    ):
        return TransitionOutcome(
            workflow=workflow, event=event, stage_number=stage_number, changed=False,
        )

    _require_started(workflow, stage_number, event)
    stage = _require_current(workflow, stage_number)
    if not stage.payment_required:
        raise InvalidTransitionError(
            str(workflow.envelope_id), stage_number, stage.status.value,
            event.value, reason="stage has no fee",
        )
    _require_edge(workflow, stage, StageStatus.PAYMENT_COMPLETED, event)

    expected = stage.payment_amount
    if expected is None or result.amount != expected:
        raise PaymentMismatchError(
            str(workflow.envelope_id), stage_number,
            str(expected), str(result.amount),
        )
    if result.payer_id is not None and not can_pay_for_stage(workflow, stage, payer):
        raise NotAuthorizedError(
            str(workflow.envelope_id), stage_number, str(result.payer_id), "pay for",
        )

    if not result.succeeded:
        failed = replace(stage, payment_status=PaymentStatus.FAILED)
        return TransitionOutcome(
            workflow=replace(workflow, stages=_with_derived_flags(_replace_stage(workflow, failed))),
            event=TransitionEvent.PAYMENT_FAILED,
            stage_number=stage_number,
            transitions=(
                _record(
                    workflow, stage_number, TransitionEvent.PAYMENT_FAILED,
                    stage.status, stage.status, now,
                    actor_id=result.payer_id,
                    reason=result.failure_reason or result.payment_reference,
                ),
            ),
        )

    paid = replace(
        stage,
        status=StageStatus.IN_PROGRESS,
        payment_status=PaymentStatus.COMPLETED,
        payment_reference=result.payment_reference,
        payment_completed_at=now,
    )
    return TransitionOutcome(
        workflow=replace(workflow, stages=_with_derived_flags(_replace_stage(workflow, paid))),
        event=event,
        stage_number=stage_number,
        transitions=(
            _record(
                workflow, stage_number, event, StageStatus.PAYMENT_REQUIRED,
                StageStatus.PAYMENT_COMPLETED, now,
                actor_id=result.payer_id, reason=result.payment_reference,
            ),
            _record(
                workflow, stage_number, event, StageStatus.PAYMENT_COMPLETED,
                StageStatus.IN_PROGRESS, now, actor_id=result.payer_id,
            ),
        ),
    )
