"""
workflow_kernel.services.workflow_service -- Sequential workflow engine.

Responsibility:
    The single entry point for creating, advancing, rejecting and paying
    envelope workflows.  Resolves actor ids, applies the pure transition
    functions, persists the result with its history through a
    ``WorkflowRepository`` and publishes one ``WorkflowChanged`` per
    committed mutation.

Architecture position:
    Kernel > Services.  May import from domain/, services/, exceptions.
    Storage is injected (``WorkflowRepository``), as are identity
    (``ActorDirectory``), time (``Clock``) and notification
    (``WorkflowEventBus``).

Invariants enforced:
    SW-1  -- Stage transitions follow STAGE_TRANSITIONS.
    SW-4  -- Rejection is terminal for the workflow.
    SW-5  -- Mutations are compare-and-swap on the aggregate version; a
             lost race surfaces as StaleStageError.
    SW-8  -- Events are published only after the write committed, and only
             when something changed.

Failure modes:
    - WorkflowNotFoundError for an envelope that was never started.
    - WorkflowAlreadyExistsError when starting an envelope twice.
    - InvalidTransitionError, StaleStageError, NotAuthorizedError,
      PaymentMismatchError from the transition rules.
    - PersistenceError when storage fails; nothing was written.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from uuid import UUID

from workflow_kernel.domain import transitions
from workflow_kernel.domain.authorization import ActorDirectory
from workflow_kernel.domain.builder import build_workflow
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.events import (
    EVENT_TYPE_BY_TRANSITION,
    WorkflowChanged,
    WorkflowEventBus,
    WorkflowEventType,
)
from workflow_kernel.domain.projector import WorkflowProjection, project_workflow
from workflow_kernel.domain.stage import (
    PaymentResult,
    RequiredDocument,
    SequentialWorkflowData,
    StageTransition,
    TransitionEvent,
    WorkflowStatus,
)
from workflow_kernel.domain.transitions import TransitionOutcome
from workflow_kernel.domain.values import Actor, EntityId
from workflow_kernel.exceptions import (
    AuthorizationError,
    OptimisticLockError,
    PaymentError,
    StaleStageError,
    WorkflowError,
    WorkflowNotFoundError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.services.workflow_repository import WorkflowRepository

logger = get_logger("services.workflow_service")

_REFUSALS = (WorkflowError, AuthorizationError, PaymentError)


def _str_or_none(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


def _event_type(
    outcome: TransitionOutcome, saved: SequentialWorkflowData
) -> WorkflowEventType:
    # Completing the last stage is reported as the workflow completing.
    if (
        outcome.event == TransitionEvent.COMPLETE
        and saved.workflow_status == WorkflowStatus.COMPLETED
    ):
        return WorkflowEventType.WORKFLOW_COMPLETED
    return EVENT_TYPE_BY_TRANSITION[outcome.event]


class SequentialWorkflowService:
    """Drives envelope workflows through their stages."""

    def __init__(
        self,
        repository: WorkflowRepository,
        actor_directory: ActorDirectory,
        clock: Clock | None = None,
        event_bus: WorkflowEventBus | None = None,
        currency: str = "USD",
    ) -> None:
        self._repository = repository
        self._actors = actor_directory
        self._clock = clock or SystemClock()
        self._event_bus = event_bus or WorkflowEventBus()
        self._currency = currency

    @property
    def event_bus(self) -> WorkflowEventBus:
        return self._event_bus

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def build_workflow(
        self,
        required_documents: Sequence[RequiredDocument],
        envelope_id: UUID,
        acid_number: str,
    ) -> SequentialWorkflowData:
        """Build (but do not persist) the workflow for an envelope."""
        workflow = build_workflow(required_documents, envelope_id, acid_number)
        logger.info(
            "workflow_built",
            extra={
                "envelope_id": str(envelope_id),
                "acid_number": acid_number,
                "total_stages": workflow.total_stages,
                "payment_stages": sum(1 for s in workflow.stages if s.payment_required),
            },
        )
        return workflow

    def start_workflow(
        self,
        workflow_data: SequentialWorkflowData,
        submitter_id: UUID | None = None,
    ) -> SequentialWorkflowData:
        """Persist a built workflow and route the envelope to stage 1."""
        envelope_id = workflow_data.envelope_id
        with LogContext.operation(
            envelope_id=str(envelope_id), actor_id=_str_or_none(submitter_id),
        ):
            outcome = self._apply(
                workflow_data,
                TransitionEvent.START,
                1,
                lambda wf: transitions.start_workflow(wf, self._clock.now(), submitter_id),
            )
            saved = self._repository.add(outcome.workflow, outcome.transitions)
            logger.info(
                "workflow_started",
                extra={
                    "acid_number": saved.acid_number,
                    "total_stages": saved.total_stages,
                    "first_entity_id": str(saved.stages[0].legal_entity_id),
                },
            )
            self._publish(outcome, saved, submitter_id)
            return saved

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_workflow_status(self, envelope_id: UUID) -> SequentialWorkflowData:
        """Current aggregate for an envelope."""
        workflow = self._repository.get(envelope_id)
        if workflow is None:
            raise WorkflowNotFoundError(str(envelope_id))
        return workflow

    def get_projection(self, envelope_id: UUID) -> WorkflowProjection:
        """Derived counts and fees; fee-free workflows total in the service currency."""
        return project_workflow(
            self.get_workflow_status(envelope_id).stages, currency=self._currency,
        )

    def get_stage_history(self, envelope_id: UUID) -> list[StageTransition]:
        """Append-only transition log for an envelope, oldest first."""
        self.get_workflow_status(envelope_id)
        return self._repository.history(envelope_id)

    def list_workflows_for_entity(self, entity_id: EntityId) -> list[SequentialWorkflowData]:
        """In-progress envelopes currently waiting on ``entity_id``."""
        return self._repository.list_for_entity(EntityId.parse(entity_id))

    def list_workflows_for_submitter(self, submitter_id: UUID) -> list[SequentialWorkflowData]:
        return self._repository.list_for_submitter(submitter_id)

    # ------------------------------------------------------------------
    # Stage events
    # ------------------------------------------------------------------

    def begin_stage_review(
        self,
        envelope_id: UUID,
        stage_number: int,
        actor_id: UUID,
    ) -> SequentialWorkflowData:
        """Mark a pending stage as picked up by its legal entity."""
        actor = self._resolve(actor_id)
        return self._mutate(
            envelope_id,
            stage_number,
            TransitionEvent.BEGIN_REVIEW,
            actor_id,
            lambda wf: transitions.begin_stage_review(
                wf, stage_number, actor, self._clock.now(),
            ),
        )

    def complete_current_stage(
        self,
        envelope_id: UUID,
        stage_number: int,
        actor_id: UUID,
        notes: str | None = None,
    ) -> SequentialWorkflowData:
        """Approve the current stage and route the envelope onwards."""
        actor = self._resolve(actor_id)
        return self._mutate(
            envelope_id,
            stage_number,
            TransitionEvent.COMPLETE,
            actor_id,
            lambda wf: transitions.complete_stage(
                wf, stage_number, actor, self._clock.now(), notes=notes,
            ),
        )

    def reject_current_stage(
        self,
        envelope_id: UUID,
        stage_number: int,
        reason: str,
        actor_id: UUID,
    ) -> SequentialWorkflowData:
        """Reject the current stage, ending the workflow."""
        actor = self._resolve(actor_id)
        return self._mutate(
            envelope_id,
            stage_number,
            TransitionEvent.REJECT,
            actor_id,
            lambda wf: transitions.reject_stage(
                wf, stage_number, actor, reason, self._clock.now(),
            ),
        )

    def process_stage_payment(
        self,
        envelope_id: UUID,
        stage_number: int,
        payment_result: PaymentResult,
    ) -> SequentialWorkflowData:
        """Record the payment provider's result for a stage's fee.

        Replaying a result whose reference is already recorded returns the
        stored workflow unchanged and publishes nothing.
        """
        payer = self._resolve(payment_result.payer_id) if payment_result.payer_id else None
        return self._mutate(
            envelope_id,
            stage_number,
            TransitionEvent.PAYMENT,
            payment_result.payer_id,
            lambda wf: transitions.record_stage_payment(
                wf, stage_number, payment_result, self._clock.now(), payer=payer,
            ),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, actor_id: UUID) -> Actor | None:
        actor = self._actors.get_actor(actor_id)
        if actor is None:
            logger.warning("actor_unknown", extra={"actor_id": str(actor_id)})
        return actor

    def _mutate(
        self,
        envelope_id: UUID,
        stage_number: int,
        event: TransitionEvent,
        actor_id: UUID | None,
        fn: Callable[[SequentialWorkflowData], TransitionOutcome],
    ) -> SequentialWorkflowData:
        with LogContext.operation(
            envelope_id=str(envelope_id), actor_id=_str_or_none(actor_id),
        ):
            workflow = self.get_workflow_status(envelope_id)
            outcome = self._apply(workflow, event, stage_number, fn)

            if not outcome.changed:
                logger.info(
                    "workflow_event_duplicate",
                    extra={"event": event.value, "stage_number": stage_number},
                )
                return workflow

            try:
                saved = self._repository.save(outcome.workflow, outcome.transitions)
            except OptimisticLockError as exc:
                latest = self._repository.get(envelope_id)
                logger.warning(
                    "workflow_version_conflict",
                    extra={
                        "event": event.value,
                        "stage_number": stage_number,
                        "expected_version": workflow.version,
                        "current_version": latest.version if latest else None,
                    },
                )
                raise StaleStageError(
                    str(envelope_id),
                    stage_number,
                    latest.current_stage if latest else None,
                ) from exc

            logger.info(
                _event_type(outcome, saved).value,
                extra={
                    "stage_number": stage_number,
                    "workflow_status": saved.workflow_status.value,
                    "current_stage": saved.current_stage,
                    "version": saved.version,
                },
            )
            self._publish(outcome, saved, actor_id)
            return saved

    @staticmethod
    def _apply(
        workflow: SequentialWorkflowData,
        event: TransitionEvent,
        stage_number: int,
        fn: Callable[[SequentialWorkflowData], TransitionOutcome],
    ) -> TransitionOutcome:
        try:
            return fn(workflow)
        except _REFUSALS as exc:
            logger.warning(
                "workflow_event_refused",
                extra={
                    "event": event.value,
                    "stage_number": stage_number,
                    "error_code": exc.code,
                    "workflow_status": workflow.workflow_status.value,
                    "current_stage": workflow.current_stage,
                },
            )
            raise

    def _publish(
        self,
        outcome: TransitionOutcome,
        saved: SequentialWorkflowData,
        actor_id: UUID | None,
    ) -> None:
        event_type = _event_type(outcome, saved)
        occurred_at = (
            outcome.transitions[0].occurred_at if outcome.transitions else self._clock.now()
        )
        self._event_bus.publish(
            WorkflowChanged(
                event_type=event_type,
                envelope_id=saved.envelope_id,
                stage_number=outcome.stage_number,
                workflow_status=saved.workflow_status,
                current_stage=saved.current_stage,
                version=saved.version,
                occurred_at=occurred_at,
                actor_id=actor_id,
            )
        )
