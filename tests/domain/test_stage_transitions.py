"""
Tests for the pure stage transition functions.

Covers:
- start_workflow: stage 1 stays pending / payment_required, assigned_at set
- complete_stage: pointer advance, next stage unblocked, last stage completes
- reject_stage: terminal, pointer kept, later stages stay blocked
- record_stage_payment: success, duplicate delivery, failure, mismatch
- begin_stage_review: pending -> in_progress
- check order: terminal > stale > transition table > authorization
- all-or-nothing: a refused event leaves the input aggregate unchanged
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from workflow_kernel.domain.builder import build_workflow
from workflow_kernel.domain.stage import (
    PaymentResult,
    PaymentStatus,
    StageStatus,
    TransitionEvent,
    WorkflowStatus,
)
from workflow_kernel.domain.transitions import (
    begin_stage_review,
    complete_stage,
    record_stage_payment,
    reject_stage,
    start_workflow,
)
from workflow_kernel.domain.values import Money
from workflow_kernel.exceptions import (
    InvalidTransitionError,
    NotAuthorizedError,
    PaymentMismatchError,
    StaleStageError,
)

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
LATER = NOW + timedelta(hours=2)


@pytest.fixture
def started(documents_factory, actors):
    """Factory: a started workflow for the given fees."""

    def _started(fees=(None, None, None)):
        built = build_workflow(documents_factory(fees), uuid4(), "ACID-T")
        return start_workflow(built, NOW, actors.submitter.actor_id).workflow

    return _started


def _complete(workflow, stage_number, actors, now=LATER, notes=None):
    owner = workflow.stage(stage_number).legal_entity_id
    return complete_stage(workflow, stage_number, actors.officer_for(owner), now, notes=notes)


def _pay(workflow, stage_number, amount, reference="pay-001", succeeded=True, payer=None):
    result = PaymentResult(
        payment_reference=reference,
        succeeded=succeeded,
        amount=Money(amount),
        payer_id=payer.actor_id if payer else None,
        failure_reason="" if succeeded else "card declined",
    )
    return record_stage_payment(workflow, stage_number, result, LATER, payer=payer)


class TestStartWorkflow:

    def test_scenario_a_three_documents_no_fees(self, documents_factory, actors):
        built = build_workflow(documents_factory(), uuid4(), "ACID-A")
        outcome = start_workflow(built, NOW, actors.submitter.actor_id)
        workflow = outcome.workflow

        assert workflow.workflow_status == WorkflowStatus.IN_PROGRESS
        assert workflow.stages[0].status == StageStatus.PENDING
        assert workflow.stages[0].is_current is True
        assert workflow.stages[0].assigned_at == NOW
        assert [s.status for s in workflow.stages[1:]] == [StageStatus.BLOCKED] * 2
        assert workflow.started_at == NOW
        assert workflow.submitter_id == actors.submitter.actor_id

    def test_start_records_one_transition(self, documents_factory, actors):
        built = build_workflow(documents_factory(), uuid4(), "ACID-A")
        outcome = start_workflow(built, NOW, actors.submitter.actor_id)

        (record,) = outcome.transitions
        assert record.event == TransitionEvent.START
        assert record.from_status is None
        assert record.to_status == StageStatus.PENDING
        assert record.actor_id == actors.submitter.actor_id

    def test_scenario_b_first_stage_with_fee(self, started):
        workflow = started(fees=(5000, None, None))
        first = workflow.stages[0]

        assert first.status == StageStatus.PAYMENT_REQUIRED
        assert first.payment_amount == Money(5000)

    def test_start_twice_is_invalid(self, started):
        workflow = started()
        with pytest.raises(InvalidTransitionError):
            start_workflow(workflow, LATER)


class TestCompleteStage:

    def test_scenario_c_complete_first_of_three(self, started, actors):
        workflow = started()
        outcome = _complete(workflow, 1, actors, notes="stamped")
        result = outcome.workflow

        first, second, third = result.stages
        assert first.status == StageStatus.COMPLETED
        assert first.completed_at == LATER
        assert first.completed_by == actors.sca_officer.actor_id
        assert first.notes == "stamped"
        assert first.is_current is False
        assert second.is_current is True
        assert second.can_start is True
        assert second.status == StageStatus.PENDING
        assert second.assigned_at == LATER
        assert third.status == StageStatus.BLOCKED
        assert third.can_start is False
        assert result.current_stage == 2
        assert result.workflow_status == WorkflowStatus.IN_PROGRESS

    def test_completion_records_complete_and_unblock(self, started, actors):
        outcome = _complete(started(), 1, actors)

        events = [(t.stage_number, t.event, t.from_status, t.to_status) for t in outcome.transitions]
        assert events == [
            (1, TransitionEvent.COMPLETE, StageStatus.PENDING, StageStatus.COMPLETED),
            (2, TransitionEvent.UNBLOCK, StageStatus.BLOCKED, StageStatus.PENDING),
        ]

    def test_next_stage_with_fee_unblocks_to_payment_required(self, started, actors):
        result = _complete(started(fees=(None, 7500, None)), 1, actors).workflow

        assert result.stages[1].status == StageStatus.PAYMENT_REQUIRED
        assert result.stages[1].is_current is True

    def test_scenario_e_complete_all_stages(self, started, actors):
        workflow = started()
        for n in (1, 2, 3):
            workflow = _complete(workflow, n, actors).workflow

        assert workflow.workflow_status == WorkflowStatus.COMPLETED
        assert not any(s.is_current for s in workflow.stages)
        assert all(s.status == StageStatus.COMPLETED for s in workflow.stages)
        assert workflow.current_stage == 3
        assert workflow.can_proceed is False
        assert workflow.assigned_entity_id is None

    def test_pointer_moves_by_exactly_one(self, started, actors):
        workflow = started(fees=(None,) * 4)
        for n in (1, 2, 3):
            before = workflow.current_stage
            workflow = _complete(workflow, n, actors).workflow
            assert workflow.current_stage == before + 1

    def test_scenario_b_complete_blocked_until_paid(self, started, actors):
        workflow = started(fees=(5000, None, None))

        with pytest.raises(InvalidTransitionError):
            _complete(workflow, 1, actors)

        paid = _pay(workflow, 1, 5000).workflow
        result = _complete(paid, 1, actors).workflow
        assert result.stages[0].status == StageStatus.COMPLETED
        assert result.current_stage == 2

    def test_stale_stage_number(self, started, actors):
        workflow = started()
        with pytest.raises(StaleStageError) as exc_info:
            complete_stage(workflow, 2, actors.mti_officer, LATER)
        assert exc_info.value.requested_stage == 2
        assert exc_info.value.current_stage == 1

    def test_out_of_range_stage_is_stale(self, started, actors):
        with pytest.raises(StaleStageError):
            complete_stage(started(), 9, actors.sca_officer, LATER)

    def test_previous_stage_is_stale_after_advance(self, started, actors):
        workflow = _complete(started(), 1, actors).workflow
        with pytest.raises(StaleStageError):
            complete_stage(workflow, 1, actors.sca_officer, LATER)

    def test_wrong_entity_not_authorized(self, started, actors):
        with pytest.raises(NotAuthorizedError) as exc_info:
            complete_stage(started(), 1, actors.mti_officer, LATER)
        assert exc_info.value.stage_number == 1

    def test_submitter_cannot_approve(self, started, actors):
        with pytest.raises(NotAuthorizedError):
            complete_stage(started(), 1, actors.submitter, LATER)

    def test_unknown_actor_not_authorized(self, started):
        with pytest.raises(NotAuthorizedError):
            complete_stage(started(), 1, None, LATER)

    def test_not_started_workflow_is_invalid(self, documents_factory, actors):
        built = build_workflow(documents_factory(), uuid4(), "ACID-T")
        with pytest.raises(InvalidTransitionError):
            complete_stage(built, 1, actors.sca_officer, LATER)

    def test_completed_workflow_is_invalid(self, started, actors):
        workflow = started(fees=(None,))
        workflow = _complete(workflow, 1, actors).workflow
        with pytest.raises(InvalidTransitionError):
            complete_stage(workflow, 1, actors.sca_officer, LATER)


class TestRejectStage:

    def test_scenario_d_reject_second_of_three(self, started, actors):
        workflow = _complete(started(), 1, actors).workflow
        result = reject_stage(
            workflow, 2, actors.mti_officer, "missing signature", LATER
        ).workflow

        second, third = result.stages[1], result.stages[2]
        assert second.status == StageStatus.REJECTED
        assert second.rejection_reason == "missing signature"
        assert second.rejected_at == LATER
        assert second.rejected_by == actors.mti_officer.actor_id
        assert second.is_current is True
        assert third.status == StageStatus.BLOCKED
        assert result.workflow_status == WorkflowStatus.REJECTED
        assert result.current_stage == 2

    def test_reason_is_required(self, started, actors):
        for reason in ("", "   "):
            with pytest.raises(InvalidTransitionError):
                reject_stage(started(), 1, actors.sca_officer, reason, LATER)

    def test_cannot_reject_unpaid_stage(self, started, actors):
        with pytest.raises(InvalidTransitionError):
            reject_stage(started(fees=(5000,)), 1, actors.sca_officer, "no", LATER)

    def test_reject_after_payment(self, started, actors):
        workflow = _pay(started(fees=(5000, None)), 1, 5000).workflow
        result = reject_stage(workflow, 1, actors.sca_officer, "forged", LATER).workflow

        assert result.workflow_status == WorkflowStatus.REJECTED
        assert result.stages[0].payment_status == PaymentStatus.COMPLETED

    def test_wrong_entity_cannot_reject(self, started, actors):
        with pytest.raises(NotAuthorizedError):
            reject_stage(started(), 1, actors.coc_officer, "no", LATER)


class TestMonotonicRejection:
    """Once rejected, every further event is an invalid transition."""

    @pytest.fixture
    def rejected(self, started, actors):
        workflow = _complete(started(fees=(None, None, 9000)), 1, actors).workflow
        return reject_stage(workflow, 2, actors.mti_officer, "missing signature", LATER).workflow

    @pytest.mark.parametrize("stage_number", [1, 2, 3])
    def test_complete_any_stage_is_invalid(self, rejected, actors, stage_number):
        with pytest.raises(InvalidTransitionError):
            complete_stage(rejected, stage_number, actors.mti_officer, LATER)

    @pytest.mark.parametrize("stage_number", [1, 2, 3])
    def test_payment_on_any_stage_is_invalid(self, rejected, stage_number):
        with pytest.raises(InvalidTransitionError):
            _pay(rejected, stage_number, 9000)

    def test_second_rejection_is_invalid(self, rejected, actors):
        with pytest.raises(InvalidTransitionError):
            reject_stage(rejected, 2, actors.mti_officer, "again", LATER)


class TestRecordStagePayment:

    def test_success_moves_stage_to_in_progress(self, started):
        outcome = _pay(started(fees=(5000, None)), 1, 5000, reference="ch_1")
        stage = outcome.workflow.stages[0]

        assert stage.status == StageStatus.IN_PROGRESS
        assert stage.payment_status == PaymentStatus.COMPLETED
        assert stage.payment_reference == "ch_1"
        assert stage.payment_completed_at == LATER
        assert outcome.workflow.current_stage == 1
        assert stage.is_current is True

    def test_success_records_both_hops(self, started):
        outcome = _pay(started(fees=(5000,)), 1, 5000)
        hops = [(t.from_status, t.to_status) for t in outcome.transitions]

        assert hops == [
            (StageStatus.PAYMENT_REQUIRED, StageStatus.PAYMENT_COMPLETED),
            (StageStatus.PAYMENT_COMPLETED, StageStatus.IN_PROGRESS),
        ]

    def test_duplicate_delivery_is_noop(self, started):
        once = _pay(started(fees=(5000, None)), 1, 5000, reference="ch_1").workflow
        again = _pay(once, 1, 5000, reference="ch_1")

        assert again.changed is False
        assert again.transitions == ()
        assert again.workflow == once

    def test_duplicate_delivery_after_stage_completed_is_noop(self, started, actors):
        once = _pay(started(fees=(5000, None)), 1, 5000, reference="ch_1").workflow
        advanced = _complete(once, 1, actors).workflow

        outcome = _pay(advanced, 1, 5000, reference="ch_1")
        assert outcome.changed is False
        assert outcome.workflow == advanced

    def test_second_charge_with_new_reference_is_invalid(self, started):
        once = _pay(started(fees=(5000,)), 1, 5000, reference="ch_1").workflow
        with pytest.raises(InvalidTransitionError):
            _pay(once, 1, 5000, reference="ch_2")

    def test_stage_without_fee_is_invalid(self, started):
        with pytest.raises(InvalidTransitionError):
            _pay(started(fees=(None, None)), 1, 5000)

    def test_amount_mismatch(self, started):
        workflow = started(fees=(5000,))
        with pytest.raises(PaymentMismatchError) as exc_info:
            _pay(workflow, 1, 4999)
        assert exc_info.value.expected == "5000 USD"
        assert exc_info.value.received == "4999 USD"

    def test_currency_mismatch(self, started):
        workflow = started(fees=(5000,))
        result = PaymentResult("ch_eur", True, Money(5000, "EUR"))
        with pytest.raises(PaymentMismatchError):
            record_stage_payment(workflow, 1, result, LATER)

    def test_blocked_stage_is_stale(self, started):
        with pytest.raises(StaleStageError):
            _pay(started(fees=(None, 7500)), 2, 7500)

    def test_failed_payment_keeps_stage_payable(self, started):
        workflow = started(fees=(5000,))
        failed = _pay(workflow, 1, 5000, reference="ch_bad", succeeded=False)
        stage = failed.workflow.stages[0]

        assert failed.event == TransitionEvent.PAYMENT_FAILED
        assert stage.status == StageStatus.PAYMENT_REQUIRED
        assert stage.payment_status == PaymentStatus.FAILED
        assert stage.payment_reference is None

        retried = _pay(failed.workflow, 1, 5000, reference="ch_ok").workflow
        assert retried.stages[0].status == StageStatus.IN_PROGRESS
        assert retried.stages[0].payment_status == PaymentStatus.COMPLETED

    def test_named_payer_must_be_submitter(self, started, actors):
        workflow = started(fees=(5000,))
        with pytest.raises(NotAuthorizedError):
            _pay(workflow, 1, 5000, payer=actors.other_submitter)
        with pytest.raises(NotAuthorizedError):
            _pay(workflow, 1, 5000, payer=actors.sca_officer)

        result = _pay(workflow, 1, 5000, payer=actors.submitter).workflow
        assert result.stages[0].payment_status == PaymentStatus.COMPLETED


class TestBeginStageReview:

    def test_pending_to_in_progress(self, started, actors):
        outcome = begin_stage_review(started(), 1, actors.sca_officer, LATER)

        assert outcome.workflow.stages[0].status == StageStatus.IN_PROGRESS
        assert outcome.transitions[0].event == TransitionEvent.BEGIN_REVIEW
        # review does not move the pointer
        assert outcome.workflow.current_stage == 1

    def test_review_then_complete(self, started, actors):
        reviewing = begin_stage_review(started(), 1, actors.sca_officer, LATER).workflow
        result = _complete(reviewing, 1, actors).workflow
        assert result.stages[0].status == StageStatus.COMPLETED

    def test_review_of_unpaid_stage_is_invalid(self, started, actors):
        with pytest.raises(InvalidTransitionError):
            begin_stage_review(started(fees=(5000,)), 1, actors.sca_officer, LATER)

    def test_review_twice_is_invalid(self, started, actors):
        reviewing = begin_stage_review(started(), 1, actors.sca_officer, LATER).workflow
        with pytest.raises(InvalidTransitionError):
            begin_stage_review(reviewing, 1, actors.sca_officer, LATER)

    def test_wrong_entity_cannot_review(self, started, actors):
        with pytest.raises(NotAuthorizedError):
            begin_stage_review(started(), 1, actors.mti_officer, LATER)


class TestAllOrNothing:

    def test_refused_events_leave_aggregate_untouched(self, started, actors):
        workflow = started(fees=(5000, None))
        snapshot = workflow

        for attempt in (
            lambda: _complete(workflow, 1, actors),
            lambda: _pay(workflow, 1, 1),
            lambda: reject_stage(workflow, 1, actors.sca_officer, "", LATER),
            lambda: complete_stage(workflow, 2, actors.mti_officer, LATER),
        ):
            with pytest.raises((InvalidTransitionError, PaymentMismatchError, StaleStageError)):
                attempt()

        assert workflow == snapshot
        assert workflow.stages[0].status == StageStatus.PAYMENT_REQUIRED
