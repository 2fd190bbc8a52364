"""
Tests for verify_workflow / assert_workflow_valid.

Valid aggregates produced by the transition functions pass; hand-tampered
aggregates report the broken invariant by name.
"""

from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from workflow_kernel.domain.builder import build_workflow
from workflow_kernel.domain.invariants import (
    WorkflowInvariant,
    assert_workflow_valid,
    verify_workflow,
)
from workflow_kernel.domain.stage import StageStatus, WorkflowStatus
from workflow_kernel.domain.transitions import complete_stage, reject_stage, start_workflow
from workflow_kernel.domain.values import Money
from workflow_kernel.exceptions import WorkflowInvariantError

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def workflow(documents_factory, actors):
    built = build_workflow(documents_factory(), uuid4(), "ACID-I")
    return start_workflow(built, NOW, actors.submitter.actor_id).workflow


def _tamper(workflow, position, **changes):
    """Replace fields of the stage at 1-based ``position``."""
    stages = list(workflow.stages)
    stages[position - 1] = replace(stages[position - 1], **changes)
    return replace(workflow, stages=tuple(stages))


def _broken(workflow):
    return {v.split(":", 1)[0] for v in verify_workflow(workflow)}


class TestValidAggregates:

    def test_built_started_advanced_rejected_all_valid(self, documents_factory, actors):
        built = build_workflow(documents_factory(), uuid4(), "ACID-I")
        started = start_workflow(built, NOW, actors.submitter.actor_id).workflow
        advanced = complete_stage(started, 1, actors.sca_officer, NOW).workflow
        rejected = reject_stage(advanced, 2, actors.mti_officer, "no", NOW).workflow

        for aggregate in (built, started, advanced, rejected):
            assert verify_workflow(aggregate) == []
            assert_workflow_valid(aggregate)


class TestTamperedAggregates:

    def test_gap_in_numbering(self, workflow):
        tampered = _tamper(workflow, 3, stage_number=4)
        assert _broken(tampered) == {WorkflowInvariant.CONTIGUOUS_NUMBERING.value}
        (violation,) = verify_workflow(tampered)
        assert "[1, 2, 4]" in violation

    def test_duplicate_stage_number(self, workflow):
        tampered = _tamper(workflow, 2, stage_number=1)
        assert _broken(tampered) == {WorkflowInvariant.CONTIGUOUS_NUMBERING.value}

    def test_two_current_stages(self, workflow):
        tampered = _tamper(workflow, 2, is_current=True)
        assert WorkflowInvariant.SINGLE_CURRENT.value in _broken(tampered)

    def test_two_active_stages(self, workflow):
        tampered = _tamper(workflow, 1, status=StageStatus.IN_PROGRESS)
        tampered = _tamper(tampered, 2, status=StageStatus.IN_PROGRESS)
        assert WorkflowInvariant.SINGLE_ACTIVE.value in _broken(tampered)

    def test_successor_not_blocked(self, workflow):
        tampered = _tamper(workflow, 3, status=StageStatus.PENDING)
        assert WorkflowInvariant.ORDERED_PROGRESS.value in _broken(tampered)

    def test_rejected_stage_in_running_workflow(self, workflow):
        tampered = _tamper(
            workflow, 1, status=StageStatus.REJECTED, rejection_reason="x"
        )
        broken = _broken(tampered)
        assert WorkflowInvariant.TERMINAL_REJECTION.value in broken
        assert WorkflowInvariant.STATUS_AGREEMENT.value in broken

    def test_reason_without_rejection(self, workflow):
        tampered = _tamper(workflow, 1, rejection_reason="stray")
        assert WorkflowInvariant.FIELD_CONSISTENCY.value in _broken(tampered)

    def test_can_start_drift(self, workflow):
        tampered = _tamper(workflow, 2, can_start=True)
        assert WorkflowInvariant.FIELD_CONSISTENCY.value in _broken(tampered)

    def test_stored_status_disagrees_with_stages(self, workflow):
        tampered = replace(workflow, workflow_status=WorkflowStatus.COMPLETED)
        assert WorkflowInvariant.STATUS_AGREEMENT.value in _broken(tampered)

    def test_assert_raises_with_violations(self, workflow):
        tampered = _tamper(workflow, 2, is_current=True)
        with pytest.raises(WorkflowInvariantError) as exc_info:
            assert_workflow_valid(tampered)
        assert exc_info.value.envelope_id == str(workflow.envelope_id)
        assert exc_info.value.violations

    def test_fees_in_two_currencies(self, workflow):
        tampered = _tamper(
            workflow, 2, payment_required=True, payment_amount=Money(700, "EGP")
        )
        tampered = _tamper(
            tampered, 3, payment_required=True, payment_amount=Money(5000, "USD")
        )
        assert _broken(tampered) == {WorkflowInvariant.SINGLE_FEE_CURRENCY.value}
