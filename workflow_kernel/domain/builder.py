"""
Workflow builder (``workflow_kernel.domain.builder``).

Turns the required documents of an envelope into the initial, ordered
stage list.  Input order is stage order; each document becomes exactly
one stage, so a legal entity that owns several documents owns several
stages.  Stage 1 starts ``payment_required`` or ``pending`` depending on
its fee; every later stage starts ``blocked``.  All fees of one envelope
are charged in one currency.

Pure function, ZERO I/O.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from workflow_kernel.domain.stage import (
    PaymentStatus,
    RequiredDocument,
    SequentialWorkflowData,
    StageStatus,
    WorkflowStage,
    WorkflowStatus,
)
from workflow_kernel.exceptions import (
    DuplicateStageDocumentError,
    EmptyWorkflowError,
    MixedFeeCurrencyError,
)


def initial_stage_status(payment_required: bool) -> StageStatus:
    """Status a stage takes when it becomes reachable."""
    return StageStatus.PAYMENT_REQUIRED if payment_required else StageStatus.PENDING


def build_workflow(
    required_documents: Sequence[RequiredDocument],
    envelope_id: UUID,
    acid_number: str,
) -> SequentialWorkflowData:
    """Build the not-yet-started workflow for an envelope.

    Raises:
        EmptyWorkflowError: no documents were supplied.
        DuplicateStageDocumentError: a document id appears twice.
        MixedFeeCurrencyError: fees are charged in more than one currency.
    """
    if not required_documents:
        raise EmptyWorkflowError(str(envelope_id))

    seen: set[str] = set()
    fee_currency: str | None = None
    stages: list[WorkflowStage] = []
    for index, doc in enumerate(required_documents):
        if doc.id in seen:
            raise DuplicateStageDocumentError(str(envelope_id), doc.id)
        seen.add(doc.id)

        number = index + 1
        fee_due = doc.has_fee
        if fee_due:
            fee_currency = fee_currency or doc.fee.currency
            if doc.fee.currency != fee_currency:
                raise MixedFeeCurrencyError(
                    str(envelope_id), doc.id, doc.fee.currency, fee_currency
                )
        stages.append(
            WorkflowStage(
                stage_number=number,
                document_id=doc.id,
                legal_entity_id=doc.legal_entity_id,
                legal_entity_name=doc.legal_entity_name,
                status=initial_stage_status(fee_due) if number == 1 else StageStatus.BLOCKED,
                is_current=number == 1,
                can_start=number == 1,
                payment_required=fee_due,
                payment_amount=doc.fee if fee_due else None,
                payment_status=PaymentStatus.PENDING if fee_due else None,
            )
        )

    return SequentialWorkflowData(
        envelope_id=envelope_id,
        acid_number=acid_number,
        current_stage=1,
        workflow_status=WorkflowStatus.NOT_STARTED,
        stages=tuple(stages),
    )
