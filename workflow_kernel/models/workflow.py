"""
Module: workflow_kernel.models.workflow
Responsibility: ORM persistence for sequential workflows, their stages and the
    stage transition history.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only; domain types are imported lazily inside to_dto().

Invariants enforced:
    SW-1  -- Valid status values: DB check constraints limit stage and
             workflow status columns; the service layer enforces transitions.
    SW-2  -- Contiguous numbering: UNIQUE(workflow_id, stage_number); stage
             rows are created once with the workflow and only updated after.
    SW-5  -- Optimistic concurrency: ``version`` is the mapper's
             version_id_col, so every UPDATE of a workflow row is
             ``WHERE version = :loaded_version``.
    SW-6  -- Append-only history: stage_transitions rows refuse UPDATE and
             DELETE at the ORM level; UNIQUE(envelope_id, sequence).

Failure modes:
    - IntegrityError on a second workflow for the same envelope.
    - StaleDataError on a concurrent update of the same workflow row.
    - ImmutabilityViolationError on transition UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.orm.attributes import flag_modified

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from workflow_kernel.domain.stage import (
        SequentialWorkflowData,
        StageTransition,
        WorkflowStage,
    )

_STAGE_STATUSES = (
    "'blocked', 'pending', 'in_progress', 'payment_required', "
    "'payment_completed', 'completed', 'rejected'"
)


class SequentialWorkflowModel(Base):
    """Persistent workflow aggregate, one row per envelope.

    Contract:
        Created by start_workflow; afterwards only updated through the
        workflow service with a matching ``version``.
    """

    __tablename__ = "sequential_workflows"

    __table_args__ = (
        CheckConstraint(
            "workflow_status IN ('not_started', 'in_progress', 'completed', 'rejected')",
            name="ck_sequential_workflows_valid_status",
        ),
        CheckConstraint(
            "current_stage >= 1",
            name="ck_sequential_workflows_current_stage_positive",
        ),
        Index("ix_sequential_workflows_submitter", "submitter_id", "workflow_status"),
    )

    envelope_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    acid_number: Mapped[str] = mapped_column(String(100), nullable=False)
    current_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    workflow_status: Mapped[str] = mapped_column(String(20), nullable=False)
    submitter_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    stages: Mapped[list["WorkflowStageModel"]] = relationship(
        "WorkflowStageModel",
        back_populates="workflow",
        order_by="WorkflowStageModel.stage_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<SequentialWorkflow envelope={self.envelope_id} "
            f"stage={self.current_stage}/{len(self.stages)} "
            f"status={self.workflow_status} v{self.version}>"
        )

    def to_dto(self) -> SequentialWorkflowData:
        """Convert ORM model to frozen domain aggregate."""
        from workflow_kernel.domain.stage import SequentialWorkflowData, WorkflowStatus

        return SequentialWorkflowData(
            envelope_id=self.envelope_id,
            acid_number=self.acid_number,
            current_stage=self.current_stage,
            workflow_status=WorkflowStatus(self.workflow_status),
            stages=tuple(s.to_dto() for s in self.stages),
            submitter_id=self.submitter_id,
            version=self.version,
            started_at=self.started_at,
        )

    @classmethod
    def from_dto(cls, dto: SequentialWorkflowData, now: datetime) -> SequentialWorkflowModel:
        """Create ORM model (with stage rows) from a domain aggregate."""
        model = cls(
            envelope_id=dto.envelope_id,
            acid_number=dto.acid_number,
            current_stage=dto.current_stage,
            workflow_status=dto.workflow_status.value,
            submitter_id=dto.submitter_id,
            started_at=dto.started_at,
            created_at=now,
            updated_at=now,
        )
        model.stages = [WorkflowStageModel.from_dto(s) for s in dto.stages]
        return model

    def apply(self, dto: SequentialWorkflowData, now: datetime) -> None:
        """Copy a mutated aggregate onto this row and its existing stage rows.

        Stage rows are matched by ``stage_number``; none are added or
        removed, so stage identities survive advancement.
        """
        self.current_stage = dto.current_stage
        self.workflow_status = dto.workflow_status.value
        self.submitter_id = dto.submitter_id
        self.started_at = dto.started_at
        # Always dirty, even at an unchanged timestamp, so every save is a
        # versioned UPDATE of this row.
        self.updated_at = now
        flag_modified(self, "updated_at")
        by_number = {s.stage_number: s for s in self.stages}
        for stage in dto.stages:
            by_number[stage.stage_number].apply(stage)


class WorkflowStageModel(Base):
    """Persistent workflow stage.

    Guarantees:
        - UNIQUE(workflow_id, stage_number).
        - rejection_reason only on rejected stages.
    """

    __tablename__ = "workflow_stages"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "stage_number",
            name="uq_workflow_stages_number",
        ),
        CheckConstraint(
            f"status IN ({_STAGE_STATUSES})",
            name="ck_workflow_stages_valid_status",
        ),
        CheckConstraint(
            "rejection_reason IS NULL OR status = 'rejected'",
            name="ck_workflow_stages_rejection_reason",
        ),
        CheckConstraint(
            "payment_status IS NULL OR payment_status IN ('pending', 'completed', 'failed')",
            name="ck_workflow_stages_payment_status",
        ),
        # Entity inbox: current stages held by a legal entity
        Index("ix_workflow_stages_entity_current", "legal_entity_id", "is_current"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sequential_workflows.id"),
        nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    document_id: Mapped[str] = mapped_column(String(100), nullable=False)
    legal_entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    legal_entity_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_amount_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payment_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    workflow: Mapped["SequentialWorkflowModel"] = relationship(
        "SequentialWorkflowModel",
        back_populates="stages",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowStage {self.stage_number} doc={self.document_id} "
            f"status={self.status} current={self.is_current}>"
        )

    def to_dto(self) -> WorkflowStage:
        from workflow_kernel.domain.stage import PaymentStatus, StageStatus, WorkflowStage
        from workflow_kernel.domain.values import EntityId, Money

        amount = None
        if self.payment_amount_minor is not None:
            amount = Money(int(self.payment_amount_minor), self.payment_currency or "USD")

        return WorkflowStage(
            stage_number=self.stage_number,
            document_id=self.document_id,
            legal_entity_id=EntityId(self.legal_entity_id),
            legal_entity_name=self.legal_entity_name,
            status=StageStatus(self.status),
            is_current=self.is_current,
            can_start=self.can_start,
            payment_required=self.payment_required,
            payment_amount=amount,
            payment_status=PaymentStatus(self.payment_status) if self.payment_status else None,
            payment_reference=self.payment_reference,
            rejection_reason=self.rejection_reason,
            assigned_at=self.assigned_at,
            completed_at=self.completed_at,
            rejected_at=self.rejected_at,
            payment_completed_at=self.payment_completed_at,
            completed_by=self.completed_by,
            rejected_by=self.rejected_by,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowStage) -> WorkflowStageModel:
        model = cls(
            stage_number=dto.stage_number,
            document_id=dto.document_id,
            legal_entity_id=dto.legal_entity_id.value,
            legal_entity_name=dto.legal_entity_name,
        )
        model.apply(dto)
        return model

    def apply(self, dto: WorkflowStage) -> None:
        self.status = dto.status.value
        self.is_current = dto.is_current
        self.can_start = dto.can_start
        self.payment_required = dto.payment_required
        self.payment_amount_minor = dto.payment_amount.amount_minor if dto.payment_amount else None
        self.payment_currency = dto.payment_amount.currency if dto.payment_amount else None
        self.payment_status = dto.payment_status.value if dto.payment_status else None
        self.payment_reference = dto.payment_reference
        self.rejection_reason = dto.rejection_reason
        self.assigned_at = dto.assigned_at
        self.completed_at = dto.completed_at
        self.rejected_at = dto.rejected_at
        self.payment_completed_at = dto.payment_completed_at
        self.completed_by = dto.completed_by
        self.rejected_by = dto.rejected_by
        self.notes = dto.notes


class StageTransitionModel(Base):
    """Persistent stage transition record. Append-only.

    Contract:
        Rows are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "stage_transitions"

    __table_args__ = (
        UniqueConstraint(
            "envelope_id", "sequence",
            name="uq_stage_transitions_sequence",
        ),
        Index("ix_stage_transitions_envelope", "envelope_id", "sequence"),
    )

    envelope_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    event: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StageTransition envelope={self.envelope_id} #{self.sequence} "
            f"stage={self.stage_number} {self.from_status}->{self.to_status}>"
        )

    def to_dto(self) -> StageTransition:
        from workflow_kernel.domain.stage import StageStatus, StageTransition, TransitionEvent

        return StageTransition(
            envelope_id=self.envelope_id,
            stage_number=self.stage_number,
            event=TransitionEvent(self.event),
            from_status=StageStatus(self.from_status) if self.from_status else None,
            to_status=StageStatus(self.to_status),
            occurred_at=self.occurred_at,
            actor_id=self.actor_id,
            reason=self.reason,
        )

    @classmethod
    def from_dto(cls, dto: StageTransition, sequence: int) -> StageTransitionModel:
        return cls(
            envelope_id=dto.envelope_id,
            sequence=sequence,
            stage_number=dto.stage_number,
            event=dto.event.value,
            from_status=dto.from_status.value if dto.from_status else None,
            to_status=dto.to_status.value,
            actor_id=dto.actor_id,
            reason=dto.reason,
            occurred_at=dto.occurred_at,
        )


# =============================================================================
# ORM-Level Immutability for Transition History (Append-Only)
# =============================================================================


@event.listens_for(StageTransitionModel, "before_update")
def prevent_transition_update(mapper, connection, target):
    """Prevent updates to stage transition records."""
    raise ImmutabilityViolationError(
        entity_type="StageTransition",
        entity_id=str(target.id),
        reason="Stage transitions are immutable -- cannot modify",
    )


@event.listens_for(StageTransitionModel, "before_delete")
def prevent_transition_delete(mapper, connection, target):
    """Prevent deletion of stage transition records."""
    raise ImmutabilityViolationError(
        entity_type="StageTransition",
        entity_id=str(target.id),
        reason="Stage transitions are immutable -- cannot delete",
    )
