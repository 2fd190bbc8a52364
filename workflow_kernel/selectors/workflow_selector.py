"""
Workflow read queries.

Returns the frozen domain aggregate and history records, never ORM rows.
Used by the SQL repository for its reads and directly by dashboards that
already hold a session.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from workflow_kernel.domain.projector import WorkflowProjection, project_workflow
from workflow_kernel.domain.stage import (
    SequentialWorkflowData,
    StageTransition,
    WorkflowStatus,
)
from workflow_kernel.domain.values import EntityId
from workflow_kernel.models.workflow import (
    SequentialWorkflowModel,
    StageTransitionModel,
    WorkflowStageModel,
)
from workflow_kernel.selectors.base import BaseSelector


class WorkflowSelector(BaseSelector[SequentialWorkflowModel]):
    """Read-only access to persisted workflows."""

    def get(self, envelope_id: UUID) -> SequentialWorkflowData | None:
        model = self.session.execute(
            select(SequentialWorkflowModel).where(
                SequentialWorkflowModel.envelope_id == envelope_id
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def exists(self, envelope_id: UUID) -> bool:
        return self.session.scalar(
            select(SequentialWorkflowModel.id).where(
                SequentialWorkflowModel.envelope_id == envelope_id
            )
        ) is not None

    def projection(self, envelope_id: UUID) -> WorkflowProjection | None:
        workflow = self.get(envelope_id)
        if workflow is None:
            return None
        return project_workflow(workflow.stages)

    def history(self, envelope_id: UUID) -> list[StageTransition]:
        """Transition records for an envelope, oldest first."""
        rows = self.session.execute(
            select(StageTransitionModel)
            .where(StageTransitionModel.envelope_id == envelope_id)
            .order_by(StageTransitionModel.sequence)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def last_sequence(self, envelope_id: UUID) -> int:
        rows = self.session.execute(
            select(StageTransitionModel.sequence)
            .where(StageTransitionModel.envelope_id == envelope_id)
            .order_by(StageTransitionModel.sequence.desc())
            .limit(1)
        ).scalars().all()
        return rows[0] if rows else 0

    def awaiting_entity(self, entity_id: EntityId) -> list[SequentialWorkflowData]:
        """In-progress workflows whose current stage belongs to the entity."""
        rows = self.session.execute(
            select(SequentialWorkflowModel)
            .join(WorkflowStageModel, WorkflowStageModel.workflow_id == SequentialWorkflowModel.id)
            .where(
                WorkflowStageModel.legal_entity_id == entity_id.value,
                WorkflowStageModel.is_current.is_(True),
                SequentialWorkflowModel.workflow_status == WorkflowStatus.IN_PROGRESS.value,
            )
            .order_by(SequentialWorkflowModel.created_at, SequentialWorkflowModel.envelope_id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def for_submitter(self, submitter_id: UUID) -> list[SequentialWorkflowData]:
        rows = self.session.execute(
            select(SequentialWorkflowModel)
            .where(SequentialWorkflowModel.submitter_id == submitter_id)
            .order_by(SequentialWorkflowModel.created_at, SequentialWorkflowModel.envelope_id)
        ).scalars().all()
        return [row.to_dto() for row in rows]
