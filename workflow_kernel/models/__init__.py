"""ORM models for the workflow kernel."""

from workflow_kernel.models.workflow import (
    SequentialWorkflowModel,
    StageTransitionModel,
    WorkflowStageModel,
)

__all__ = [
    "SequentialWorkflowModel",
    "StageTransitionModel",
    "WorkflowStageModel",
]
