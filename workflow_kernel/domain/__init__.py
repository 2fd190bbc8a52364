"""
Pure domain layer.

This module contains the workflow value objects and transition logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time
- I/O

All domain objects are immutable and deterministic.
"""

from workflow_kernel.domain.authorization import (
    ActorDirectory,
    StaticActorDirectory,
    can_act_on_stage,
    can_pay_for_stage,
)
from workflow_kernel.domain.builder import build_workflow, initial_stage_status
from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.events import (
    WorkflowChanged,
    WorkflowEventBus,
    WorkflowEventType,
)
from workflow_kernel.domain.invariants import assert_workflow_valid, verify_workflow
from workflow_kernel.domain.projector import (
    DisplayStatus,
    EnvelopeRoutingStatus,
    WorkflowProjection,
    project_workflow,
)
from workflow_kernel.domain.stage import (
    STAGE_TRANSITIONS,
    PaymentResult,
    PaymentStatus,
    RequiredDocument,
    SequentialWorkflowData,
    StageStatus,
    StageTransition,
    TransitionEvent,
    WorkflowStage,
    WorkflowStatus,
)
from workflow_kernel.domain.values import Actor, ActorRole, EntityId, Money

__all__ = [
    "STAGE_TRANSITIONS",
    "Actor",
    "ActorDirectory",
    "ActorRole",
    "Clock",
    "DeterministicClock",
    "DisplayStatus",
    "EntityId",
    "EnvelopeRoutingStatus",
    "Money",
    "PaymentResult",
    "PaymentStatus",
    "RequiredDocument",
    "SequentialWorkflowData",
    "StageStatus",
    "StageTransition",
    "StaticActorDirectory",
    "SystemClock",
    "TransitionEvent",
    "WorkflowChanged",
    "WorkflowEventBus",
    "WorkflowEventType",
    "WorkflowProjection",
    "WorkflowStage",
    "WorkflowStatus",
    "assert_workflow_valid",
    "build_workflow",
    "can_act_on_stage",
    "can_pay_for_stage",
    "initial_stage_status",
    "project_workflow",
    "verify_workflow",
]
