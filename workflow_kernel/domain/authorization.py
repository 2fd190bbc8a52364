"""
Authorization gate (``workflow_kernel.domain.authorization``).

Answers "may this actor act on this stage right now".  Approval and
rejection belong to the legal entity that owns the stage; paying a
stage's fee is a separate capability held by the envelope's submitter.

Also defines the ``ActorDirectory`` protocol through which the engine
resolves an ``actor_id`` into an ``Actor`` (role + entity membership),
and a dict-backed implementation.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from workflow_kernel.domain.stage import (
    DECIDABLE_STAGE_STATUSES,
    SequentialWorkflowData,
    StageStatus,
    WorkflowStage,
)
from workflow_kernel.domain.values import Actor, ActorRole


def can_act_on_stage(stage: WorkflowStage, actor: Actor | None) -> bool:
    """Approve/reject/begin-review capability."""
    if actor is None:
        return False
    return (
        actor.role == ActorRole.LEGAL_ENTITY
        and actor.legal_entity_id is not None
        and actor.legal_entity_id == stage.legal_entity_id
        and stage.is_current
        and stage.can_start
        and stage.status in DECIDABLE_STAGE_STATUSES
    )


def can_pay_for_stage(
    workflow: SequentialWorkflowData,
    stage: WorkflowStage,
    actor: Actor | None,
) -> bool:
    """Payment capability: the originating submitter on a current, unpaid stage.

    When the workflow was started without a recorded submitter, any actor
    with the submitter role may pay.
    """
    if actor is None or actor.role != ActorRole.SUBMITTER:
        return False
    if workflow.submitter_id is not None and actor.actor_id != workflow.submitter_id:
        return False
    return (
        stage.is_current
        and stage.can_start
        and stage.payment_required
        and stage.status == StageStatus.PAYMENT_REQUIRED
    )


class ActorDirectory(Protocol):
    """Pluggable interface to the identity provider."""

    def get_actor(self, actor_id: UUID) -> Actor | None:
        """Return the actor, or None if unknown."""
        ...


class StaticActorDirectory:
    """In-memory ActorDirectory, for tests and single-process deployments."""

    def __init__(self, actors: Iterable[Actor] = ()) -> None:
        self._actors: dict[UUID, Actor] = {a.actor_id: a for a in actors}

    def register(self, actor: Actor) -> Actor:
        self._actors[actor.actor_id] = actor
        return actor

    def get_actor(self, actor_id: UUID) -> Actor | None:
        return self._actors.get(actor_id)
