"""
workflow_kernel.services.workflow_repository -- Workflow persistence.

Responsibility:
    Loads and stores ``SequentialWorkflowData`` aggregates together with
    the transition records produced by each mutation.  Two implementations
    share one contract: ``SqlWorkflowRepository`` (SQLAlchemy, one
    transaction per call) and ``InMemoryWorkflowRepository`` (dict-backed,
    for tests and single-process use).

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    SW-5  -- Compare-and-swap on ``version``: ``save`` only succeeds when
             the stored version equals the aggregate's version, and bumps
             it by one.  Of two writers that read the same version exactly
             one wins; the other gets OptimisticLockError.
    SW-6  -- The aggregate and its transition records are written in the
             same transaction; history is append-only.
    SW-7  -- ``assert_workflow_valid`` runs before every write, so a
             structurally invalid aggregate is never persisted.

Failure modes:
    - WorkflowAlreadyExistsError on ``add`` for a known envelope.
    - WorkflowNotFoundError on ``save`` for an unknown envelope.
    - OptimisticLockError on a version conflict.
    - WorkflowInvariantError when the aggregate fails verification.
    - PersistenceError for any other database failure; nothing is written.
"""

from __future__ import annotations

import threading
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.invariants import assert_workflow_valid
from workflow_kernel.domain.stage import SequentialWorkflowData, StageTransition
from workflow_kernel.domain.values import EntityId
from workflow_kernel.exceptions import (
    OptimisticLockError,
    PersistenceError,
    WorkflowAlreadyExistsError,
    WorkflowInvariantError,
    WorkflowNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow import SequentialWorkflowModel, StageTransitionModel
from workflow_kernel.selectors.workflow_selector import WorkflowSelector

logger = get_logger("services.workflow_repository")

_ENTITY_TYPE = "SequentialWorkflow"


class WorkflowRepository(Protocol):
    """Storage contract used by the workflow service."""

    def get(self, envelope_id: UUID) -> SequentialWorkflowData | None:
        ...

    def add(
        self,
        workflow: SequentialWorkflowData,
        transitions: Sequence[StageTransition] = (),
    ) -> SequentialWorkflowData:
        """Persist a new aggregate; returns it with its first version."""
        ...

    def save(
        self,
        workflow: SequentialWorkflowData,
        transitions: Sequence[StageTransition] = (),
    ) -> SequentialWorkflowData:
        """Replace the stored aggregate if its version still matches."""
        ...

    def history(self, envelope_id: UUID) -> list[StageTransition]:
        ...

    def list_for_entity(self, entity_id: EntityId) -> list[SequentialWorkflowData]:
        ...

    def list_for_submitter(self, submitter_id: UUID) -> list[SequentialWorkflowData]:
        ...


class InMemoryWorkflowRepository:
    """Dict-backed repository.  All access is serialized by one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._workflows: dict[UUID, SequentialWorkflowData] = {}
        self._history: dict[UUID, list[StageTransition]] = {}

    def get(self, envelope_id: UUID) -> SequentialWorkflowData | None:
        with self._lock:
            return self._workflows.get(envelope_id)

    def add(
        self,
        workflow: SequentialWorkflowData,
        transitions: Sequence[StageTransition] = (),
    ) -> SequentialWorkflowData:
        assert_workflow_valid(workflow)
        with self._lock:
            if workflow.envelope_id in self._workflows:
                raise WorkflowAlreadyExistsError(str(workflow.envelope_id))
            stored = replace(workflow, version=1)
            self._workflows[workflow.envelope_id] = stored
            self._history[workflow.envelope_id] = list(transitions)
        return stored

    def save(
        self,
        workflow: SequentialWorkflowData,
        transitions: Sequence[StageTransition] = (),
    ) -> SequentialWorkflowData:
        assert_workflow_valid(workflow)
        with self._lock:
            current = self._workflows.get(workflow.envelope_id)
            if current is None:
                raise WorkflowNotFoundError(str(workflow.envelope_id))
            if current.version != workflow.version:
                raise OptimisticLockError(_ENTITY_TYPE, str(workflow.envelope_id))
            stored = replace(workflow, version=current.version + 1)
            self._workflows[workflow.envelope_id] = stored
            self._history[workflow.envelope_id].extend(transitions)
        return stored

    def history(self, envelope_id: UUID) -> list[StageTransition]:
        with self._lock:
            return list(self._history.get(envelope_id, ()))

    def list_for_entity(self, entity_id: EntityId) -> list[SequentialWorkflowData]:
        with self._lock:
            workflows = list(self._workflows.values())
        return [w for w in workflows if w.assigned_entity_id == entity_id]

    def list_for_submitter(self, submitter_id: UUID) -> list[SequentialWorkflowData]:
        with self._lock:
            workflows = list(self._workflows.values())
        return [w for w in workflows if w.submitter_id == submitter_id]


class SqlWorkflowRepository:
    """
    SQLAlchemy-backed repository.

    Contract:
        Every call opens its own transaction from ``session_factory`` and
        commits (or rolls back) before returning.  Returned aggregates are
        detached frozen DTOs.

    Guarantees:
        - ``save`` issues ``UPDATE ... WHERE version = :expected`` through the
          mapper's version counter; a concurrent writer causes
          OptimisticLockError, never a lost update.
        - Stage rows are updated in place, never recreated.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def get(self, envelope_id: UUID) -> SequentialWorkflowData | None:
        with self._read("get", envelope_id) as session:
            return WorkflowSelector(session).get(envelope_id)

    def add(
        self,
        workflow: SequentialWorkflowData,
        transitions: Sequence[StageTransition] = (),
    ) -> SequentialWorkflowData:
        assert_workflow_valid(workflow)
        envelope_id = workflow.envelope_id
        try:
            with session_scope(self._session_factory) as session:
                if WorkflowSelector(session).exists(envelope_id):
                    raise WorkflowAlreadyExistsError(str(envelope_id))
                model = SequentialWorkflowModel.from_dto(workflow, self._clock.now())
                session.add(model)
                self._append_history(session, envelope_id, transitions, start=0)
                session.flush()
                stored = model.to_dto()
        except IntegrityError as exc:
            raise WorkflowAlreadyExistsError(str(envelope_id)) from exc
        except SQLAlchemyError as exc:
            self._log_failure("add", envelope_id)
            raise PersistenceError(str(envelope_id), "add") from exc

        logger.debug(
            "workflow_persisted",
            extra={"envelope_id": str(envelope_id), "version": stored.version},
        )
        return stored

    def save(
        self,
        workflow: SequentialWorkflowData,
        transitions: Sequence[StageTransition] = (),
    ) -> SequentialWorkflowData:
        assert_workflow_valid(workflow)
        envelope_id = workflow.envelope_id
        try:
            with session_scope(self._session_factory) as session:
                model = session.execute(
                    select(SequentialWorkflowModel)
                    .where(SequentialWorkflowModel.envelope_id == envelope_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if model is None:
                    raise WorkflowNotFoundError(str(envelope_id))
                if model.version != workflow.version:
                    raise OptimisticLockError(_ENTITY_TYPE, str(envelope_id))
                if len(model.stages) != workflow.total_stages:
                    raise WorkflowInvariantError(
                        str(envelope_id),
                        [
                            f"stage count changed from {len(model.stages)} "
                            f"to {workflow.total_stages}"
                        ],
                    )

                model.apply(workflow, self._clock.now())
                start = WorkflowSelector(session).last_sequence(envelope_id)
                self._append_history(session, envelope_id, transitions, start=start)
                session.flush()
                stored = model.to_dto()
        except (StaleDataError, IntegrityError) as exc:
            # A concurrent writer bumped the row version or took the same
            # history sequence numbers first.
            raise OptimisticLockError(_ENTITY_TYPE, str(envelope_id)) from exc
        except SQLAlchemyError as exc:
            self._log_failure("save", envelope_id)
            raise PersistenceError(str(envelope_id), "save") from exc

        logger.debug(
            "workflow_persisted",
            extra={"envelope_id": str(envelope_id), "version": stored.version},
        )
        return stored

    def history(self, envelope_id: UUID) -> list[StageTransition]:
        with self._read("history", envelope_id) as session:
            return WorkflowSelector(session).history(envelope_id)

    def list_for_entity(self, entity_id: EntityId) -> list[SequentialWorkflowData]:
        with self._read("list_for_entity", None) as session:
            return WorkflowSelector(session).awaiting_entity(entity_id)

    def list_for_submitter(self, submitter_id: UUID) -> list[SequentialWorkflowData]:
        with self._read("list_for_submitter", None) as session:
            return WorkflowSelector(session).for_submitter(submitter_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _read(
        self, operation: str, envelope_id: UUID | None
    ) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as exc:
            self._log_failure(operation, envelope_id)
            raise PersistenceError(str(envelope_id), operation) from exc
        finally:
            session.close()

    @staticmethod
    def _append_history(
        session: Session,
        envelope_id: UUID,
        transitions: Sequence[StageTransition],
        start: int,
    ) -> None:
        for offset, transition in enumerate(transitions, start=1):
            session.add(StageTransitionModel.from_dto(transition, start + offset))

    @staticmethod
    def _log_failure(operation: str, envelope_id: UUID | None) -> None:
        logger.error(
            "workflow_persistence_failed",
            exc_info=True,
            extra={
                "operation": operation,
                "envelope_id": str(envelope_id) if envelope_id else None,
            },
        )
