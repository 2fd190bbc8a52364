"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- Structured logging configured once per session, plus a log capture fixture
- A deterministic clock
- Legal entities, actors and a static actor directory
- Required-document factories
- In-memory and SQLite-backed repositories, and a service over either

The SQL fixtures use in-memory SQLite; the schema is portable to
PostgreSQL (``pip install .[postgres]`` and set WORKFLOW_TEST_DATABASE_URL).
"""

import json
import logging
import os
from dataclasses import dataclass
from io import StringIO
from uuid import uuid4

import pytest

from workflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.domain.authorization import StaticActorDirectory
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.events import WorkflowEventBus
from workflow_kernel.domain.stage import PaymentResult, RequiredDocument
from workflow_kernel.domain.values import Actor, ActorRole, EntityId, Money
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.services.workflow_repository import (
    InMemoryWorkflowRepository,
    SqlWorkflowRepository,
)
from workflow_kernel.services.workflow_service import SequentialWorkflowService

# Entity ids from the default configuration set
SCA = EntityId("0091e7e1-1c0d-4bf0-a885-eae3e4278f20")  # Sudan Customs Authority
MTI = EntityId("e8406e0f-1049-4077-a9f4-9793d164f834")  # Ministry of Trade & Industry
COC = EntityId("fb12cb60-9f2a-47fc-90fa-f07841331962")  # Chamber of Commerce

ENTITY_NAMES = {
    SCA: "Sudan Customs Authority",
    MTI: "Ministry of Trade & Industry",
    COC: "Chamber of Commerce",
}

DEFAULT_OWNERS = (SCA, MTI, COC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.complete_current_stage(...)
            logs = captured_logs()
            assert any(r["message"] == "stage_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


# =============================================================================
# Actors
# =============================================================================


@dataclass(frozen=True)
class Actors:
    submitter: Actor
    other_submitter: Actor
    sca_officer: Actor
    mti_officer: Actor
    coc_officer: Actor
    admin: Actor

    def officer_for(self, entity_id: EntityId) -> Actor:
        return {
            SCA: self.sca_officer,
            MTI: self.mti_officer,
            COC: self.coc_officer,
        }[entity_id]


@pytest.fixture
def actors():
    return Actors(
        submitter=Actor(uuid4(), ActorRole.SUBMITTER),
        other_submitter=Actor(uuid4(), ActorRole.SUBMITTER),
        sca_officer=Actor(uuid4(), ActorRole.LEGAL_ENTITY, SCA),
        mti_officer=Actor(uuid4(), ActorRole.LEGAL_ENTITY, MTI),
        coc_officer=Actor(uuid4(), ActorRole.LEGAL_ENTITY, COC),
        admin=Actor(uuid4(), ActorRole.ADMIN),
    )


@pytest.fixture
def actor_directory(actors):
    return StaticActorDirectory(
        [
            actors.submitter,
            actors.other_submitter,
            actors.sca_officer,
            actors.mti_officer,
            actors.coc_officer,
            actors.admin,
        ]
    )


# =============================================================================
# Builder input
# =============================================================================


def make_documents(fees=(None, None, None), owners=None, prefix="doc"):
    """One RequiredDocument per fee; owners cycle through SCA, MTI, COC."""
    owners = owners or DEFAULT_OWNERS
    documents = []
    for i, fee in enumerate(fees):
        owner = owners[i % len(owners)]
        documents.append(
            RequiredDocument(
                id=f"{prefix}_{i + 1}",
                name=f"Document {i + 1}",
                legal_entity_id=owner,
                legal_entity_name=ENTITY_NAMES.get(owner, "Entity"),
                fee=Money(fee) if fee is not None else None,
            )
        )
    return documents


@pytest.fixture
def documents_factory():
    return make_documents


def paid(amount_minor, reference="pay-001", payer_id=None, succeeded=True, currency="USD"):
    """Build a PaymentResult."""
    return PaymentResult(
        payment_reference=reference,
        succeeded=succeeded,
        amount=Money(amount_minor, currency),
        payer_id=payer_id,
        failure_reason="" if succeeded else "card declined",
    )


# =============================================================================
# Repositories and service
# =============================================================================


@pytest.fixture
def sql_engine():
    """Fresh schema per test on in-memory SQLite (or WORKFLOW_TEST_DATABASE_URL)."""
    engine = init_engine_from_url(os.environ.get("WORKFLOW_TEST_DATABASE_URL", "sqlite://"))
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(sql_engine):
    return get_session_factory()


@pytest.fixture
def sql_repository(session_factory, clock):
    return SqlWorkflowRepository(session_factory, clock=clock)


@pytest.fixture
def memory_repository():
    return InMemoryWorkflowRepository()


@pytest.fixture(params=["memory", "sql"])
def repository(request):
    """Every service test runs against both repository implementations."""
    if request.param == "memory":
        return request.getfixturevalue("memory_repository")
    return request.getfixturevalue("sql_repository")


@pytest.fixture
def event_bus():
    return WorkflowEventBus()


@pytest.fixture
def published(event_bus):
    """List of WorkflowChanged events delivered on the bus."""
    events = []
    event_bus.subscribe(events.append)
    return events


@pytest.fixture
def service(repository, actor_directory, clock, event_bus):
    return SequentialWorkflowService(
        repository=repository,
        actor_directory=actor_directory,
        clock=clock,
        event_bus=event_bus,
    )


@pytest.fixture
def start_envelope(service, actors):
    """
    Build and start a workflow for a new envelope.

    Usage::

        workflow = start_envelope(fees=(5000, None))
    """

    def _start(fees=(None, None, None), owners=None, submitter_id=None):
        envelope_id = uuid4()
        built = service.build_workflow(
            make_documents(fees, owners), envelope_id, f"ACID-{envelope_id.hex[:8]}"
        )
        return service.start_workflow(
            built,
            submitter_id=submitter_id or actors.submitter.actor_id,
        )

    return _start


@pytest.fixture
def payment():
    """Factory for PaymentResult values (see ``paid``)."""
    return paid
