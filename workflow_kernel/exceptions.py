"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow engine (portal views, entity inboxes, payment
webhooks) must react differently to each failure:

  - A stale stage means "re-read the envelope and try again".
  - A refused actor means "tell the user", never retry.
  - An invalid transition means an integration bug: log it loudly.

Every error therefore has a TYPED class, a machine-readable ``code``
class attribute and structured attributes instead of a message to parse.

    try:
        service.complete_current_stage(envelope_id, 2, actor_id)
    except StaleStageError as e:
        workflow = service.get_workflow_status(e.envelope_id)   # re-fetch
    except NotAuthorizedError as e:
        api_response(code=e.code, stage=e.stage_number)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- BuildError
    |   +-- EmptyWorkflowError
    |   +-- DuplicateStageDocumentError
    |   +-- MixedFeeCurrencyError
    |   +-- UnknownLegalEntityError
    |   +-- UnknownGoodError
    |
    +-- WorkflowError
    |   +-- WorkflowNotFoundError
    |   +-- WorkflowAlreadyExistsError
    |   +-- InvalidTransitionError
    |   +-- StaleStageError
    |   +-- WorkflowInvariantError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |
    +-- PaymentError
    |   +-- PaymentMismatchError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- PersistenceError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Build           | EMPTY_WORKFLOW              | No documents to build stages from
                | DUPLICATE_STAGE_DOCUMENT    | Same document listed twice
                | MIXED_FEE_CURRENCY          | Stage fees in more than one currency
                | UNKNOWN_LEGAL_ENTITY        | Entity code missing from directory
                | UNKNOWN_GOOD                | Good id missing from document catalog
----------------|-----------------------------|-----------------------------------------
Workflow        | WORKFLOW_NOT_FOUND          | No workflow persisted for envelope
                | WORKFLOW_ALREADY_EXISTS     | start_workflow on a started envelope
                | INVALID_TRANSITION          | Transition not in the stage table
                | STALE_STAGE                 | Acting on a non-current stage number
                | WORKFLOW_INVARIANT_BROKEN   | Aggregate fails structural checks
----------------|-----------------------------|-----------------------------------------
Authorization   | NOT_AUTHORIZED              | Actor lacks capability for the stage
----------------|-----------------------------|-----------------------------------------
Payment         | PAYMENT_MISMATCH            | Amount/currency differs from the stage
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Row version changed under the caller
----------------|-----------------------------|-----------------------------------------
Persistence     | PERSISTENCE_FAILURE         | Unexpected database failure
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Editing transition history

===============================================================================
HANDLING PATTERNS
===============================================================================

1. StaleStageError and OptimisticLockError are recoverable: re-read the
   aggregate and decide again.  They are never retried blindly with the
   same stage number.
2. NotAuthorizedError is surfaced to the user and not retried.
3. InvalidTransitionError and PaymentMismatchError leave the aggregate
   untouched; they indicate an integration problem upstream.
4. PersistenceError means the outcome is unknown to the caller: retry
   from a fresh read, never assume partial success.
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Build-related exceptions


class BuildError(WorkflowKernelError):
    """Base exception for workflow construction errors."""

    code: str = "BUILD_ERROR"


class EmptyWorkflowError(BuildError):
    """A workflow must have at least one stage."""

    code: str = "EMPTY_WORKFLOW"

    def __init__(self, envelope_id: str):
        self.envelope_id = envelope_id
        super().__init__(
            f"Cannot build workflow for envelope {envelope_id}: "
            "no required documents"
        )


class DuplicateStageDocumentError(BuildError):
    """The same document appears twice in the builder input."""

    code: str = "DUPLICATE_STAGE_DOCUMENT"

    def __init__(self, envelope_id: str, document_id: str):
        self.envelope_id = envelope_id
        self.document_id = document_id
        super().__init__(
            f"Document {document_id} listed more than once for "
            f"envelope {envelope_id}"
        )


class MixedFeeCurrencyError(BuildError):
    """Stage fees of one envelope must share a currency."""

    code: str = "MIXED_FEE_CURRENCY"

    def __init__(self, envelope_id: str, document_id: str, currency: str, expected: str):
        self.envelope_id = envelope_id
        self.document_id = document_id
        self.currency = currency
        self.expected = expected
        super().__init__(
            f"Document {document_id} charges its fee in {currency}; "
            f"envelope {envelope_id} already charges fees in {expected}"
        )


class UnknownLegalEntityError(BuildError):
    """A legal-entity code is not present in the entity directory."""

    code: str = "UNKNOWN_LEGAL_ENTITY"

    def __init__(self, entity_code: str):
        self.entity_code = entity_code
        super().__init__(f"Unknown legal entity code: {entity_code}")


class UnknownGoodError(BuildError):
    """A selected good is not in the document catalog."""

    code: str = "UNKNOWN_GOOD"

    def __init__(self, good_id: str):
        self.good_id = good_id
        super().__init__(f"Unknown good: {good_id}")


# Workflow-related exceptions


class WorkflowError(WorkflowKernelError):
    """Base exception for workflow lifecycle errors."""

    code: str = "WORKFLOW_ERROR"


class WorkflowNotFoundError(WorkflowError):
    """No workflow has been started for the envelope."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, envelope_id: str):
        self.envelope_id = envelope_id
        super().__init__(f"No workflow found for envelope {envelope_id}")


class WorkflowAlreadyExistsError(WorkflowError):
    """A workflow is already persisted for the envelope."""

    code: str = "WORKFLOW_ALREADY_EXISTS"

    def __init__(self, envelope_id: str):
        self.envelope_id = envelope_id
        super().__init__(
            f"Workflow already started for envelope {envelope_id}"
        )


class InvalidTransitionError(WorkflowError):
    """
    The requested event is not allowed from the stage's current status.

    Raised for rejecting an already-completed stage, paying a stage that
    does not require payment, acting on a terminal workflow, and so on.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        envelope_id: str,
        stage_number: int | None,
        from_status: str,
        event: str,
        reason: str = "",
    ):
        self.envelope_id = envelope_id
        self.stage_number = stage_number
        self.from_status = from_status
        self.event = event
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Invalid transition '{event}' from '{from_status}' on "
            f"envelope {envelope_id} stage {stage_number}{detail}"
        )


class StaleStageError(WorkflowError):
    """
    The caller acted on a stage that is no longer current.

    Recoverable: re-read the workflow and decide again.
    """

    code: str = "STALE_STAGE"

    def __init__(
        self,
        envelope_id: str,
        requested_stage: int,
        current_stage: int | None,
    ):
        self.envelope_id = envelope_id
        self.requested_stage = requested_stage
        self.current_stage = current_stage
        super().__init__(
            f"Stage {requested_stage} of envelope {envelope_id} is not "
            f"current (current stage: {current_stage})"
        )


class WorkflowInvariantError(WorkflowError):
    """An aggregate failed its structural invariant checks."""

    code: str = "WORKFLOW_INVARIANT_BROKEN"

    def __init__(self, envelope_id: str, violations: list[str]):
        self.envelope_id = envelope_id
        self.violations = violations
        super().__init__(
            f"Workflow for envelope {envelope_id} violates "
            f"{len(violations)} invariant(s): {'; '.join(violations)}"
        )


# Authorization-related exceptions


class AuthorizationError(WorkflowKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor lacks the capability to act on this stage right now."""

    code: str = "NOT_AUTHORIZED"

    def __init__(
        self,
        envelope_id: str,
        stage_number: int,
        actor_id: str,
        action: str,
    ):
        self.envelope_id = envelope_id
        self.stage_number = stage_number
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Actor {actor_id} may not {action} stage {stage_number} "
            f"of envelope {envelope_id}"
        )


# Payment-related exceptions


class PaymentError(WorkflowKernelError):
    """Base exception for stage payment errors."""

    code: str = "PAYMENT_ERROR"


class PaymentMismatchError(PaymentError):
    """Reported payment does not match the stage's expected charge."""

    code: str = "PAYMENT_MISMATCH"

    def __init__(
        self,
        envelope_id: str,
        stage_number: int,
        expected: str,
        received: str,
    ):
        self.envelope_id = envelope_id
        self.stage_number = stage_number
        self.expected = expected
        self.received = received
        super().__init__(
            f"Payment mismatch on envelope {envelope_id} stage "
            f"{stage_number}: expected {expected}, received {received}"
        )


# Concurrency-related exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Persistence-related exceptions


class PersistenceError(WorkflowKernelError):
    """
    Unexpected failure at the persistence boundary.

    The outcome of the operation is unknown to the caller; it must retry
    from a fresh read.
    """

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, envelope_id: str, operation: str):
        self.envelope_id = envelope_id
        self.operation = operation
        super().__init__(
            f"Persistence failure during {operation} for envelope "
            f"{envelope_id}"
        )


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
