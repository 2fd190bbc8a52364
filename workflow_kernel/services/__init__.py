"""Services for the workflow kernel (write side)."""

from workflow_kernel.services.workflow_repository import (
    InMemoryWorkflowRepository,
    SqlWorkflowRepository,
    WorkflowRepository,
)
from workflow_kernel.services.workflow_service import SequentialWorkflowService

__all__ = [
    "InMemoryWorkflowRepository",
    "SequentialWorkflowService",
    "SqlWorkflowRepository",
    "WorkflowRepository",
]
