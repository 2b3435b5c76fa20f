"""Approval workflow service module."""

from approvalflow.services.approval.definitions import (
    DEFAULT_FLOW,
    FlowDefinitionSource,
    JsonFileFlowDefinitionSource,
    StaticFlowDefinitionSource,
    materialize_steps,
    parse_flow_definition,
)
from approvalflow.services.approval.errors import (
    Forbidden,
    InvalidAction,
    InvalidDefinition,
    InvalidState,
    NotFound,
    RequestNotFound,
    WorkflowError,
)
from approvalflow.services.approval.notifier import (
    LoggingNotifier,
    Notifier,
    WebhookNotifier,
)
from approvalflow.services.approval.scheduler import (
    AsyncioSLAScheduler,
    ManualSLAScheduler,
    SLAScheduler,
)
from approvalflow.services.approval.schemas import (
    ApprovalRequest,
    ArmedTimer,
    FlowDefinition,
    HistoryAction,
    HistoryEntry,
    RequestStatus,
    StepAction,
    StepInstance,
    StepTemplate,
    TimeoutPolicy,
)
from approvalflow.services.approval.store import InMemoryRequestStore, RequestStore
from approvalflow.services.approval.workflow import (
    ApprovalWorkflowEngine,
    build_approval_workflow_engine,
    get_approval_workflow_engine,
    reset_approval_workflow_engine,
)

__all__ = [
    # Enums
    "RequestStatus",
    "StepAction",
    "HistoryAction",
    # Definitions
    "FlowDefinition",
    "StepTemplate",
    "TimeoutPolicy",
    "DEFAULT_FLOW",
    "FlowDefinitionSource",
    "StaticFlowDefinitionSource",
    "JsonFileFlowDefinitionSource",
    "parse_flow_definition",
    "materialize_steps",
    # Aggregate
    "ApprovalRequest",
    "StepInstance",
    "HistoryEntry",
    "ArmedTimer",
    # Errors
    "WorkflowError",
    "InvalidDefinition",
    "RequestNotFound",
    "NotFound",
    "InvalidState",
    "Forbidden",
    "InvalidAction",
    # Collaborators
    "RequestStore",
    "InMemoryRequestStore",
    "SLAScheduler",
    "AsyncioSLAScheduler",
    "ManualSLAScheduler",
    "Notifier",
    "LoggingNotifier",
    "WebhookNotifier",
    # Engine
    "ApprovalWorkflowEngine",
    "build_approval_workflow_engine",
    "get_approval_workflow_engine",
    "reset_approval_workflow_engine",
]
