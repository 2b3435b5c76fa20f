"""Approval workflow schemas.

Flow definitions are frozen pydantic models validated on load. The request
aggregate and its parts are plain dataclasses owned and mutated by the
workflow engine; the ``*View``/``*Response`` models are the API shapes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class RequestStatus(str, Enum):
    """Approval request status."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED}
)


class StepAction(str, Enum):
    """Actions an approver can take on a step."""

    APPROVE = "approve"
    REJECT = "reject"


SUPPORTED_ACTIONS: frozenset[str] = frozenset(a.value for a in StepAction)

# One year
MAX_SLA_HOURS = 24 * 365


class HistoryAction(str, Enum):
    """Action names recorded in request history."""

    SUBMIT = "submit"
    CANCEL = "cancel"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SLA_TIMEOUT = "SLA_TIMEOUT"
    ESCALATE = "ESCALATE"


# Flow definitions


class TimeoutPolicy(BaseModel):
    """What happens when a step's SLA elapses."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    escalate_to: str = Field(
        ..., alias="escalateTo", min_length=1, description="Role to escalate to"
    )


class StepTemplate(BaseModel):
    """One step of a flow definition."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    step_id: str = Field(..., alias="stepId", min_length=1, description="Step ID")
    role: str = Field(..., min_length=1, description="Role that acts on this step")
    actions: frozenset[str] = Field(
        ..., min_length=1, description="Actions allowed at this step"
    )
    sla_hours: float | None = Field(
        default=None,
        alias="slaHours",
        ge=0,
        le=MAX_SLA_HOURS,
        allow_inf_nan=False,
        description="SLA in hours (0 = none)",
    )
    required: bool = Field(
        default=True, description="Optional steps only run for two-step requests"
    )
    on_timeout: TimeoutPolicy | None = Field(
        default=None, alias="onTimeout", description="Escalation on SLA breach"
    )

    @field_validator("actions", mode="before")
    @classmethod
    def normalize_actions(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(a).strip().lower() for a in value)
        return value

    @field_validator("actions")
    @classmethod
    def check_supported_actions(cls, value: frozenset[str]) -> frozenset[str]:
        unsupported = value - SUPPORTED_ACTIONS
        if unsupported:
            raise ValueError(
                f"Unsupported actions: {', '.join(sorted(unsupported))} "
                f"(supported: {', '.join(sorted(SUPPORTED_ACTIONS))})"
            )
        return value


class FlowDefinition(BaseModel):
    """Static description of an approval pipeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    flow_id: str = Field(..., alias="flowId", min_length=1, description="Flow ID")
    name: str | None = Field(default=None, description="Display name")
    description: str | None = Field(default=None, description="Description")
    steps: tuple[StepTemplate, ...] = Field(
        ..., min_length=1, description="Ordered step templates"
    )

    @model_validator(mode="after")
    def check_unique_step_ids(self) -> "FlowDefinition":
        seen: set[str] = set()
        for step in self.steps:
            if step.step_id in seen:
                raise ValueError(f"Duplicate step ID: {step.step_id}")
            seen.add(step.step_id)
        return self


# Request aggregate


@dataclass
class StepInstance:
    """A step cloned from its template when a request is submitted."""

    step_id: str
    role: str
    actions: frozenset[str]
    sla_hours: float | None = None
    required: bool = True
    on_timeout: TimeoutPolicy | None = None
    escalated_to: str | None = None

    @classmethod
    def from_template(cls, template: StepTemplate) -> "StepInstance":
        return cls(
            step_id=template.step_id,
            role=template.role,
            actions=frozenset(template.actions),
            sla_hours=template.sla_hours,
            required=template.required,
            on_timeout=template.on_timeout,
        )

    @property
    def effective_role(self) -> str:
        """Role currently expected to act on this step."""
        return expected_role(self)

    @property
    def is_escalated(self) -> bool:
        return self.escalated_to is not None


def expected_role(step: StepInstance) -> str:
    """Escalation target if the step was escalated, else its base role."""
    return step.escalated_to or step.role


@dataclass(frozen=True)
class HistoryEntry:
    """One append-only entry in a request's history."""

    at: datetime
    actor: str
    action: str
    role: str | None = None
    step_id: str | None = None
    comment: str | None = None
    detail: dict[str, Any] | None = None


@dataclass(frozen=True)
class ArmedTimer:
    """Handle for the SLA timer guarding one step of a request."""

    request_id: str
    step_index: int
    deadline: datetime


@dataclass
class ApprovalRequest:
    """In-flight or terminal approval request."""

    id: str
    type: str
    created_by: str
    payload: dict[str, Any]
    flow_id: str
    steps: list[StepInstance]
    created_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    current_step_index: int = 0
    history: list[HistoryEntry] = field(default_factory=list)
    active_timer: ArmedTimer | None = None
    sla_deadline: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self) -> StepInstance | None:
        """Active step, or None when the index is out of range."""
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def is_final_step(self) -> bool:
        return self.current_step_index == len(self.steps) - 1

    def is_overdue(self, now: datetime) -> bool:
        """Pending and past the active step's SLA deadline."""
        return (
            self.status == RequestStatus.PENDING
            and self.sla_deadline is not None
            and self.sla_deadline <= now
        )

    def is_approaching_deadline(self, now: datetime, within: timedelta) -> bool:
        """Pending with the SLA deadline still ahead but no further than ``within``."""
        return (
            self.status == RequestStatus.PENDING
            and self.sla_deadline is not None
            and now < self.sla_deadline <= now + within
        )

    def record(self, entry: HistoryEntry) -> None:
        self.history.append(entry)


# API schemas


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmitRequestBody(_CamelModel):
    """Submit a new approval request."""

    type: str = Field(..., min_length=1, max_length=100, description="Request type")
    created_by: str = Field(..., min_length=1, description="Requester ID")
    payload: dict[str, Any] = Field(default_factory=dict, description="Request data")


class ActionRequestBody(_CamelModel):
    """Approve or reject the active step."""

    actor: str = Field(..., min_length=1, description="Acting user ID")
    role: str = Field(..., min_length=1, description="Acting user's role")
    action: str = Field(..., min_length=1, description="Action to take")
    comment: str | None = Field(default=None, max_length=1000, description="Comment")


class CancelRequestBody(_CamelModel):
    """Cancel a pending request."""

    actor: str = Field(..., min_length=1, description="Acting user ID")
    role: str = Field(..., min_length=1, description="Acting user's role")
    comment: str = Field(
        default="Request cancelled by requestor", max_length=1000, description="Reason"
    )


class StepView(_CamelModel):
    """Step as seen by API clients."""

    step_id: str
    role: str
    effective_role: str
    actions: list[str]
    sla_hours: float | None = None
    escalated_to: str | None = None

    @classmethod
    def from_step(cls, step: StepInstance) -> "StepView":
        return cls(
            step_id=step.step_id,
            role=step.role,
            effective_role=step.effective_role,
            actions=sorted(step.actions),
            sla_hours=step.sla_hours,
            escalated_to=step.escalated_to,
        )


class HistoryEntryView(_CamelModel):
    """History entry as seen by API clients."""

    at: datetime
    actor: str
    action: str
    role: str | None = None
    step_id: str | None = None
    comment: str | None = None
    detail: dict[str, Any] | None = None

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> "HistoryEntryView":
        return cls(
            at=entry.at,
            actor=entry.actor,
            action=entry.action,
            role=entry.role,
            step_id=entry.step_id,
            comment=entry.comment,
            detail=entry.detail,
        )


class RequestSummary(_CamelModel):
    """Result of submit/act/cancel."""

    id: str
    status: RequestStatus
    current_step: StepView | None = None

    @classmethod
    def from_request(cls, request: ApprovalRequest) -> "RequestSummary":
        step = request.current_step if not request.is_terminal else None
        return cls(
            id=request.id,
            status=request.status,
            current_step=StepView.from_step(step) if step else None,
        )


class RequestDetail(_CamelModel):
    """Full request detail."""

    id: str
    type: str
    flow_id: str
    created_by: str
    created_at: datetime
    completed_at: datetime | None = None
    payload: dict[str, Any]
    status: RequestStatus
    current_step_index: int
    steps: list[StepView]
    history: list[HistoryEntryView]
    sla_deadline: datetime | None = None

    @classmethod
    def from_request(cls, request: ApprovalRequest) -> "RequestDetail":
        return cls(
            id=request.id,
            type=request.type,
            flow_id=request.flow_id,
            created_by=request.created_by,
            created_at=request.created_at,
            completed_at=request.completed_at,
            payload=request.payload,
            status=request.status,
            current_step_index=request.current_step_index,
            steps=[StepView.from_step(s) for s in request.steps],
            history=[HistoryEntryView.from_entry(e) for e in request.history],
            sla_deadline=request.sla_deadline,
        )


class RequestListResponse(_CamelModel):
    """List of requests."""

    items: list[RequestDetail]
    count: int


class ReloadResponse(_CamelModel):
    """Result of reloading the flow definition."""

    flow_id: str
    step_count: int
