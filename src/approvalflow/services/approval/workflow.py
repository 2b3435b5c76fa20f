"""Approval workflow engine.

Features:
- Step materialization from the current flow definition
- Role-based authorization per step, with escalation overlay
- SLA timers per active step, auto-escalation on breach
- Append-only request history
- Best-effort notifications after every committed transition

Operations on the same request are serialized by a per-request lock, so an
action and a firing SLA timer never interleave.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Iterable

from approvalflow.core.config import Settings, get_settings
from approvalflow.services.approval.definitions import (
    FlowDefinitionSource,
    JsonFileFlowDefinitionSource,
    StaticFlowDefinitionSource,
    materialize_steps,
)
from approvalflow.services.approval.errors import (
    Forbidden,
    InvalidAction,
    InvalidDefinition,
    InvalidState,
)
from approvalflow.services.approval.notifier import (
    LoggingNotifier,
    Notifier,
    WebhookNotifier,
)
from approvalflow.services.approval.scheduler import (
    AsyncioSLAScheduler,
    SLAScheduler,
)
from approvalflow.services.approval.schemas import (
    ApprovalRequest,
    FlowDefinition,
    HistoryAction,
    HistoryEntry,
    RequestStatus,
    StepAction,
    expected_role,
)
from approvalflow.services.approval.store import InMemoryRequestStore, RequestStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
ADMIN_ROLE = "admin"


@dataclass
class Notification:
    """A message queued for dispatch once the transition is committed."""

    recipients: list[str]
    message: str


def _unique(recipients: Iterable[str | None]) -> list[str]:
    seen: list[str] = []
    for recipient in recipients:
        if recipient and recipient not in seen:
            seen.append(recipient)
    return seen


class ApprovalWorkflowEngine:
    """Engine applying submit/act/timeout/cancel transitions to requests.

    Collaborators are injected so the store, the timer runtime and the
    notification sink can be swapped without touching transition rules.
    """

    def __init__(
        self,
        definition_source: FlowDefinitionSource | None = None,
        store: RequestStore | None = None,
        scheduler: SLAScheduler | None = None,
        notifier: Notifier | None = None,
    ):
        """Initialize approval workflow engine.

        @param definition_source - Flow definition source (built-in flow if None)
        @param store - Request store (in-memory if None)
        @param scheduler - SLA scheduler (asyncio timers if None)
        @param notifier - Notification sink (log output if None)
        """
        self.definition_source = (
            definition_source
            if definition_source is not None
            else StaticFlowDefinitionSource()
        )
        self.store = store if store is not None else InMemoryRequestStore()
        self.scheduler = scheduler if scheduler is not None else AsyncioSLAScheduler()
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self._locks: dict[str, asyncio.Lock] = {}

        self._definition = self.definition_source.load_definition()
        self.scheduler.bind(self.on_timeout)

    @property
    def definition(self) -> FlowDefinition:
        """Definition used for new submissions."""
        return self._definition

    def reload_definition(self) -> FlowDefinition:
        """Re-read the flow definition from its source.

        In-flight requests keep the steps captured at submission.

        @returns The newly loaded definition
        @raises InvalidDefinition if the source yields an unusable definition
        """
        definition = self.definition_source.load_definition()
        self._definition = definition
        logger.info(
            f"Reloaded flow definition {definition.flow_id} "
            f"({len(definition.steps)} steps)"
        )
        return definition

    def _now(self) -> datetime:
        return self.scheduler.now()

    @asynccontextmanager
    async def _locked(self, request_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = self._locks[request_id] = asyncio.Lock()
        try:
            async with lock:
                yield
        finally:
            # Terminal (or never stored) requests never transition again
            if (
                not self.store.exists(request_id)
                or self.store.get(request_id).is_terminal
            ):
                self._locks.pop(request_id, None)

    def _cancel_timer(self, request: ApprovalRequest) -> None:
        self.scheduler.cancel(request.id)
        request.active_timer = None

    def _arm_current_step(self, request: ApprovalRequest) -> None:
        step = request.current_step
        if step is None:
            request.sla_deadline = None
            return
        request.active_timer = self.scheduler.arm(
            request.id, step, request.current_step_index
        )
        request.sla_deadline = (
            request.active_timer.deadline if request.active_timer else None
        )

    def _complete(
        self, request: ApprovalRequest, status: RequestStatus, at: datetime
    ) -> None:
        request.status = status
        request.completed_at = at
        request.sla_deadline = None

    async def _dispatch(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            try:
                await self.notifier.notify(
                    notification.recipients, notification.message
                )
            except Exception as e:
                logger.error(
                    f"Failed to send notification to "
                    f"{', '.join(notification.recipients)}: {e}"
                )

    async def submit(
        self,
        request_type: str,
        created_by: str,
        payload: dict[str, Any] | None = None,
    ) -> ApprovalRequest:
        """Submit a new request into the current flow.

        @param request_type - Business type (leave, expense, ...)
        @param created_by - Requester ID
        @param payload - Opaque request data; ``twoStep`` enables optional steps
        @returns The created request, PENDING at step 0
        @raises InvalidDefinition if no steps materialize
        """
        definition = self._definition
        payload = dict(payload or {})
        steps = materialize_steps(definition, payload)
        now = self._now()

        request = ApprovalRequest(
            id=f"REQ-{uuid.uuid4().hex[:12].upper()}",
            type=request_type,
            created_by=created_by,
            payload=payload,
            flow_id=definition.flow_id,
            steps=steps,
            created_at=now,
        )
        request.record(
            HistoryEntry(
                at=now,
                actor=created_by,
                action=HistoryAction.SUBMIT.value,
                detail={"flowId": definition.flow_id, "stepCount": len(steps)},
            )
        )

        async with self._locked(request.id):
            # Arm before storing so a failed deadline leaves nothing behind
            try:
                self._arm_current_step(request)
            except OverflowError as e:
                raise InvalidDefinition(
                    f"SLA of step {request.steps[0].step_id} is out of range"
                ) from e
            try:
                self.store.create(request)
            except Exception:
                self._cancel_timer(request)
                raise
            first = request.steps[0]

        logger.info(
            f"Created request {request.id} type={request_type} "
            f"flow={definition.flow_id} steps={len(steps)}"
        )

        await self._dispatch([
            Notification(
                recipients=[expected_role(first)],
                message=(
                    f"New {request_type} request {request.id} from {created_by} "
                    f"awaits your approval (step {first.step_id})"
                ),
            )
        ])
        return request

    async def act(
        self,
        request_id: str,
        actor: str,
        role: str,
        action: str,
        comment: str | None = None,
    ) -> ApprovalRequest:
        """Apply an approver's action to the request's active step.

        @param request_id - Request ID
        @param actor - Acting user ID
        @param role - Acting user's role
        @param action - Step action (approve/reject)
        @param comment - Optional comment recorded in history
        @returns The updated request
        @raises RequestNotFound if the request does not exist
        @raises InvalidState if the request is terminal or has no active step
        @raises Forbidden if the role does not match the step's expected role
        @raises InvalidAction if the action is not allowed at the step
        """
        self.store.get(request_id)

        async with self._locked(request_id):
            request = self.store.get(request_id)

            if request.status != RequestStatus.PENDING:
                raise InvalidState(f"Request is already {request.status.value}")

            step = request.current_step
            if step is None:
                raise InvalidState("No active step for this request")

            required_role = expected_role(step)
            if role != required_role:
                raise Forbidden(role, required_role)

            normalized = action.strip().lower()
            if normalized not in step.actions:
                raise InvalidAction(action, step.actions)

            # Disarm before mutating so no deadline fires against a moved step
            self._cancel_timer(request)

            now = self._now()
            request.record(
                HistoryEntry(
                    at=now,
                    actor=actor,
                    role=role,
                    action=normalized.upper(),
                    step_id=step.step_id,
                    comment=comment,
                )
            )

            if normalized == StepAction.REJECT.value:
                self._complete(request, RequestStatus.REJECTED, now)
                notifications = [
                    Notification(
                        recipients=_unique(
                            [request.created_by, step.role, step.escalated_to]
                        ),
                        message=(
                            f"Request {request.id} was rejected by {actor} "
                            f"at step {step.step_id}"
                            + (f": {comment}" if comment else "")
                        ),
                    )
                ]
                logger.info(f"Request {request.id} rejected by {actor} ({role})")

            elif request.is_final_step:
                self._complete(request, RequestStatus.APPROVED, now)
                notifications = [
                    Notification(
                        recipients=[request.created_by],
                        message=f"Request {request.id} has been approved",
                    )
                ]
                logger.info(f"Request {request.id} approved by {actor} ({role})")

            else:
                request.current_step_index += 1
                self._arm_current_step(request)
                next_step = request.current_step
                notifications = [
                    Notification(
                        recipients=[expected_role(next_step)],
                        message=(
                            f"Request {request.id} awaits your approval "
                            f"(step {next_step.step_id})"
                        ),
                    )
                ]
                logger.info(
                    f"Request {request.id} advanced to step "
                    f"{request.current_step_index} ({next_step.step_id})"
                )

        await self._dispatch(notifications)
        return request

    async def on_timeout(self, request_id: str, step_index: int) -> None:
        """Handle an SLA deadline for the step active when it was armed.

        Stale deadlines (request no longer pending, or already past that
        step) are ignored. Escalation reassigns the same step; it never
        advances the request.

        @param request_id - Request ID
        @param step_index - Step index guarded by the fired timer
        """
        if not self.store.exists(request_id):
            logger.debug(f"SLA timeout for unknown request {request_id} ignored")
            return

        notifications: list[Notification] = []

        async with self._locked(request_id):
            request = self.store.get(request_id)
            if (
                request.status != RequestStatus.PENDING
                or request.current_step_index != step_index
            ):
                logger.debug(
                    f"Stale SLA timeout for {request_id} step {step_index} ignored"
                )
                return

            step = request.current_step
            if step is None:
                return

            self._cancel_timer(request)
            now = self._now()
            request.record(
                HistoryEntry(
                    at=now,
                    actor=SYSTEM_ACTOR,
                    action=HistoryAction.SLA_TIMEOUT.value,
                    role=expected_role(step),
                    step_id=step.step_id,
                    detail={"slaHours": step.sla_hours, "stepIndex": step_index},
                )
            )
            logger.warning(
                f"Request {request_id} breached SLA at step {step.step_id} "
                f"({step.sla_hours}h)"
            )

            if step.on_timeout is not None and not step.is_escalated:
                escalate_to = step.on_timeout.escalate_to
                step.escalated_to = escalate_to
                request.record(
                    HistoryEntry(
                        at=now,
                        actor=SYSTEM_ACTOR,
                        action=HistoryAction.ESCALATE.value,
                        role=escalate_to,
                        step_id=step.step_id,
                        detail={"from": step.role, "to": escalate_to},
                    )
                )
                notifications.append(
                    Notification(
                        recipients=[escalate_to],
                        message=(
                            f"Request {request_id} was escalated to {escalate_to} "
                            f"after missing the {step.sla_hours}h SLA "
                            f"at step {step.step_id}"
                        ),
                    )
                )
                logger.warning(
                    f"Request {request_id} escalated from {step.role} to {escalate_to}"
                )

        await self._dispatch(notifications)

    async def cancel(
        self,
        request_id: str,
        actor: str,
        role: str,
        comment: str | None = None,
    ) -> ApprovalRequest:
        """Cancel a pending request.

        Only the requester or an admin may cancel.

        @param request_id - Request ID
        @param actor - Acting user ID
        @param role - Acting user's role
        @param comment - Cancellation reason
        @returns The cancelled request
        @raises RequestNotFound if the request does not exist
        @raises Forbidden if the actor is neither the requester nor an admin
        @raises InvalidState if the request is not pending
        """
        self.store.get(request_id)

        async with self._locked(request_id):
            request = self.store.get(request_id)

            if actor != request.created_by and role != ADMIN_ROLE:
                raise Forbidden(role)

            if request.status != RequestStatus.PENDING:
                raise InvalidState(
                    f"Cannot cancel request with status: {request.status.value}"
                )

            step = request.current_step
            now = self._now()
            request.record(
                HistoryEntry(
                    at=now,
                    actor=actor,
                    role=role,
                    action=HistoryAction.CANCEL.value,
                    step_id=step.step_id if step else None,
                    comment=comment,
                )
            )
            self._cancel_timer(request)
            self._complete(request, RequestStatus.CANCELLED, now)

        logger.info(f"Request {request_id} cancelled by {actor}")

        notifications = []
        if step is not None:
            notifications.append(
                Notification(
                    recipients=[expected_role(step)],
                    message=f"Request {request_id} was cancelled by {actor}",
                )
            )
        await self._dispatch(notifications)
        return request

    def get_request(self, request_id: str) -> ApprovalRequest:
        """Get a request by id.

        @raises RequestNotFound if the request does not exist
        """
        return self.store.get(request_id)

    def get_history(self, request_id: str) -> list[HistoryEntry]:
        """Get a copy of a request's history."""
        return list(self.store.get(request_id).history)

    def list_requests(
        self,
        status: RequestStatus | None = None,
        created_by: str | None = None,
        pending_for_role: str | None = None,
        sla_breached: bool = False,
        sla_warning_hours: float | None = None,
    ) -> list[ApprovalRequest]:
        """List requests with filters, oldest first.

        @param status - Filter by status
        @param created_by - Filter by requester
        @param pending_for_role - Only pending requests awaiting this role
        @param sla_breached - Only pending requests past their step's SLA deadline
        @param sla_warning_hours - Only pending requests whose deadline falls
            within this many hours from now
        @returns Matching requests
        """
        requests = self.store.list(status=status, created_by=created_by)
        now = self._now()

        if pending_for_role is not None:
            requests = (
                r
                for r in requests
                if r.status == RequestStatus.PENDING
                and r.current_step is not None
                and expected_role(r.current_step) == pending_for_role
            )

        if sla_breached:
            requests = (r for r in requests if r.is_overdue(now))

        if sla_warning_hours is not None:
            within = timedelta(hours=sla_warning_hours)
            requests = (r for r in requests if r.is_approaching_deadline(now, within))

        return sorted(requests, key=lambda r: r.created_at)

    def get_overdue_requests(self) -> list[ApprovalRequest]:
        """Pending requests whose active step has missed its SLA."""
        return self.list_requests(sla_breached=True)

    def get_sla_warnings(
        self, hours_before_deadline: float = 4
    ) -> list[ApprovalRequest]:
        """Pending requests due within ``hours_before_deadline`` hours."""
        return self.list_requests(sla_warning_hours=hours_before_deadline)

    async def shutdown(self) -> None:
        """Cancel armed timers and close the notifier."""
        self.scheduler.shutdown()
        await self.notifier.aclose()


def build_approval_workflow_engine(settings: Settings) -> ApprovalWorkflowEngine:
    """Create an engine wired from application settings.

    @param settings - Application settings
    @returns Configured engine
    """
    if settings.flow_definition_path:
        source: FlowDefinitionSource = JsonFileFlowDefinitionSource(
            settings.flow_definition_path
        )
    else:
        source = StaticFlowDefinitionSource()

    if settings.slack_webhook_url:
        notifier: Notifier = WebhookNotifier(
            webhook_url=settings.slack_webhook_url,
            channel=settings.slack_channel,
            timeout=settings.notification_timeout_seconds,
        )
    else:
        notifier = LoggingNotifier()

    return ApprovalWorkflowEngine(definition_source=source, notifier=notifier)


# Singleton instance
_workflow_engine: ApprovalWorkflowEngine | None = None


def get_approval_workflow_engine() -> ApprovalWorkflowEngine:
    """Get or create approval workflow engine singleton.

    @returns ApprovalWorkflowEngine instance
    """
    global _workflow_engine
    if _workflow_engine is None:
        _workflow_engine = build_approval_workflow_engine(get_settings())
    return _workflow_engine


def reset_approval_workflow_engine() -> None:
    """Reset approval workflow engine singleton (for testing)."""
    global _workflow_engine
    _workflow_engine = None
