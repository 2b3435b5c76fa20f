"""Approval request API endpoints."""

import logging
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status

from approvalflow.services.approval import (
    ApprovalWorkflowEngine,
    RequestStatus,
    WorkflowError,
    get_approval_workflow_engine,
)
from approvalflow.services.approval.schemas import (
    MAX_SLA_HOURS,
    ActionRequestBody,
    CancelRequestBody,
    HistoryEntryView,
    RequestDetail,
    RequestListResponse,
    RequestSummary,
    SubmitRequestBody,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/requests", tags=["Requests"])

Engine = Annotated[ApprovalWorkflowEngine, Depends(get_approval_workflow_engine)]


def raise_http_error(error: WorkflowError) -> NoReturn:
    """Translate a workflow error into an HTTP error response."""
    raise HTTPException(
        status_code=error.status_code,
        detail={"code": error.code, "message": error.message},
    ) from error


@router.post("", response_model=RequestSummary, status_code=status.HTTP_201_CREATED)
async def submit_request(body: SubmitRequestBody, engine: Engine) -> RequestSummary:
    """Submit a new approval request.

    Steps are materialized from the current flow definition; optional steps
    run only when ``payload.twoStep`` is set.
    """
    try:
        request = await engine.submit(body.type, body.created_by, body.payload)
    except WorkflowError as e:
        raise_http_error(e)
    return RequestSummary.from_request(request)


@router.get("", response_model=RequestListResponse)
async def list_requests(
    engine: Engine,
    status: RequestStatus | None = Query(None, description="Filter by status"),
    created_by: str | None = Query(
        None, alias="createdBy", description="Filter by requester"
    ),
    pending_for_role: str | None = Query(
        None, alias="pendingForRole", description="Pending requests awaiting role"
    ),
    sla_breached: bool = Query(
        False, alias="slaBreached", description="Only requests past their SLA deadline"
    ),
    sla_warning_hours: float | None = Query(
        None,
        alias="slaWarningHours",
        gt=0,
        le=MAX_SLA_HOURS,
        description="Only requests due within this many hours",
    ),
) -> RequestListResponse:
    """List approval requests with filters."""
    requests = engine.list_requests(
        status=status,
        created_by=created_by,
        pending_for_role=pending_for_role,
        sla_breached=sla_breached,
        sla_warning_hours=sla_warning_hours,
    )
    return RequestListResponse(
        items=[RequestDetail.from_request(r) for r in requests],
        count=len(requests),
    )


@router.get("/{request_id}", response_model=RequestDetail)
async def get_request(request_id: str, engine: Engine) -> RequestDetail:
    """Get full detail for a request, including steps and history."""
    try:
        request = engine.get_request(request_id)
    except WorkflowError as e:
        raise_http_error(e)
    return RequestDetail.from_request(request)


@router.get("/{request_id}/history", response_model=list[HistoryEntryView])
async def get_request_history(
    request_id: str, engine: Engine
) -> list[HistoryEntryView]:
    """Get a request's history in the order it was recorded."""
    try:
        history = engine.get_history(request_id)
    except WorkflowError as e:
        raise_http_error(e)
    return [HistoryEntryView.from_entry(entry) for entry in history]


@router.post("/{request_id}/action", response_model=RequestSummary)
async def act_on_request(
    request_id: str, body: ActionRequestBody, engine: Engine
) -> RequestSummary:
    """Approve or reject the request's active step.

    The acting role must match the step's role, or its escalation target
    once the step's SLA has been breached.
    """
    try:
        request = await engine.act(
            request_id,
            actor=body.actor,
            role=body.role,
            action=body.action,
            comment=body.comment,
        )
    except WorkflowError as e:
        logger.info(f"Action {body.action} on {request_id} refused: {e.message}")
        raise_http_error(e)
    return RequestSummary.from_request(request)


@router.post("/{request_id}/cancel", response_model=RequestSummary)
async def cancel_request(
    request_id: str, body: CancelRequestBody, engine: Engine
) -> RequestSummary:
    """Cancel a pending request.

    Only the requester or an admin can cancel.
    """
    try:
        request = await engine.cancel(
            request_id,
            actor=body.actor,
            role=body.role,
            comment=body.comment,
        )
    except WorkflowError as e:
        raise_http_error(e)
    return RequestSummary.from_request(request)
