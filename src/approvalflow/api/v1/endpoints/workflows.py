"""Flow definition API endpoints."""

import logging

from fastapi import APIRouter

from approvalflow.api.v1.endpoints.requests import Engine, raise_http_error
from approvalflow.services.approval import FlowDefinition, WorkflowError
from approvalflow.services.approval.schemas import ReloadResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workflows", tags=["Workflows"])


@router.get("/current", response_model=FlowDefinition)
async def get_current_definition(engine: Engine) -> FlowDefinition:
    """Get the flow definition applied to new submissions."""
    return engine.definition


@router.post("/reload", response_model=ReloadResponse)
async def reload_definition(engine: Engine) -> ReloadResponse:
    """Reload the flow definition from its source.

    Requests already in flight keep the steps they were submitted with.
    """
    try:
        definition = engine.reload_definition()
    except WorkflowError as e:
        logger.error(f"Flow definition reload failed: {e.message}")
        raise_http_error(e)
    return ReloadResponse(flow_id=definition.flow_id, step_count=len(definition.steps))
