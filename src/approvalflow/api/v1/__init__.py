"""API v1 router."""

from fastapi import APIRouter

from approvalflow.api.v1.endpoints import requests, workflows

api_router = APIRouter()

# Include routers
api_router.include_router(requests.router)
api_router.include_router(workflows.router)
