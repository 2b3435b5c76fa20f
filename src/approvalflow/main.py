"""FastAPI application factory and main entry point."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from approvalflow import __version__
from approvalflow.api.v1 import api_router
from approvalflow.api.v1.endpoints.requests import Engine
from approvalflow.core.config import get_settings
from approvalflow.core.logging import configure_logging
from approvalflow.services.approval import (
    RequestStatus,
    get_approval_workflow_engine,
    reset_approval_workflow_engine,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup/shutdown events."""
    # Startup
    settings = get_settings()
    app.state.settings = settings
    configure_logging(settings)
    app.state.engine = get_approval_workflow_engine()

    yield

    # Shutdown
    await app.state.engine.shutdown()
    reset_approval_workflow_engine()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Approval workflow engine API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all application routes."""
    settings = get_settings()
    prefix = settings.api_v1_prefix

    app.include_router(api_router, prefix=prefix)

    @app.get("/health", tags=["System"])
    async def health_check(engine: Engine):
        """Liveness plus the active flow and the engine's request backlog."""
        pending = engine.list_requests(status=RequestStatus.PENDING)
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "flow_id": engine.definition.flow_id,
            "requests": {
                "total": len(engine.store),
                "pending": len(pending),
                "overdue": len(engine.get_overdue_requests()),
            },
        }

    @app.get(f"{prefix}/", tags=["API"])
    async def api_root(engine: Engine):
        """Entry points and the flow new submissions will follow."""
        definition = engine.definition
        return {
            "name": settings.app_name,
            "version": __version__,
            "environment": settings.environment,
            "flow": {
                "flow_id": definition.flow_id,
                "steps": [step.step_id for step in definition.steps],
            },
            "endpoints": {
                "requests": f"{prefix}/requests",
                "workflows": f"{prefix}/workflows",
            },
        }


# Create application instance
app = create_app()
