"""Pytest configuration and fixtures."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from approvalflow.services.approval import (
    ApprovalWorkflowEngine,
    FlowDefinition,
    InMemoryRequestStore,
    ManualSLAScheduler,
    Notifier,
    StaticFlowDefinitionSource,
    StepTemplate,
    TimeoutPolicy,
)


class RecordingNotifier(Notifier):
    """Notifier that keeps every message for assertions."""

    def __init__(self):
        self.sent: list[tuple[list[str], str]] = []

    async def notify(self, recipients: list[str], message: str) -> None:
        self.sent.append((list(recipients), message))

    def recipients(self) -> list[list[str]]:
        return [r for r, _ in self.sent]


def make_flow(
    *,
    manager_sla: float | None = 1,
    admin_required: bool = True,
    escalate_to: str | None = "admin",
    flow_id: str = "expense-approval",
) -> FlowDefinition:
    """Two-step manager -> admin flow used across tests."""
    return FlowDefinition(
        flow_id=flow_id,
        steps=(
            StepTemplate(
                step_id="mgr-approval",
                role="manager",
                actions=frozenset({"approve", "reject"}),
                sla_hours=manager_sla,
                on_timeout=TimeoutPolicy(escalate_to=escalate_to) if escalate_to else None,
            ),
            StepTemplate(
                step_id="admin-approval",
                role="admin",
                actions=frozenset({"approve", "reject"}),
                sla_hours=72,
                required=admin_required,
            ),
        ),
    )


@pytest.fixture
def scheduler():
    """Virtual-clock SLA scheduler."""
    return ManualSLAScheduler()


@pytest.fixture
def notifier():
    """Notifier recording every dispatched message."""
    return RecordingNotifier()


@pytest.fixture
def definition_source():
    """Static source serving the two-step test flow."""
    return StaticFlowDefinitionSource(make_flow())


@pytest.fixture
def engine(definition_source, scheduler, notifier):
    """Engine wired with a virtual clock and a recording notifier."""
    return ApprovalWorkflowEngine(
        definition_source=definition_source,
        store=InMemoryRequestStore(),
        scheduler=scheduler,
        notifier=notifier,
    )


@pytest.fixture
def flow_factory():
    """Build variants of the two-step test flow."""
    return make_flow


@pytest.fixture
def make_engine(scheduler, notifier):
    """Build an engine around a custom flow definition."""

    def _make(definition: FlowDefinition | None = None, **flow_kwargs):
        return ApprovalWorkflowEngine(
            definition_source=StaticFlowDefinitionSource(
                definition or make_flow(**flow_kwargs)
            ),
            store=InMemoryRequestStore(),
            scheduler=scheduler,
            notifier=notifier,
        )

    return _make


@pytest.fixture
def one_hour():
    """One SLA hour on the virtual clock."""
    return timedelta(hours=1)


@pytest.fixture(scope="session")
def app():
    """Create FastAPI application for testing."""
    from approvalflow.main import create_app

    return create_app()


@pytest.fixture
def client(app, engine):
    """Test client whose requests hit the virtual-clock engine."""
    from approvalflow.services.approval import get_approval_workflow_engine

    app.dependency_overrides[get_approval_workflow_engine] = lambda: engine
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def settings():
    """Create settings instance for testing."""
    from approvalflow.core.config import Settings

    return Settings(environment="testing")
