"""Flow definition loading and step materialization."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from approvalflow.services.approval.errors import InvalidDefinition
from approvalflow.services.approval.schemas import (
    FlowDefinition,
    StepInstance,
    StepTemplate,
    TimeoutPolicy,
)

logger = logging.getLogger(__name__)


# Built-in flow used when no definition file is configured.
# Manager approval with escalation to admin, then an optional admin step
# that only runs for two-step requests.
DEFAULT_FLOW = FlowDefinition(
    flow_id="expense-approval",
    name="Expense Approval (Two-Step)",
    description="Two-step expense approval for amounts over $500",
    steps=(
        StepTemplate(
            step_id="mgr-approval",
            role="manager",
            actions=frozenset({"approve", "reject"}),
            sla_hours=24,
            on_timeout=TimeoutPolicy(escalate_to="admin"),
        ),
        StepTemplate(
            step_id="admin-approval",
            role="admin",
            actions=frozenset({"approve", "reject"}),
            sla_hours=72,
            required=False,
        ),
    ),
)


def parse_flow_definition(data: Mapping[str, Any]) -> FlowDefinition:
    """Validate raw definition data.

    @param data - Definition in file shape (camelCase or snake_case keys)
    @returns Validated flow definition
    @raises InvalidDefinition if the data does not describe a usable flow
    """
    try:
        return FlowDefinition.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidDefinition(f"Invalid flow definition: {errors}") from e


class FlowDefinitionSource(ABC):
    """Provides the flow definition used for new submissions."""

    @abstractmethod
    def load_definition(self) -> FlowDefinition:
        """Load (or reload) the current flow definition."""


class StaticFlowDefinitionSource(FlowDefinitionSource):
    """Serves a definition held in memory."""

    def __init__(self, definition: FlowDefinition = DEFAULT_FLOW):
        self._definition = definition

    def replace(self, definition: FlowDefinition) -> None:
        """Swap the served definition; takes effect on the next load."""
        self._definition = definition

    def load_definition(self) -> FlowDefinition:
        return self._definition


class JsonFileFlowDefinitionSource(FlowDefinitionSource):
    """Reads the definition from a JSON file on every load."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load_definition(self) -> FlowDefinition:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise InvalidDefinition(
                f"Cannot read flow definition {self.path}: {e}"
            ) from e
        except json.JSONDecodeError as e:
            raise InvalidDefinition(
                f"Flow definition {self.path} is not valid JSON: {e}"
            ) from e

        if not isinstance(raw, dict):
            raise InvalidDefinition(
                f"Flow definition {self.path} must be a JSON object"
            )

        definition = parse_flow_definition(raw)
        logger.info(
            f"Loaded flow definition {definition.flow_id} from {self.path} "
            f"({len(definition.steps)} steps)"
        )
        return definition


def _wants_two_step(payload: Mapping[str, Any] | None) -> bool:
    if not payload:
        return False
    return bool(payload.get("twoStep", payload.get("two_step", False)))


def materialize_steps(
    definition: FlowDefinition,
    payload: Mapping[str, Any] | None,
) -> list[StepInstance]:
    """Build a request's concrete step list from a definition.

    Required steps are always included. Steps marked ``required: false``
    are included only when the payload sets ``twoStep``. Template order is
    preserved and every instance is an independent copy.

    @param definition - Flow definition to materialize
    @param payload - Submission payload
    @returns Ordered step instances
    @raises InvalidDefinition if no steps materialize
    """
    two_step = _wants_two_step(payload)
    steps = [
        StepInstance.from_template(template)
        for template in definition.steps
        if template.required is not False or two_step
    ]

    if not steps:
        raise InvalidDefinition(
            f"No workflow steps configured for flow {definition.flow_id}"
        )

    return steps
