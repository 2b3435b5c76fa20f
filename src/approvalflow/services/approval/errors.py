"""Approval workflow error taxonomy.

Every failure the engine surfaces to its caller is a ``WorkflowError``
subclass. The ``status_code`` is what the HTTP layer answers with.
"""


class WorkflowError(Exception):
    """Base class for caller-visible workflow failures."""

    code: str = "WORKFLOW_ERROR"
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidDefinition(WorkflowError):
    """Flow definition is malformed or materializes no steps."""

    code = "INVALID_DEFINITION"
    status_code = 400


class RequestNotFound(WorkflowError):
    """No request exists with the given id."""

    code = "REQUEST_NOT_FOUND"
    status_code = 404

    def __init__(self, request_id: str):
        super().__init__(f"Request {request_id} not found")
        self.request_id = request_id


# Short alias used throughout the engine
NotFound = RequestNotFound


class InvalidState(WorkflowError):
    """Request is not in a state that allows the operation."""

    code = "INVALID_STATE"
    status_code = 409


class Forbidden(WorkflowError):
    """Actor's role may not act on the active step."""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, role: str, expected_role: str | None = None):
        if expected_role:
            message = f"Role {role} cannot act on this step (expected: {expected_role})"
        else:
            message = f"Role {role} is not allowed to perform this operation"
        super().__init__(message)
        self.role = role
        self.expected_role = expected_role


class InvalidAction(WorkflowError):
    """Action is not permitted at the active step."""

    code = "INVALID_ACTION"
    status_code = 400

    def __init__(self, action: str, allowed: set[str] | frozenset[str]):
        super().__init__(
            f"Invalid action {action}. Allowed: {', '.join(sorted(allowed))}"
        )
        self.action = action
        self.allowed = allowed
