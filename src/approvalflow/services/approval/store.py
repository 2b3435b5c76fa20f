"""Request store: identity map from request id to aggregate."""

import logging
from abc import ABC, abstractmethod
from typing import Iterator

from approvalflow.services.approval.errors import RequestNotFound
from approvalflow.services.approval.schemas import ApprovalRequest, RequestStatus

logger = logging.getLogger(__name__)


class RequestStore(ABC):
    """Addressable container for approval requests.

    The store does not interpret request contents; the only invariant it
    enforces is uniqueness of ids.
    """

    @abstractmethod
    def create(self, request: ApprovalRequest) -> ApprovalRequest:
        """Add a new request.

        @raises ValueError if a request with the same id exists
        """

    @abstractmethod
    def get(self, request_id: str) -> ApprovalRequest:
        """Get a request by id.

        @raises RequestNotFound if no such request exists
        """

    @abstractmethod
    def list(
        self,
        status: RequestStatus | None = None,
        created_by: str | None = None,
    ) -> Iterator[ApprovalRequest]:
        """Lazily iterate requests matching the filters (order not guaranteed)."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of stored requests."""

    def exists(self, request_id: str) -> bool:
        try:
            self.get(request_id)
        except RequestNotFound:
            return False
        return True


class InMemoryRequestStore(RequestStore):
    """Dict-backed store; requests live until the process exits."""

    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequest] = {}

    def create(self, request: ApprovalRequest) -> ApprovalRequest:
        if request.id in self._requests:
            raise ValueError(f"Request {request.id} already exists")
        self._requests[request.id] = request
        return request

    def get(self, request_id: str) -> ApprovalRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    def list(
        self,
        status: RequestStatus | None = None,
        created_by: str | None = None,
    ) -> Iterator[ApprovalRequest]:
        # Snapshot the values so callers may mutate the store while iterating
        for request in list(self._requests.values()):
            if status is not None and request.status != status:
                continue
            if created_by is not None and request.created_by != created_by:
                continue
            yield request

    def __len__(self) -> int:
        return len(self._requests)

    def exists(self, request_id: str) -> bool:
        return request_id in self._requests
