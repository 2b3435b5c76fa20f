"""Role-targeted notification sinks.

Notification is best-effort: the workflow engine commits state first and
dispatches afterwards, logging any failure instead of raising it.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Fire-and-forget dispatch of messages to roles or users."""

    @abstractmethod
    async def notify(self, recipients: list[str], message: str) -> None:
        """Send a message to the given recipients."""

    async def aclose(self) -> None:
        """Release any held resources."""


class LoggingNotifier(Notifier):
    """Writes notifications to the application log."""

    async def notify(self, recipients: list[str], message: str) -> None:
        logger.info(
            f"[NOTIFY] {', '.join(recipients)}: {message}",
            extra={"recipients": recipients},
        )


class WebhookNotifier(Notifier):
    """Posts notifications to a Slack-compatible incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        channel: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize webhook notifier.

        Args:
            webhook_url: Incoming webhook URL
            channel: Optional channel override
            timeout: HTTP timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.webhook_url = webhook_url
        self.channel = channel
        self.timeout = timeout
        self._http_client = client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    def build_payload(self, recipients: list[str], message: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "attachments": [
                {
                    "title": f"Approval notification for {', '.join(recipients)}",
                    "text": message,
                    "fields": [
                        {
                            "title": "Recipients",
                            "value": ", ".join(recipients),
                            "short": True,
                        },
                        {
                            "title": "Time",
                            "value": datetime.now(timezone.utc).isoformat(),
                            "short": True,
                        },
                    ],
                    "footer": "approvalflow",
                }
            ]
        }
        if self.channel:
            payload["channel"] = self.channel
        return payload

    async def notify(self, recipients: list[str], message: str) -> None:
        client = await self._get_http_client()
        response = await client.post(
            self.webhook_url, json=self.build_payload(recipients, message)
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
