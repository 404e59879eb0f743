"""
Delivery channels used by the outbox drain.
"""

import logging
from typing import Any, Protocol

import httpx

from jobcore.config.settings import Settings
from jobcore.v1.infra.jobs.errors import ErrorKind, classify_error

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A delivery attempt failed; ``kind`` decides retry versus dead-letter."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSIENT):
        super().__init__(message)
        self.kind = kind

    @property
    def permanent(self) -> bool:
        return self.kind is ErrorKind.PERMANENT


class NotificationChannel(Protocol):
    """Delivers one outbox message to its destination."""

    async def deliver(
        self, destination_reference: dict[str, Any], payload: dict[str, Any]
    ) -> None:
        """Return on success, raise DeliveryError (or anything else) on failure."""
        ...


def delivery_error_kind(exc: BaseException) -> ErrorKind:
    if isinstance(exc, DeliveryError):
        return exc.kind
    return classify_error(exc)


class WebhookNotificationChannel:
    """Posts chat notifications to the messaging service over HTTP."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(
            base_url=settings.services_base_url.rstrip("/"),
            timeout=settings.http_timeout_s,
        )

    async def deliver(
        self, destination_reference: dict[str, Any], payload: dict[str, Any]
    ) -> None:
        try:
            response = await self.client.post(
                "/notifications/send",
                json={"conversation": destination_reference, "message": payload},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"Notification rejected with HTTP {e.response.status_code}",
                classify_error(e),
            ) from e
        except httpx.RequestError as e:
            raise DeliveryError(f"Notification delivery failed: {e}") from e

        logger.debug(
            "Notification delivered",
            extra={"conversation_id": destination_reference.get("conversation_id")},
        )

    async def aclose(self) -> None:
        await self.client.aclose()
