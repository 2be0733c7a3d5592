"""Delivery channel clients: the boundary to push/email/SMS/in-app transports."""

import logging
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

import httpx

from care_reminders.core.models import DeliveryChannel, DeliveryResult

logger = logging.getLogger(__name__)


class DeliveryChannelClient(Protocol):
    """Attempts to reach a recipient; answers with success or a failure reason."""

    async def send(
        self,
        notification_id: UUID,
        channel: DeliveryChannel,
        payload: Dict[str, Any]
    ) -> DeliveryResult:
        ...


class InAppChannel:
    """In-app delivery: the notification record itself is what the app displays."""

    async def send(
        self,
        notification_id: UUID,
        channel: DeliveryChannel,
        payload: Dict[str, Any]
    ) -> DeliveryResult:
        logger.info(f"In-app delivery of notification {notification_id}: {payload.get('title')}")
        return DeliveryResult.ok()


class WebhookChannel:
    """Hands notifications to an external relay service over HTTP."""

    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize webhook channel.

        Args:
            url: Relay endpoint receiving POSTed notifications
            client: Shared HTTP client (optional, one is created if not provided)
        """
        self.url = url
        self.client = client or httpx.AsyncClient()

    async def send(
        self,
        notification_id: UUID,
        channel: DeliveryChannel,
        payload: Dict[str, Any]
    ) -> DeliveryResult:
        body = {
            "notification_id": str(notification_id),
            "channel": channel.value,
            "payload": payload,
        }
        try:
            response = await self.client.post(self.url, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"Relay request for notification {notification_id} failed: {e}")
            return DeliveryResult.failed(f"Relay unreachable: {e.__class__.__name__}")

        if response.is_success:
            return DeliveryResult.ok()

        reason = response.text.strip() or response.reason_phrase
        logger.warning(
            f"Relay rejected notification {notification_id}: {response.status_code} {reason}"
        )
        return DeliveryResult.failed(f"Relay returned {response.status_code}: {reason}"[:500])

    async def close(self):
        await self.client.aclose()


class ChannelRouter:
    """Routes each delivery channel to its client, falling back to a default."""

    def __init__(
        self,
        default: DeliveryChannelClient,
        routes: Optional[Dict[DeliveryChannel, DeliveryChannelClient]] = None
    ):
        self.default = default
        self.routes = dict(routes or {})

    async def send(
        self,
        notification_id: UUID,
        channel: DeliveryChannel,
        payload: Dict[str, Any]
    ) -> DeliveryResult:
        client = self.routes.get(channel, self.default)
        return await client.send(notification_id, channel, payload)
