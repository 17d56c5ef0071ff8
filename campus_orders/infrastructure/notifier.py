"""Outbound order notifications posted to a webhook."""

import asyncio
import httpx
from typing import Any, Dict, Optional, Set
from shared.core import get_logger

logger = get_logger(__name__)


def order_event(order) -> Dict[str, Any]:
    """Webhook payload describing an order as it stands"""
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "userId": order.user_id,
        "shopId": order.shop_id,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "cancelReason": order.cancel_reason,
    }


class Notifier:
    """
    POST ``{"event": ..., "data": ...}`` to the configured webhook.

    Delivery is best effort: a failed post is logged and never reaches the
    operation that triggered it. Without a webhook URL every call is a no-op.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, event: str, data: Dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json={"event": event, "data": data})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                f"Notification {event} failed: {e}",
                extra={'extra_fields': {'event': event, 'webhook': self.webhook_url}},
            )
            return False
        return True

    def notify(self, event: str, data: Dict[str, Any]) -> None:
        """Schedule ``send`` without waiting for it"""
        if not self.enabled:
            return
        task = asyncio.get_running_loop().create_task(self.send(event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
