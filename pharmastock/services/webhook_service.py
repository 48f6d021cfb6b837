import json
import logging

import httpx

from pharmastock.config import settings
from pharmastock.models.order import Order, OrderStatus, OrderType

logger = logging.getLogger(__name__)


def build_payload(order: Order, event: str) -> dict:
    return {
        "event": event,
        "order_id": order.id,
        "order_number": order.order_number,
        "order_type": OrderType(order.order_type).value,
        "status": OrderStatus(order.status).value,
        "counterparty": order.customer_name,
        "totals": {
            "subtotal": order.subtotal,
            "total_amount": order.total_amount,
            "paid_amount": order.paid_amount,
            "payment_status": order.payment_status,
        },
        "items": [
            {
                "product_id": item.product_id,
                "name": item.name,
                "sizes": [
                    {"size_id": line.size_id, "quantity": line.quantity, "price": line.price}
                    for line in item.sizes
                ],
            }
            for item in order.items
        ],
        "status_history": json.loads(order.status_history) if order.status_history else [],
    }


def webhook_urls() -> list[str]:
    return [u.strip() for u in settings.WEBHOOK_URLS.split(",") if u.strip()]


async def send_webhook(payload: dict) -> list[dict]:
    """POST an order event payload to every configured webhook URL.

    Delivery failures are logged and reported per URL; they never affect the
    order itself. Build the payload with ``build_payload`` while the order is
    still attached to its session.
    """
    urls = webhook_urls()
    if not urls:
        return []
    event = payload.get("event", "order_update")
    results = []

    async with httpx.AsyncClient(timeout=10.0) as client:
        for url in urls:
            try:
                resp = await client.post(url, json=payload)
                results.append({"url": url, "status": resp.status_code, "success": resp.is_success})
            except httpx.HTTPError as e:
                logger.error("Webhook %s for %s failed: %s", event, url, e)
                results.append({"url": url, "status": 0, "success": False, "error": str(e)})

    return results
