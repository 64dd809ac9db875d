"""Client for the external push-delivery service.

Delivery is a single best-effort attempt per subscription. The gateway raises
``PushDeliveryError`` for any failure; callers decide whether to log and move
on (notification dispatch always does).
"""

from __future__ import annotations

import logging

import requests

logger = logging.getLogger(__name__)

SEND_PATH = "/push-subscriptions/send"
DEFAULT_ICON = "/icons/icon-192.png"
DEFAULT_BADGE = "/icons/badge-72.png"


class PushDeliveryError(Exception):
    pass


def build_push_payload(
    *,
    title: str,
    body: str,
    order_id: int | None = None,
    notification_type: str | None = None,
    data: dict | None = None,
) -> dict:
    url = f"/orders/{order_id}" if order_id else "/orders"
    payload_data = {"url": url, "orderId": order_id, "type": notification_type}
    if data:
        payload_data.update(data)

    return {
        "title": title,
        "body": body,
        "icon": DEFAULT_ICON,
        "badge": DEFAULT_BADGE,
        "tag": f"order-{order_id}" if order_id else "orders",
        "data": payload_data,
    }


class PushGateway:
    def __init__(self, base_url: str | None, service_key: str | None = None, timeout: float = 10):
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "PushGateway":
        return cls(
            config.get("PUSH_GATEWAY_URL"),
            service_key=config.get("PUSH_SERVICE_KEY"),
            timeout=config.get("PUSH_TIMEOUT_SECONDS", 10),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.service_key:
            headers["X-Service-Key"] = self.service_key
        return headers

    def send(self, subscription: dict, payload: dict) -> bool:
        """POST one push message; returns False when the gateway is not configured."""

        if not self.enabled:
            logger.debug("push gateway not configured; skipping delivery")
            return False

        try:
            response = requests.post(
                self.base_url + SEND_PATH,
                json={"subscription": subscription, "payload": payload},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PushDeliveryError(f"push request failed: {exc}") from exc

        if response.status_code >= 400:
            raise PushDeliveryError(
                f"push service answered HTTP {response.status_code}: {response.text[:200]}"
            )
        return True
