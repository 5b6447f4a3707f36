"""Klaviyo — email/CRM platform (server API, events + profile import).

Klaviyo is first-party CRM, so it receives the raw email from the payload's
`customer` block, never the hashed ad-matching fields. Events without an
email are skipped: Klaviyo cannot attach them to a profile.
"""

import logging

from ..config import settings
from ..utils.privacy import phone_to_international
from .base import BaseDestination

log = logging.getLogger(__name__)

EVENTS_URL = "https://a.klaviyo.com/api/events/"
PROFILE_IMPORT_URL = "https://a.klaviyo.com/api/profile-import/"

# Canonical name → Klaviyo metric name
METRIC_NAMES = {
    "view_item": "Viewed Product",
    "add_to_cart": "Added to Cart",
    "remove_from_cart": "Removed from Cart",
    "begin_checkout": "Started Checkout",
    "add_payment_info": "Added Payment Info",
    "purchase": "Placed Order",
}
CUSTOM_PREFIX = "klaviyo_"


def profile_attributes(customer: dict) -> dict:
    """Klaviyo profile fields; phone_number must be E.164 ("+31612345678")."""
    phone = phone_to_international(customer.get("phone"), settings.default_phone_prefix)
    attrs = {
        "email": customer.get("email"),
        "phone_number": f"+{phone}" if phone else None,
        "first_name": customer.get("first_name"),
        "last_name": customer.get("last_name"),
        "external_id": customer.get("external_id"),
    }
    return {k: v for k, v in attrs.items() if v}


class KlaviyoDestination(BaseDestination):
    name = "klaviyo"

    def __init__(self, private_key: str, revision: str, timeout: float = 5.0):
        super().__init__(timeout)
        self.private_key = private_key
        self.revision = revision

    @property
    def enabled(self) -> bool:
        return bool(self.private_key)

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Klaviyo-API-Key {self.private_key}",
            "revision": self.revision,
            "accept": "application/json",
            "content-type": "application/json",
        }

    def metric_name(self, event_name: str) -> str | None:
        if event_name in METRIC_NAMES:
            return METRIC_NAMES[event_name]
        if event_name.startswith(CUSTOM_PREFIX):
            return event_name[len(CUSTOM_PREFIX):]
        return None

    def build_event_body(self, metric: str, payload: dict) -> dict:
        items = payload.get("items", [])
        properties = {
            "Items": [
                {
                    "ProductID": i["id"],
                    "ProductName": i["name"],
                    "SKU": i["sku"],
                    "Quantity": i["quantity"],
                    "ItemPrice": i["price"],
                    "RowTotal": round(i["price"] * i["quantity"], 2),
                    "Categories": [i["category"]],
                    "Brand": i["brand"],
                }
                for i in items
            ],
            "ItemNames": [i["name"] for i in items],
            "$event_id": payload["event_id"],
            **(payload.get("properties") or {}),
        }
        if payload.get("transaction_id"):
            properties["OrderId"] = payload["transaction_id"]
        return {
            "data": {
                "type": "event",
                "attributes": {
                    "properties": properties,
                    "metric": {"data": {"type": "metric", "attributes": {"name": metric}}},
                    "profile": {"data": {"type": "profile", "attributes": profile_attributes(payload["customer"])}},
                    "value": payload["value"],
                    "value_currency": payload["currency"],
                    "unique_id": payload["event_id"],
                    "time": payload["event_time_iso"],
                },
            }
        }

    async def send(self, event_name: str, payload: dict) -> bool:
        from ..http_client import http

        customer = payload.get("customer") or {}
        if not customer.get("email"):
            return False

        if event_name == "identify":
            body = {"data": {"type": "profile", "attributes": profile_attributes(customer)}}
            r = await http.post(PROFILE_IMPORT_URL, headers=self.headers, json=body, timeout=self.timeout)
            r.raise_for_status()
            return True

        metric = self.metric_name(event_name)
        if metric is None:
            return False
        r = await http.post(
            EVENTS_URL,
            headers=self.headers,
            json=self.build_event_body(metric, payload),
            timeout=self.timeout,
        )
        r.raise_for_status()
        log.debug(f"Klaviyo event sent: {metric}")
        return True
