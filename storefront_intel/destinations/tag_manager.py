"""Server-side tag manager relay — dataLayer-shaped JSON to the sGTM endpoint."""

import logging

from .base import BaseDestination

log = logging.getLogger(__name__)

# Canonical name → dataLayer event name
EVENT_NAMES = {
    "identify": "user_identified",
}


def gtm_item(item: dict) -> dict:
    return {
        "item_id": item["id"],
        "item_name": item["name"],
        "item_brand": item["brand"],
        "item_category": item["category"],
        "item_variant": item["variant"] or None,
        "price": item["price"],
        "quantity": item["quantity"],
        "currency": item["currency"],
        "sku": item["sku"],
        "id": item["feed_id"],
        "google_business_vertical": item["business_vertical"],
        "stockstatus": item["stock_status"],
        "stocklevel": item["stock_level"],
    }


class TagManagerRelay(BaseDestination):
    name = "tag_manager"

    def __init__(self, url: str, affiliation: str = "", timeout: float = 5.0):
        super().__init__(timeout)
        self.url = url
        self.affiliation = affiliation

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def build_body(self, event_name: str, payload: dict) -> dict:
        body = {
            "event": EVENT_NAMES.get(event_name, event_name),
            "event_id": payload["event_id"],
            "event_time": payload["event_time"],
            "page_location": payload.get("event_source_url"),
            "client_id": payload.get("client_id"),
            "user_data": payload.get("user_data") or {},
        }
        if event_name == "identify":
            return body

        ecommerce = {
            "currency": payload["currency"],
            "value": payload["value"],
            "items": [gtm_item(i) for i in payload.get("items", [])],
        }
        if event_name == "purchase":
            ecommerce.update(
                transaction_id=payload.get("transaction_id"),
                affiliation=self.affiliation,
                tax=payload.get("tax", 0),
                shipping=payload.get("shipping", 0),
            )
        body["ecommerce"] = ecommerce
        if payload.get("properties"):
            body["event_params"] = payload["properties"]
        return body

    async def send(self, event_name: str, payload: dict) -> bool:
        from ..http_client import http

        body = self.build_body(event_name, payload)
        log.debug(f"sGTM relay: {body['event']} {body['event_id']}")
        r = await http.post(self.url, json=body, timeout=self.timeout)
        r.raise_for_status()
        return True
