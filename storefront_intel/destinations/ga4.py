"""Google Analytics 4 — Measurement Protocol collector."""

from .base import BaseDestination

COLLECT_URL = "https://www.google-analytics.com/mp/collect"

# Canonical names GA4 already uses verbatim, plus renames
RENAMES = {"lead": "generate_lead"}
SKIPPED = {"identify"}


def ga4_item(item: dict) -> dict:
    return {
        "item_id": item["id"],
        "item_name": item["name"],
        "item_brand": item["brand"],
        "item_category": item["category"],
        "item_variant": item["variant"] or None,
        "price": item["price"],
        "quantity": item["quantity"],
    }


class GA4MeasurementProtocol(BaseDestination):
    name = "ga4"

    def __init__(self, measurement_id: str, api_secret: str, timeout: float = 5.0):
        super().__init__(timeout)
        self.measurement_id = measurement_id
        self.api_secret = api_secret

    @property
    def enabled(self) -> bool:
        return bool(self.measurement_id and self.api_secret)

    def build_body(self, event_name: str, payload: dict) -> dict:
        params = {
            "currency": payload["currency"],
            "value": payload["value"],
            "items": [ga4_item(i) for i in payload.get("items", [])],
            "event_id": payload["event_id"],
            "engagement_time_msec": 1,
        }
        if payload.get("session_id"):
            params["session_id"] = payload["session_id"]
        if event_name == "purchase":
            params.update(
                transaction_id=payload.get("transaction_id"),
                tax=payload.get("tax", 0),
                shipping=payload.get("shipping", 0),
            )
        params.update(payload.get("properties") or {})
        body = {
            "client_id": payload["client_id"],
            "timestamp_micros": payload["event_time"] * 1_000_000,
            "events": [{"name": RENAMES.get(event_name, event_name), "params": params}],
        }
        customer = payload.get("customer") or {}
        if customer.get("external_id"):
            body["user_id"] = str(customer["external_id"])
        return body

    async def send(self, event_name: str, payload: dict) -> bool:
        from ..http_client import http

        if event_name in SKIPPED or not payload.get("client_id"):
            return False
        r = await http.post(
            COLLECT_URL,
            params={"measurement_id": self.measurement_id, "api_secret": self.api_secret},
            json=self.build_body(event_name, payload),
            timeout=self.timeout,
        )
        r.raise_for_status()
        return True
