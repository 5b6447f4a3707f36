"""Meta — browser pixel path and server-side Conversions API.

Both paths receive the same event_id for the same domain event, which is
how Meta deduplicates a Purchase seen by both the pixel and CAPI.

The pixel path cannot call the browser directly from the server: it queues
fbq() commands in a per-session PixelOutbox that the storefront drains
(GET /api/capture/{session_id}/pixel) and replays.
"""

import logging
from collections import OrderedDict, deque

from .base import BaseDestination

log = logging.getLogger(__name__)

# Canonical name → Meta standard event
STANDARD_EVENTS = {
    "view_item": "ViewContent",
    "add_to_cart": "AddToCart",
    "begin_checkout": "InitiateCheckout",
    "add_payment_info": "AddPaymentInfo",
    "purchase": "Purchase",
    "page_view": "PageView",
    "lead": "Lead",
    "search": "Search",
}
# Sent with trackCustom by the pixel; CAPI accepts them as custom events too
CUSTOM_EVENTS = {
    "remove_from_cart": "RemoveFromCart",
    "engaged_session": "EngagedSession",
}


def custom_data(payload: dict) -> dict:
    items = payload.get("items", [])
    data = {
        "currency": payload["currency"],
        "value": payload["value"],
    }
    if items:
        data.update(
            content_ids=[i["id"] for i in items],
            content_type="product",
            contents=[{"id": i["id"], "quantity": i["quantity"], "item_price": i["price"]} for i in items],
            num_items=sum(i["quantity"] for i in items),
        )
        if len(items) == 1:
            data["content_name"] = items[0]["name"]
    if payload.get("transaction_id"):
        data["order_id"] = payload["transaction_id"]
    if payload.get("properties", {}).get("search_string"):
        data["search_string"] = payload["properties"]["search_string"]
    return data


class PixelOutbox:
    """Pending fbq() commands per capture session, drained by the browser."""

    def __init__(self, max_sessions: int = 5000, max_per_session: int = 50):
        self.max_sessions = max_sessions
        self.max_per_session = max_per_session
        self._queues: OrderedDict[str, deque] = OrderedDict()

    def push(self, session_id: str, command: dict) -> None:
        queue = self._queues.get(session_id)
        if queue is None:
            queue = deque(maxlen=self.max_per_session)
            self._queues[session_id] = queue
            while len(self._queues) > self.max_sessions:
                self._queues.popitem(last=False)
        queue.append(command)

    def drain(self, session_id: str) -> list[dict]:
        queue = self._queues.pop(session_id, None)
        return list(queue) if queue else []

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())


class MetaPixelDestination(BaseDestination):
    name = "meta_pixel"

    def __init__(self, pixel_id: str, outbox: PixelOutbox, timeout: float = 5.0):
        super().__init__(timeout)
        self.pixel_id = pixel_id
        self.outbox = outbox

    @property
    def enabled(self) -> bool:
        return bool(self.pixel_id)

    async def send(self, event_name: str, payload: dict) -> bool:
        session_id = payload.get("session_id")
        if not session_id:
            return False
        if event_name in STANDARD_EVENTS:
            method, meta_name = "track", STANDARD_EVENTS[event_name]
        elif event_name in CUSTOM_EVENTS:
            method, meta_name = "trackCustom", CUSTOM_EVENTS[event_name]
        else:
            return False
        self.outbox.push(
            session_id,
            {
                "method": method,
                "event": meta_name,
                "params": custom_data(payload),
                "options": {"eventID": payload["event_id"]},
            },
        )
        return True


class MetaConversionsDestination(BaseDestination):
    name = "meta_capi"

    def __init__(self, pixel_id: str, access_token: str, graph_version: str = "v21.0",
                 test_event_code: str = "", timeout: float = 5.0):
        super().__init__(timeout)
        self.pixel_id = pixel_id
        self.access_token = access_token
        self.graph_version = graph_version
        self.test_event_code = test_event_code

    @property
    def enabled(self) -> bool:
        return bool(self.pixel_id and self.access_token)

    @property
    def url(self) -> str:
        return f"https://graph.facebook.com/{self.graph_version}/{self.pixel_id}/events"

    def build_body(self, meta_name: str, payload: dict) -> dict:
        client = payload.get("client") or {}
        user_data = dict(payload.get("user_data") or {})
        for key, value in (
            ("client_ip_address", client.get("ip_address")),
            ("client_user_agent", client.get("user_agent")),
            ("fbp", client.get("fbp")),
            ("fbc", client.get("fbc")),
        ):
            if value:
                user_data[key] = value
        body = {
            "data": [
                {
                    "event_name": meta_name,
                    "event_time": payload["event_time"],
                    "event_id": payload["event_id"],
                    "event_source_url": payload.get("event_source_url"),
                    "action_source": "website",
                    "user_data": user_data,
                    "custom_data": custom_data(payload),
                }
            ]
        }
        if self.test_event_code:
            body["test_event_code"] = self.test_event_code
        return body

    async def send(self, event_name: str, payload: dict) -> bool:
        from ..http_client import http

        meta_name = STANDARD_EVENTS.get(event_name) or CUSTOM_EVENTS.get(event_name)
        if meta_name is None:
            return False
        r = await http.post(
            self.url,
            params={"access_token": self.access_token},
            json=self.build_body(meta_name, payload),
            timeout=self.timeout,
        )
        r.raise_for_status()
        log.debug(f"Meta CAPI {meta_name} accepted: {r.json().get('events_received')}")
        return True
