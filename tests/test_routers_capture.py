"""
test_routers_capture.py — Tests for routers/capture.py

Snapshot endpoints end to end: cart deltas, checkout funnel, scroll
engagement, the 202 exit beacon, purchases, and draining queued Meta pixel
commands. The registry is overridden with one whose dispatcher feeds a
recording destination and a pixel outbox.

Called by: pytest
Depends on: storefront_intel/routers/capture.py, conftest (client, make_destination)
"""

import pytest

from storefront_intel.capture.session import SessionRegistry
from storefront_intel.dependencies import get_pixel_outbox, get_registry
from storefront_intel.destinations import MetaPixelDestination, PixelOutbox
from storefront_intel.main import app
from storefront_intel.models import CustomerProfile
from storefront_intel.services.dispatcher import Dispatcher


@pytest.fixture()
def capture(client, make_destination):
    """(client, recording destination, pixel outbox) with the capture registry overridden."""
    dest = make_destination("recorder")
    outbox = PixelOutbox()
    dispatcher = Dispatcher([dest, MetaPixelDestination("px-test", outbox)])
    registry = SessionRegistry(dispatcher, start_timers=False)
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_pixel_outbox] = lambda: outbox
    yield client, dest, outbox
    registry.close()


def _item(pid: str, qty: int, price: float = 14.95) -> dict:
    return {"id": pid, "title": f"Scent {pid}", "price": price, "quantity": qty}


class TestCart:
    def test_first_snapshot_is_baseline(self, capture):
        client, dest, _ = capture
        resp = client.post("/api/capture/s1/cart", json={"items": [_item("101", 1)]})
        assert resp.status_code == 200
        assert resp.json() == {"events": []}
        assert dest.calls == []

    def test_delta_dispatched(self, capture):
        client, dest, _ = capture
        client.post("/api/capture/s1/cart", json={"items": []})
        resp = client.post("/api/capture/s1/cart", json={"items": [_item("101", 2)], "fbp": "fb.1.9.9"})
        events = resp.json()["events"]
        assert [e["event"] for e in events] == ["add_to_cart"]
        assert events[0]["sent"] == ["recorder", "meta_pixel"]
        payload = dest.calls[0][1]
        assert payload["client"]["fbp"] == "fb.1.9.9"
        assert payload["client"]["ip_address"]

    def test_sessions_do_not_share_carts(self, capture):
        client, dest, _ = capture
        client.post("/api/capture/a/cart", json={"items": []})
        client.post("/api/capture/b/cart", json={"items": [_item("101", 1)]})
        assert dest.calls == []


class TestCheckout:
    def test_begin_identify_payment(self, capture):
        client, dest, _ = capture
        items = [_item("101", 2)]
        client.post("/api/capture/s1/checkout", json={"items": items})
        client.post("/api/capture/s1/checkout", json={"items": items, "email": "jan@example.com", "phone": "0612345678"})
        client.post("/api/capture/s1/checkout", json={"items": items, "email": "jan@example.com", "step": "payment"})
        assert dest.event_names == ["begin_checkout", "identify", "add_payment_info"]
        identify_payload = dest.calls[1][1]
        assert "ph" in identify_payload["user_data"]
        assert identify_payload["customer"]["phone"] == "0612345678"


class TestEngagement:
    def test_scroll_over_half_fires(self, capture):
        client, dest, _ = capture
        resp = client.post("/api/capture/s1/scroll", json={"scroll_top": 1000, "window_height": 800, "document_height": 3000})
        data = resp.json()
        assert data["scroll_depth"] == 60
        assert [e["event"] for e in data["events"]] == ["engaged_session"]
        resp = client.post("/api/capture/s1/scroll", json={"scroll_top": 2200, "window_height": 800, "document_height": 3000})
        assert resp.json()["events"] == []

    def test_engagement_tick(self, capture):
        client, dest, _ = capture
        assert client.post("/api/capture/s1/engagement", json={"elapsed_seconds": 20}).json() == {"events": []}
        events = client.post("/api/capture/s1/engagement", json={"elapsed_seconds": 35}).json()["events"]
        assert [e["event"] for e in events] == ["engaged_session"]

    def test_exit_returns_202_immediately(self, capture):
        client, _, _ = capture
        resp = client.post("/api/capture/s1/exit")
        assert resp.status_code == 202
        assert resp.json() == {"queued": False}

    def test_exit_below_threshold_queues_nothing(self, capture):
        client, _, _ = capture
        client.post("/api/capture/s1/scroll", json={"scroll_top": 0, "window_height": 800, "document_height": 4000})
        client.post("/api/capture/s1/engagement", json={"elapsed_seconds": 10})
        resp = client.post("/api/capture/s1/exit")
        assert resp.json() == {"queued": False}


class TestPurchase:
    def test_purchase_and_pixel_drain(self, capture, db_session):
        client, dest, _ = capture
        resp = client.post("/api/capture/s1/purchase", json={
            "order_id": 5001,
            "total": 39.85,
            "tax": 6.92,
            "items": [_item("101", 2), _item("102", 1, 9.95)],
            "billing": {"email": "kim@example.com", "first_name": "Kim"},
        })
        data = resp.json()
        assert data["event_id"] == "purchase_5001"
        assert data["event"] == "purchase"
        assert dest.calls[0][1]["transaction_id"] == "5001"
        assert db_session.query(CustomerProfile).filter_by(email="kim@example.com").count() == 1

        commands = client.get("/api/capture/s1/pixel").json()["commands"]
        assert [c["event"] for c in commands] == ["Purchase"]
        assert commands[0]["options"]["eventID"] == "purchase_5001"
        assert client.get("/api/capture/s1/pixel").json() == {"commands": []}
