"""
test_destinations.py — Tests for storefront_intel/destinations/

Body builders for each sink (tag manager relay, Klaviyo, Meta pixel +
Conversions API, GA4), skip rules, and delivery through the shared
httpx client with http.post patched. Also static selection from settings.

Called by: pytest
Depends on: storefront_intel/destinations, services/dispatcher (build_payload)
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from storefront_intel.config import Settings
from storefront_intel.destinations import (
    GA4MeasurementProtocol,
    KlaviyoDestination,
    MetaConversionsDestination,
    MetaPixelDestination,
    PixelOutbox,
    TagManagerRelay,
    build_destinations,
    log_destination_status,
)
from storefront_intel.destinations.klaviyo import profile_attributes
from storefront_intel.services.dispatcher import build_payload
from storefront_intel.services.events import DomainEvent, EventKind

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _ok_response(json_body=None):
    resp = MagicMock()
    resp.raise_for_status = MagicMock()
    resp.json = MagicMock(return_value=json_body or {})
    return resp


@pytest.fixture()
def purchase_payload() -> dict:
    event = DomainEvent(
        kind=EventKind.PURCHASE,
        transaction_id="5001",
        items=[
            {"id": "101", "title": "Blossom Drip", "price": 14.95, "quantity": 2},
            {"id": "102", "title": "Morning Vapor", "price": 9.95, "quantity": 1},
        ],
        value=39.85,
        tax=6.92,
        shipping=0,
        session_id="sess-1",
        customer_id="77",
        billing={"email": "kim@example.com", "phone": "0612345678", "first_name": "Kim"},
        ip_address="203.0.113.7",
        user_agent="Mozilla/5.0",
        fbp="fb.1.111.222",
        timestamp=NOW,
    )
    return build_payload(event)


@pytest.fixture()
def anonymous_view_payload() -> dict:
    event = DomainEvent(
        kind=EventKind.VIEW_ITEM,
        items=[{"id": "101", "title": "Blossom Drip", "price": 14.95, "quantity": 1}],
        session_id="sess-2",
        timestamp=NOW,
    )
    return build_payload(event)


# ── Tag manager relay ───────────────────────────────────────────────


class TestTagManager:
    def test_purchase_body(self, purchase_payload):
        body = TagManagerRelay("https://sgtm.example.com/data", affiliation="Wasgeurtje.nl").build_body(
            "purchase", purchase_payload,
        )
        assert body["event"] == "purchase"
        assert body["event_id"] == "purchase_5001"
        ecommerce = body["ecommerce"]
        assert ecommerce["transaction_id"] == "5001"
        assert ecommerce["affiliation"] == "Wasgeurtje.nl"
        assert ecommerce["value"] == 39.85
        assert ecommerce["items"][0]["sku"] == "WSG-WP-101"
        assert ecommerce["items"][0]["id"] == "gla_101"

    def test_identify_has_no_ecommerce(self, purchase_payload):
        body = TagManagerRelay("https://x").build_body("identify", purchase_payload)
        assert body["event"] == "user_identified"
        assert "ecommerce" not in body

    def test_send_posts(self, purchase_payload):
        with patch("storefront_intel.http_client.http.post", new_callable=AsyncMock) as post:
            post.return_value = _ok_response()
            assert _run(TagManagerRelay("https://sgtm.example.com/data").send("purchase", purchase_payload)) is True
        assert post.call_args.args[0] == "https://sgtm.example.com/data"

    def test_disabled_without_url(self):
        assert TagManagerRelay("").enabled is False


# ── Klaviyo ─────────────────────────────────────────────────────────


class TestKlaviyo:
    def test_metric_names(self):
        dest = KlaviyoDestination("pk_test", "2024-10-15")
        assert dest.metric_name("purchase") == "Placed Order"
        assert dest.metric_name("begin_checkout") == "Started Checkout"
        assert dest.metric_name("klaviyo_Viewed Bundle") == "Viewed Bundle"
        assert dest.metric_name("page_view") is None

    def test_event_body_uses_raw_email(self, purchase_payload):
        body = KlaviyoDestination("pk_test", "2024-10-15").build_event_body("Placed Order", purchase_payload)
        attrs = body["data"]["attributes"]
        assert attrs["profile"]["data"]["attributes"]["email"] == "kim@example.com"
        assert attrs["unique_id"] == "purchase_5001"
        assert attrs["properties"]["OrderId"] == "5001"
        assert attrs["properties"]["Items"][0]["RowTotal"] == 29.9
        assert attrs["profile"]["data"]["attributes"]["phone_number"] == "+31612345678"

    def test_profile_phone_is_e164(self):
        assert profile_attributes({"email": "a@b.nl", "phone": "06-1234 5678"})["phone_number"] == "+31612345678"
        assert profile_attributes({"email": "a@b.nl", "phone": "+31 6 1234 5678"})["phone_number"] == "+31612345678"
        assert "phone_number" not in profile_attributes({"email": "a@b.nl", "phone": ""})

    def test_send_with_revision_header(self, purchase_payload):
        with patch("storefront_intel.http_client.http.post", new_callable=AsyncMock) as post:
            post.return_value = _ok_response()
            assert _run(KlaviyoDestination("pk_test", "2024-10-15").send("purchase", purchase_payload)) is True
        headers = post.call_args.kwargs["headers"]
        assert headers["revision"] == "2024-10-15"
        assert headers["Authorization"] == "Klaviyo-API-Key pk_test"

    def test_identify_goes_to_profile_import(self, purchase_payload):
        with patch("storefront_intel.http_client.http.post", new_callable=AsyncMock) as post:
            post.return_value = _ok_response()
            _run(KlaviyoDestination("pk_test", "2024-10-15").send("identify", purchase_payload))
        assert post.call_args.args[0].endswith("/profile-import/")

    def test_skips_without_email(self, anonymous_view_payload):
        with patch("storefront_intel.http_client.http.post", new_callable=AsyncMock) as post:
            assert _run(KlaviyoDestination("pk_test", "r").send("view_item", anonymous_view_payload)) is False
        post.assert_not_called()


# ── Meta ────────────────────────────────────────────────────────────


class TestMeta:
    def test_capi_body(self, purchase_payload):
        dest = MetaConversionsDestination("px1", "tok", test_event_code="TEST123")
        body = dest.build_body("Purchase", purchase_payload)
        event = body["data"][0]
        assert event["event_id"] == "purchase_5001"
        assert event["action_source"] == "website"
        assert event["user_data"]["client_ip_address"] == "203.0.113.7"
        assert event["user_data"]["fbp"] == "fb.1.111.222"
        assert len(event["user_data"]["em"]) == 64
        assert event["custom_data"]["content_ids"] == ["101", "102"]
        assert event["custom_data"]["num_items"] == 3
        assert body["test_event_code"] == "TEST123"

    def test_capi_url(self):
        assert MetaConversionsDestination("px1", "tok", graph_version="v21.0").url == \
            "https://graph.facebook.com/v21.0/px1/events"

    def test_capi_send(self, purchase_payload):
        with patch("storefront_intel.http_client.http.post", new_callable=AsyncMock) as post:
            post.return_value = _ok_response({"events_received": 1})
            assert _run(MetaConversionsDestination("px1", "tok").send("purchase", purchase_payload)) is True
        assert post.call_args.kwargs["params"] == {"access_token": "tok"}

    def test_capi_unmapped_event_skipped(self, purchase_payload):
        assert _run(MetaConversionsDestination("px1", "tok").send("identify", purchase_payload)) is False

    def test_capi_http_error_raises(self, purchase_payload):
        resp = MagicMock()
        resp.raise_for_status = MagicMock(side_effect=httpx.HTTPStatusError(
            "400", request=httpx.Request("POST", "https://x"), response=httpx.Response(400),
        ))
        with patch("storefront_intel.http_client.http.post", new_callable=AsyncMock, return_value=resp):
            with pytest.raises(httpx.HTTPStatusError):
                _run(MetaConversionsDestination("px1", "tok").send("purchase", purchase_payload))

    def test_pixel_queues_command_with_same_event_id(self, purchase_payload):
        outbox = PixelOutbox()
        assert _run(MetaPixelDestination("px1", outbox).send("purchase", purchase_payload)) is True
        commands = outbox.drain("sess-1")
        assert commands == [{
            "method": "track",
            "event": "Purchase",
            "params": commands[0]["params"],
            "options": {"eventID": "purchase_5001"},
        }]
        assert outbox.drain("sess-1") == []

    def test_pixel_custom_event(self, anonymous_view_payload):
        outbox = PixelOutbox()
        _run(MetaPixelDestination("px1", outbox).send("engaged_session", anonymous_view_payload))
        assert outbox.drain("sess-2")[0]["method"] == "trackCustom"

    def test_outbox_bounds(self):
        outbox = PixelOutbox(max_sessions=2, max_per_session=3)
        for i in range(5):
            outbox.push("a", {"n": i})
        outbox.push("b", {"n": 0})
        outbox.push("c", {"n": 0})
        assert [c["n"] for c in outbox.drain("a")] == []  # evicted, oldest session
        assert len(outbox) == 2


# ── GA4 ─────────────────────────────────────────────────────────────


class TestGA4:
    def test_body(self, purchase_payload):
        body = GA4MeasurementProtocol("G-TEST", "secret").build_body("purchase", purchase_payload)
        assert body["client_id"] == "sess-1"
        assert body["user_id"] == "77"
        assert body["timestamp_micros"] == int(NOW.timestamp()) * 1_000_000
        params = body["events"][0]["params"]
        assert params["transaction_id"] == "5001"
        assert params["items"][0]["item_id"] == "101"

    def test_lead_renamed(self, anonymous_view_payload):
        body = GA4MeasurementProtocol("G-TEST", "secret").build_body("lead", anonymous_view_payload)
        assert body["events"][0]["name"] == "generate_lead"

    def test_send_params(self, purchase_payload):
        with patch("storefront_intel.http_client.http.post", new_callable=AsyncMock) as post:
            post.return_value = _ok_response()
            _run(GA4MeasurementProtocol("G-TEST", "secret").send("purchase", purchase_payload))
        assert post.call_args.kwargs["params"] == {"measurement_id": "G-TEST", "api_secret": "secret"}

    def test_identify_skipped(self, purchase_payload):
        assert _run(GA4MeasurementProtocol("G-TEST", "secret").send("identify", purchase_payload)) is False


# ── Selection ───────────────────────────────────────────────────────


class TestSelection:
    def test_only_configured_destinations(self):
        cfg = Settings(
            enabled_destinations=["tag_manager", "klaviyo", "meta_capi", "ga4"],
            tag_manager_url="https://sgtm.example.com",
            klaviyo_private_key="",
            meta_pixel_id="px1",
            meta_access_token="tok",
            ga4_measurement_id="",
            ga4_api_secret="",
        )
        assert [d.name for d in build_destinations(cfg)] == ["tag_manager", "meta_capi"]

    def test_not_listed_is_not_built(self):
        cfg = Settings(enabled_destinations=["ga4"], ga4_measurement_id="G-1", ga4_api_secret="s",
                       tag_manager_url="https://sgtm.example.com")
        assert [d.name for d in build_destinations(cfg)] == ["ga4"]

    def test_unknown_tag_raises(self):
        with pytest.raises(ValueError):
            build_destinations(Settings(enabled_destinations=["myspace"]))

    def test_status_report(self):
        cfg = Settings(enabled_destinations=["meta_pixel"], meta_pixel_id="px1")
        status = log_destination_status(cfg)
        assert status["meta_pixel"] is True
        assert status["klaviyo"] is False
