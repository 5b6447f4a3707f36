"""
test_middleware.py — Tests for request/response middleware and error shape

Verifies request ID generation, timing headers, the health check, and the
structured ErrorResponse body on 404/422.

Called by: pytest
Depends on: storefront_intel/main.py (middleware, handlers), tests/conftest.py (client fixture)
"""


def test_request_id_header_present(client):
    resp = client.get("/health")
    assert "X-Request-ID" in resp.headers
    assert len(resp.headers["X-Request-ID"]) == 8


def test_request_id_unique_per_request(client):
    id1 = client.get("/health").headers["X-Request-ID"]
    id2 = client.get("/health").headers["X-Request-ID"]
    assert id1 != id2


def test_response_time_header(client):
    resp = client.get("/health")
    assert resp.headers["X-Response-Time"].endswith("ms")


def test_health_returns_ok(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_404_still_gets_request_id(client):
    resp = client.get("/nonexistent-route-xyz")
    assert resp.status_code == 404
    assert "X-Request-ID" in resp.headers
    body = resp.json()
    assert body["status_code"] == 404
    assert body["request_id"] == resp.headers["X-Request-ID"]
    assert body["path"] == "/nonexistent-route-xyz"


def test_validation_error_shape(client):
    resp = client.post("/api/intelligence/suggestion", json={"cart_items": []})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "Validation error"
    assert any("subtotal" in d["loc"] for d in body["detail"])


def test_app_state_wired(client):
    from storefront_intel.main import app

    assert app.state.dispatcher is not None
    assert app.state.registry is not None
    assert app.state.offer_cache is not None
    assert app.state.pixel_outbox is not None
