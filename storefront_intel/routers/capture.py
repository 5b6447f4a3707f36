"""
capture.py — Event Capture API

The storefront posts plain snapshots of its current state (cart, checkout
form, scroll position) after each change; the capture session diffs them
and emits only the events that changed. The exit beacon returns 202 at
once and delivers in the background.

Called by: main.py (router mount)
Depends on: capture/session (SessionRegistry), dependencies
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..capture.engagement import scroll_depth
from ..capture.session import CaptureSession, SessionRegistry
from ..dependencies import client_ip, get_pixel_outbox, get_registry
from ..destinations import PixelOutbox
from ..schemas.capture import CartSnapshot, CheckoutSnapshot, EngagementTick, PurchaseIn, ScrollUpdate, VisitorIn
from ..utils.privacy import hash_ip

router = APIRouter()


def _session(registry: SessionRegistry, session_id: str, visitor: VisitorIn | None, request: Request) -> CaptureSession:
    session = registry.get(session_id)
    ip = client_ip(request)
    session.update_context(
        ip_address=ip,
        ip_hash=hash_ip(ip),
        user_agent=request.headers.get("user-agent"),
    )
    if visitor is not None:
        session.update_context(
            customer_email=(visitor.customer_email or "").strip().lower() or None,
            customer_id=str(visitor.customer_id) if visitor.customer_id is not None else None,
            fingerprint=visitor.fingerprint,
            fbp=visitor.fbp,
            fbc=visitor.fbc,
            source_url=visitor.page_url,
        )
    return session


def _results(results) -> dict:
    return {"events": [r.to_dict() for r in results if r is not None]}


@router.post("/api/capture/{session_id}/cart")
async def capture_cart(session_id: str, body: CartSnapshot, request: Request,
                       registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, session_id, body, request)
    results = await session.observe_cart([i.model_dump() for i in body.items])
    return _results(results)


@router.post("/api/capture/{session_id}/checkout")
async def capture_checkout(session_id: str, body: CheckoutSnapshot, request: Request,
                           registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, session_id, body, request)
    identity = {
        "phone": body.phone,
        "first_name": body.first_name,
        "last_name": body.last_name,
        "city": body.city,
        "zip": body.postcode,
        "country": body.country,
    }
    results = await session.observe_checkout(
        [i.model_dump() for i in body.items],
        email=body.email,
        step=body.step,
        identity={k: v for k, v in identity.items() if v},
    )
    return _results(results)


@router.post("/api/capture/{session_id}/scroll")
async def capture_scroll(session_id: str, body: ScrollUpdate, request: Request,
                         registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, session_id, body, request)
    if body.new_page_view:
        session.new_page_view(body.page_url)
    depth = scroll_depth(body.scroll_top, body.window_height, body.document_height)
    result = await session.observe_scroll(depth)
    return {"scroll_depth": depth, **_results([result])}


@router.post("/api/capture/{session_id}/engagement")
async def capture_engagement_tick(session_id: str, body: EngagementTick, request: Request,
                                  registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, session_id, body, request)
    result = await session.tick(elapsed=body.elapsed_seconds)
    return _results([result])


@router.post("/api/capture/{session_id}/exit", status_code=202)
async def capture_exit(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Page unload beacon. Never waits for delivery."""
    session = registry.peek(session_id)
    queued = session.exit() is not None if session is not None else False
    return JSONResponse({"queued": queued}, status_code=202)


@router.post("/api/capture/{session_id}/purchase")
async def capture_purchase(session_id: str, body: PurchaseIn, request: Request,
                           registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, session_id, body, request)
    result = await session.purchase({
        "id": body.order_id,
        "total": body.total,
        "tax": body.tax,
        "shipping": body.shipping,
        "items": [i.model_dump() for i in body.items],
        "billing": body.billing,
    })
    return result.to_dict()


@router.get("/api/capture/{session_id}/pixel")
async def drain_pixel_commands(session_id: str, outbox: PixelOutbox = Depends(get_pixel_outbox)):
    """Queued fbq() commands for the browser to replay."""
    return {"commands": outbox.drain(session_id)}
