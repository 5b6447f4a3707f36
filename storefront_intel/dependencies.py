"""
dependencies.py — Shared FastAPI Dependencies

Hands routers the long-lived objects built in the app lifespan (dispatcher,
capture session registry, offer cache) and the request's visit context.
Routers import from here instead of reaching into app.state themselves.

Business Rules:
- Client IP: first X-Forwarded-For hop, then X-Real-IP, then the socket peer
- Geo comes from CDN headers only (Cloudflare / Vercel); no geo-IP lookup
- The storefront has no user login here: every endpoint is anonymous-safe

Called by: routers/intelligence, routers/capture
Depends on: services/tracking_service (VisitContext), app.state
"""

from fastapi import Request

from .cache.offer_cache import OfferCache
from .capture.session import SessionRegistry
from .destinations import PixelOutbox
from .services.dispatcher import Dispatcher
from .services.tracking_service import VisitContext


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_offer_cache(request: Request) -> OfferCache:
    return request.app.state.offer_cache


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_visit_context(request: Request) -> VisitContext:
    headers = request.headers
    return VisitContext(
        ip=client_ip(request),
        user_agent=headers.get("user-agent"),
        referer=headers.get("referer"),
        geo_country=headers.get("cf-ipcountry") or headers.get("x-vercel-ip-country"),
        geo_city=headers.get("x-vercel-ip-city"),
        geo_state=headers.get("x-vercel-ip-country-region"),
    )


def get_pixel_outbox(request: Request) -> PixelOutbox:
    return request.app.state.pixel_outbox
