"""
tracking_service.py — Visitor recognition and session tracking

Handles one track-customer call from the storefront: figure out who the
visitor is, keep their device/profile current, log important events, and
send the matching server-side ad events.

Business Rules:
- Recognition order: explicit email → fingerprint on a profile →
  fingerprint on a device → most recent device from the same IP hash →
  anonymous. A missing email or fingerprint is never an error.
- Recognized visitors get a returning-visitor page_view; anonymous
  visitors only get one when they carry a Meta browser/click id (fbp/fbc)
- checkout_email_entered with an email and no customer id → lead
  (links the earlier anonymous events to the email)
- product_viewed → view_item, bundle_accepted → add_to_cart, search → search
- Only IMPORTANT_EVENTS are written to behavioral_events, with a session
  quality score (scoring_service.compute_session_score)
- The raw IP is hashed before it is stored; it is only forwarded to the
  ad platform as client_ip_address

Called by: routers/intelligence (/api/intelligence/track-customer)
Depends on: identity_store, scoring_service, dispatcher, utils/privacy
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..logging_config import mask_email
from ..utils import clean_str, safe_float
from ..utils.privacy import hash_ip
from . import identity_store
from .dispatcher import Dispatcher
from .events import LEAD, PAGE_VIEW, SEARCH, DomainEvent, EventKind
from .scoring_service import compute_session_score

log = logging.getLogger(__name__)

IMPORTANT_EVENTS = {
    "checkout_start",
    "checkout_email_entered",
    "bundle_viewed",
    "bundle_accepted",
    "bundle_rejected",
    "order_completed",
    "product_viewed",
    "search",
    "engaged_session",
}


@dataclass
class VisitContext:
    """Request-level facts the router pulls from headers."""

    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    geo_country: str | None = None
    geo_city: str | None = None
    geo_state: str | None = None


def profile_summary(profile) -> dict | None:
    if profile is None:
        return None
    return {
        "customer_email": profile.email,
        "customer_id": profile.customer_id,
        "total_orders": profile.total_orders or 0,
        "avg_order_value": profile.avg_order_value or 0,
        "days_since_last_order": profile.days_since_last_order,
        "profile_score": profile.profile_score or 0,
        "favorite_products": profile.favorite_products or [],
        "next_prime_window_start": profile.next_prime_window_start.isoformat() if profile.next_prime_window_start else None,
        "next_prime_window_end": profile.next_prime_window_end.isoformat() if profile.next_prime_window_end else None,
    }


def recognize(db: Session, fingerprint: str | None, ip_hash: str | None) -> tuple[str | None, str | None, str | None]:
    """(email, customer_id, recognized_by) for an anonymous visitor."""
    if fingerprint:
        profile = identity_store.find_profile_by_fingerprint(db, fingerprint)
        if profile is not None:
            return profile.email, profile.customer_id, "fingerprint"
        device = identity_store.find_device_by_fingerprint(db, fingerprint)
        if device is not None:
            return device.email, device.customer_id, "fingerprint"
    if ip_hash:
        device = identity_store.find_device_by_ip(db, ip_hash)
        if device is not None:
            return device.email, device.customer_id, "ip"
    return None, None, None


async def track_customer(db: Session, dispatcher: Dispatcher, body: dict, visit: VisitContext) -> dict:
    email = identity_store.normalize_email(body.get("email")) or None
    customer_id = clean_str(body.get("customer_id")) or None
    event_type = clean_str(body.get("event_type")) or "session_track"
    fingerprint = clean_str(body.get("fingerprint")) or None
    fbp = clean_str(body.get("fbp")) or None
    fbc = clean_str(body.get("fbc")) or None
    session_id = clean_str(body.get("session_id")) or None
    ip_hash = hash_ip(visit.ip)

    # ── Step 1: recognition ──
    recognized_email, recognized_customer_id, recognized_by = email, customer_id, None
    if not email:
        found_email, found_id, recognized_by = recognize(db, fingerprint, ip_hash)
        if found_email:
            recognized_email = found_email
            recognized_customer_id = recognized_customer_id or found_id

    def _event(kind, **kwargs) -> DomainEvent:
        return DomainEvent(
            kind=kind,
            session_id=session_id,
            customer_email=recognized_email,
            customer_id=recognized_customer_id,
            fingerprint=fingerprint,
            ip_address=visit.ip,
            ip_hash=ip_hash,
            user_agent=visit.user_agent,
            fbp=fbp,
            fbc=fbc,
            source_url=visit.referer,
            identity={"city": visit.geo_city, "state": visit.geo_state, "country": visit.geo_country},
            **kwargs,
        )

    outbound: list[DomainEvent] = []
    if recognized_by or (not recognized_email and (fbp or fbc)):
        outbound.append(_event(EventKind.CUSTOM, custom_name=PAGE_VIEW))

    # ── Step 2: device + profile ──
    profile = None
    if recognized_email:
        identity_store.upsert_device(
            db,
            email=recognized_email,
            ip_hash=ip_hash,
            fingerprint=fingerprint,
            user_agent=visit.user_agent,
            geo_country=visit.geo_country,
            geo_city=visit.geo_city,
            customer_id=recognized_customer_id,
        )
        profile = identity_store.find_profile(db, recognized_email)
        if profile is None or (fingerprint and profile.browser_fingerprint != fingerprint):
            profile = identity_store.upsert_profile(
                db,
                recognized_email,
                customer_id=recognized_customer_id,
                ip_hash=ip_hash,
                browser_fingerprint=fingerprint,
                geo_country=visit.geo_country,
                geo_city=visit.geo_city,
            )

    # ── Step 3: event-specific ad events ──
    if email and not customer_id and event_type == "checkout_email_entered":
        outbound.append(_event(EventKind.CUSTOM, custom_name=LEAD))

    if event_type == "product_viewed" and body.get("product_id"):
        outbound.append(_event(
            EventKind.VIEW_ITEM,
            items=[{
                "id": body["product_id"],
                "name": body.get("product_name"),
                "price": body.get("product_price"),
                "quantity": 1,
            }],
        ))

    bundle_data = body.get("bundle_data") or {}
    if event_type == "bundle_accepted" and bundle_data:
        outbound.append(_event(
            EventKind.ADD_TO_CART,
            items=[{
                "id": bundle_data.get("product_id") or "bundle",
                "name": bundle_data.get("name") or "Bundle",
                "price": bundle_data.get("value") or 0,
                "quantity": 1,
            }],
            value=safe_float(bundle_data.get("value")) or 0.0,
        ))

    if event_type == "search" and body.get("search_query"):
        outbound.append(_event(
            EventKind.CUSTOM,
            custom_name=SEARCH,
            properties={"search_string": clean_str(body["search_query"])},
        ))

    for event in outbound:
        await dispatcher.dispatch(event, db=db, record=False)

    # ── Step 4: behavioral log ──
    session_score = None
    if event_type in IMPORTANT_EVENTS:
        session_score = compute_session_score(profile, event_type, body)
        identity_store.log_event(
            db,
            event_type,
            session_id=session_id or uuid.uuid4().hex,
            customer_email=recognized_email,
            customer_id=recognized_customer_id,
            ip_hash=ip_hash,
            browser_fingerprint=fingerprint,
            event_data={
                "user_agent": visit.user_agent,
                "page_url": visit.referer or "/",
                "session_quality_score": session_score,
                "geolocation": {"city": visit.geo_city, "state": visit.geo_state, "country": visit.geo_country}
                if visit.geo_country else None,
            },
        )

    if recognized_by:
        log.info(f"Returning visitor recognized by {recognized_by}: {mask_email(recognized_email)}")

    return {
        "success": True,
        "tracked": {
            "customer_email": recognized_email,
            "customer_id": recognized_customer_id,
            "recognized_by": recognized_by,
            "ip_recognized": recognized_by == "ip",
            "fingerprint_recognized": recognized_by == "fingerprint",
        },
        "session_quality_score": session_score,
        "profile": profile_summary(profile),
    }
