"""
intelligence.py — Customer Intelligence API

Endpoints the storefront calls to track visitors, fetch and acknowledge
bundle offers, recalculate a customer's profile, and get a cart upsell
suggestion.

Called by: main.py (router mount)
Depends on: services/tracking_service, services/bundle_service,
            services/scoring_service, services/suggestion_service,
            cache/offer_cache, dependencies
"""

from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..cache.offer_cache import OfferCache
from ..database import get_db
from ..dependencies import get_dispatcher, get_offer_cache, get_visit_context
from ..schemas.intelligence import BundleStatusUpdate, Recalculate, SuggestionRequest, TrackCustomer
from ..services import bundle_service, identity_store
from ..services.dispatcher import Dispatcher
from ..services.tracking_service import VisitContext

router = APIRouter()


@router.post("/api/intelligence/track-customer")
async def track_customer(
    body: TrackCustomer,
    visit: VisitContext = Depends(get_visit_context),
    dispatcher: Dispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
):
    """Recognize the visitor, update device/profile, log the event."""
    from ..services.tracking_service import track_customer as _track

    return await _track(db, dispatcher, body.model_dump(), visit)


def _resolve_email(db: Session, customer_email: str | None, fingerprint: str | None) -> str | None:
    if customer_email:
        return identity_store.normalize_email(customer_email)
    device = identity_store.find_device_by_fingerprint(db, fingerprint)
    if device is not None:
        return device.email
    profile = identity_store.find_profile_by_fingerprint(db, fingerprint)
    return profile.email if profile else None


@router.get("/api/intelligence/bundle")
async def get_bundle(
    customer_email: str | None = None,
    fingerprint: str | None = None,
    cache: OfferCache = Depends(get_offer_cache),
    db: Session = Depends(get_db),
):
    """Active bundle offer for a customer, found by email or fingerprint."""
    if not customer_email and not fingerprint:
        raise HTTPException(400, "Email or fingerprint required")

    email = _resolve_email(db, customer_email, fingerprint)
    if not email:
        return {"success": False, "message": "Customer not found"}

    async def _fetch():
        offer = identity_store.find_active_offer(db, email)
        if offer is None:
            return None
        profile = identity_store.find_profile(db, email)
        return {"expires_at": offer.expires_at, "body": bundle_service.serialize_offer(offer, profile)}

    cached = await cache.get_or_fetch(email, _fetch)
    if cached is not None and cached["expires_at"] <= datetime.now(timezone.utc):
        cache.invalidate(email)
        cached = await cache.get_or_fetch(email, _fetch)
    if cached is None:
        return {"success": False, "message": "No active bundle offer available for this customer"}
    return {"success": True, **cached["body"], "customer": {"email": email}}


@router.post("/api/intelligence/bundle-status")
async def update_bundle_status(
    body: BundleStatusUpdate,
    cache: OfferCache = Depends(get_offer_cache),
    db: Session = Depends(get_db),
):
    """Client acknowledgment of an offer (viewed / accepted / rejected / completed)."""
    try:
        offer = bundle_service.update_offer_status(
            db,
            body.offer_id,
            body.status,
            conversion_value=body.conversion_value,
            customer_email=body.customer_email,
            session_id=body.session_id,
        )
    except ValueError as e:
        raise HTTPException(409, str(e))
    if offer is None:
        raise HTTPException(404, "Bundle offer not found")
    cache.invalidate(offer.customer_email)
    return {"success": True, "offer_id": offer.id, "status": offer.status}


@router.post("/api/intelligence/recalculate")
async def recalculate(
    body: Recalculate,
    cache: OfferCache = Depends(get_offer_cache),
    db: Session = Depends(get_db),
):
    """Recalculate a profile from the caller's order history; try a bundle offer."""
    from ..services.scoring_service import recalculate_profile
    from ..services.tracking_service import profile_summary

    email = identity_store.normalize_email(body.customer_email)
    if not email:
        raise HTTPException(400, "customer_email required")
    if body.customer_id is not None:
        identity_store.upsert_profile(db, email, customer_id=str(body.customer_id))
    profile = recalculate_profile(db, email, body.orders)
    if profile is None:
        return {"success": False, "message": "Profile could not be recalculated"}

    bundle = None
    if body.generate_bundle and identity_store.find_active_offer(db, email) is None:
        catalog = {str(p.id): {"name": p.name, "price": p.price} for p in body.catalog}
        result = bundle_service.generate_bundle_offer(db, email, catalog=catalog)
        bundle = {"success": result["success"], "message": result["message"]}
        if result["success"]:
            bundle["offer"] = bundle_service.serialize_offer(result["offer"], profile)
            bundle["pricing"] = result["pricing"]
    cache.invalidate(email)
    return {"success": True, "profile": profile_summary(profile), "bundle": bundle}


@router.post("/api/intelligence/suggestion")
async def product_suggestion(body: SuggestionRequest):
    """Next product to suggest in the cart sidebar, or null."""
    from ..services.suggestion_service import extract_purchased_product_ids, suggest_product

    if body.purchased_ids is not None:
        purchased = [str(p) for p in body.purchased_ids]
    else:
        purchased = extract_purchased_product_ids(body.orders)
    suggestion = suggest_product(purchased, body.cart_items, body.subtotal)
    return {"suggestion": asdict(suggestion) if suggestion else None}
