"""
bundle_service.py — Personalized bundle offers (prime-window up-sell)

Builds a bundle of the customer's favorite products, one unit larger than
their biggest order, when they are in their predicted reorder window.

Business Rules:
- Requires a recalculated profile in its prime window: 14+ days since the
  last order, or "now" inside [next_prime_window_start, next_prime_window_end]
- Requires at least one favorite that is not an excluded product
- Target quantity = peak_spending_quantity + 1, and must be at least 4
- Composition: one favorite takes the whole quantity; otherwise the top two
  split 60/40 (primary rounded up)
- Discount: qty >= 7 → 15%, >= 5 → 12%, >= 4 → 10%; score >= 80 → +3,
  score >= 60 → +2; never above 20%
- Bonus points: floor(final price), x1.5 (score >= 80) or x1.25 (>= 60), floored
- Offers expire offer_expiry_days (7) after being offered
- Status changes are logged as behavioral events (bundle_viewed, ...)

Called by: routers/intelligence (bundle, bundle-status, recalculate)
Depends on: identity_store, config
"""

import logging
import math
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..config import settings
from ..logging_config import mask_email
from ..models import BundleOffer, CustomerProfile
from ..utils import clean_str, safe_float
from . import identity_store

log = logging.getLogger(__name__)

# ── Thresholds ──
MIN_BUNDLE_QUANTITY = 4
RE_ENGAGE_DAYS = 14  # this long since the last order counts as prime window
PRIMARY_SHARE = 0.6
MAX_DISCOUNT_PCT = 20
QUANTITY_DISCOUNTS = ((7, 15), (5, 12), (4, 10))  # (min qty, pct)
SCORE_BONUSES = ((80, 3, 1.5), (60, 2, 1.25))  # (min score, extra pct, points multiplier)

STATUS_EVENT_TYPES = {
    "viewed": "bundle_viewed",
    "accepted": "bundle_accepted",
    "added_to_cart": "bundle_accepted",
    "rejected": "bundle_rejected",
    "completed": "bundle_completed",
    "purchased": "bundle_completed",
}


def is_in_prime_window(profile: CustomerProfile, now: datetime | None = None) -> bool:
    if now is None:
        now = datetime.now(timezone.utc)
    days_since = profile.days_since_last_order
    if days_since is not None and days_since >= RE_ENGAGE_DAYS:
        return True
    start, end = profile.next_prime_window_start, profile.next_prime_window_end
    if not start or not end:
        return False
    return start <= now <= end


def compose_bundle(favorites: list[dict], target_quantity: int, catalog: dict | None = None) -> list[dict]:
    """[{product_id, name, quantity}] from the top one or two favorites."""
    catalog = catalog or {}
    top = favorites[:2]

    def _line(fav, qty):
        pid = clean_str(fav.get("product_id"))
        name = (catalog.get(pid) or {}).get("name") or fav.get("name") or f"Product {pid}"
        return {"product_id": pid, "name": name, "quantity": qty}

    if len(top) < 2:
        return [_line(top[0], target_quantity)]
    primary_qty = math.ceil(target_quantity * PRIMARY_SHARE)
    return [_line(top[0], primary_qty), _line(top[1], target_quantity - primary_qty)]


def discount_percentage(quantity: int, profile_score: int) -> int:
    pct = 0
    for min_qty, qty_pct in QUANTITY_DISCOUNTS:
        if quantity >= min_qty:
            pct = qty_pct
            break
    for min_score, extra_pct, _ in SCORE_BONUSES:
        if (profile_score or 0) >= min_score:
            pct += extra_pct
            break
    return min(MAX_DISCOUNT_PCT, pct)


def price_bundle(bundle: list[dict], profile_score: int, catalog: dict | None = None) -> dict:
    """Attach unit prices from the catalog and compute the discounted total."""
    catalog = catalog or {}
    base = 0.0
    for line in bundle:
        unit_price = safe_float((catalog.get(line["product_id"]) or {}).get("price")) or 0.0
        line["unit_price"] = unit_price
        line["subtotal"] = round(unit_price * line["quantity"], 2)
        base += unit_price * line["quantity"]
    pct = discount_percentage(sum(line["quantity"] for line in bundle), profile_score)
    discount = base * pct / 100
    return {
        "base_price": round(base, 2),
        "discount_percentage": pct,
        "discount_amount": round(discount, 2),
        "final_price": round(base - discount, 2),
    }


def bonus_points(final_price: float, profile_score: int) -> int:
    points = math.floor(final_price)
    for min_score, _, multiplier in SCORE_BONUSES:
        if (profile_score or 0) >= min_score:
            points = points * multiplier
            break
    return math.floor(points)


def offer_message(bundle: list[dict], pricing: dict, points: int) -> str:
    products = " + ".join(f"{line['quantity']}x {line['name']}" for line in bundle)
    return (
        f"Special offer! Order {products} for only €{pricing['final_price']:.2f} "
        f"(normally €{pricing['base_price']:.2f}) and earn {points} loyalty points!"
    )


def personalized_message(profile: CustomerProfile | None) -> str:
    """Headline shown above an offer, by order count and recency."""
    if profile is None:
        return "This bundle was put together just for you!"
    if not profile.total_orders:
        return f"Welcome! This bundle is the perfect way to discover {settings.brand}."
    if profile.days_since_last_order and profile.days_since_last_order > 60:
        return "We missed you! This bundle is our welcome back."
    if profile.total_orders >= 5:
        return "As a loyal customer you get this exclusive bundle offer!"
    return "Based on your previous orders we made this bundle especially for you."


def generate_bundle_offer(
    db: Session,
    email: str,
    catalog: dict | None = None,
    customer_id: str | None = None,
    cart_snapshot: list | None = None,
    now: datetime | None = None,
) -> dict:
    """Try to create a bundle offer. Always returns {"success": bool, "message": str, ...}.

    `catalog` maps product id → {"name", "price"}.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    profile = identity_store.find_profile(db, email)
    if profile is None:
        return {"success": False, "message": "Customer profile not found"}
    if not is_in_prime_window(profile, now):
        return {
            "success": False,
            "message": "Customer not in prime buying window yet",
            "next_window": profile.next_prime_window_start,
        }

    excluded = {str(x) for x in settings.excluded_product_ids}
    favorites = [f for f in profile.favorite_products or [] if clean_str(f.get("product_id")) not in excluded]
    if not favorites:
        return {"success": False, "message": "No eligible favorite products"}

    target_qty = (profile.peak_spending_quantity or 0) + 1
    if target_qty < MIN_BUNDLE_QUANTITY:
        return {"success": False, "message": "Peak spending too low for a bundle offer"}

    bundle = compose_bundle(favorites, target_qty, catalog)
    pricing = price_bundle(bundle, profile.profile_score or 0, catalog)
    points = bonus_points(pricing["final_price"], profile.profile_score or 0)

    offer = identity_store.create_offer(
        db,
        customer_id=customer_id or profile.customer_id,
        customer_email=profile.email,
        bundle_products=bundle,
        total_quantity=target_qty,
        base_price=pricing["base_price"],
        discount_amount=pricing["discount_amount"],
        final_price=pricing["final_price"],
        bonus_points=points,
        trigger_reason="prime_window",
        cart_snapshot=cart_snapshot,
        status="pending",
        offered_at=now,
        expires_at=now + timedelta(days=settings.offer_expiry_days),
    )
    if offer is None:
        return {"success": False, "message": "Bundle offer could not be saved"}

    log.info(f"Bundle offer {offer.id} created for {mask_email(profile.email)}: {target_qty} items, €{pricing['final_price']}")
    return {
        "success": True,
        "offer": offer,
        "pricing": pricing,
        "bonus_points": points,
        "message": offer_message(bundle, pricing, points),
    }


def serialize_offer(offer: BundleOffer, profile: CustomerProfile | None = None, now: datetime | None = None) -> dict:
    return {
        "offer_id": offer.id,
        "status": identity_store.effective_status(offer, now),
        "bundle": offer.bundle_products or [],
        "pricing": {
            "base_price": offer.base_price,
            "discount_amount": offer.discount_amount,
            "final_price": offer.final_price,
        },
        "bonus_points": offer.bonus_points or 0,
        "target_quantity": offer.total_quantity,
        "expires_at": offer.expires_at.isoformat() if offer.expires_at else None,
        "message": personalized_message(profile),
        "profile": {
            "total_orders": profile.total_orders,
            "days_since_last_order": profile.days_since_last_order,
            "favorite_products": profile.favorite_products or [],
        } if profile else None,
    }


def update_offer_status(
    db: Session,
    offer_id: int,
    status: str,
    conversion_value: float | None = None,
    customer_email: str | None = None,
    session_id: str | None = None,
    now: datetime | None = None,
) -> BundleOffer | None:
    """Apply a client acknowledgment to an offer.

    Returns None if the offer does not exist. Raises ValueError for an
    unknown status or an illegal transition.
    """
    offer = identity_store.get_offer(db, offer_id)
    if offer is None:
        return None
    if now is None:
        now = datetime.now(timezone.utc)
    previous = identity_store.effective_status(offer, now)
    offer = identity_store.transition_offer(db, offer, status, conversion_value=conversion_value, now=now)

    # a repeated acknowledgment (same status) is not a new behavioral event
    event_type = STATUS_EVENT_TYPES.get(status)
    if event_type and status != previous:
        identity_store.log_event(
            db,
            event_type,
            session_id=session_id,
            customer_email=customer_email or offer.customer_email,
            customer_id=offer.customer_id,
            event_data={"offer_id": offer.id, "status": status},
        )
    return offer
