"""
identity_store.py — Identity & Correlation Store

Durable upsert/read access to CustomerProfile, DeviceRecord, BundleOffer
and BehavioralEvent. The source of truth for "who is this visitor".

Business Rules:
- Every operation is best-effort: a database failure is logged, the
  session is rolled back, and the caller gets None/False. Checkout and
  cart flows must never see a store error.
- Unique-key upserts (profile by email, device by identity triple) use the
  database's native INSERT ... ON CONFLICT DO UPDATE, never read-then-write,
  so two tabs racing on the same key cannot create duplicate rows.
- upsert_profile only merges identity fields. Derived metrics (score, prime
  window, favorites) are written by apply_profile_metrics, which only
  scoring_service calls.
- Offer status is one-directional (OFFER_TRANSITIONS). An overdue pending
  or viewed offer reads as "expired" everywhere via effective_status().
- behavioral_events is append-only.

Called by: services/tracking_service, services/scoring_service,
           services/bundle_service, services/dispatcher, routers/intelligence
Depends on: models (CustomerProfile, DeviceRecord, BundleOffer, BehavioralEvent)
"""

import functools
import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..logging_config import mask_email
from ..models import BehavioralEvent, BundleOffer, CustomerProfile, DeviceRecord

log = logging.getLogger(__name__)

# ── Offer lifecycle ──

ACTIVE_OFFER_STATUSES = ("pending", "viewed")
OFFER_TRANSITIONS = {
    "pending": {"viewed", "accepted", "added_to_cart", "rejected", "expired"},
    "viewed": {"accepted", "added_to_cart", "rejected", "expired"},
    "accepted": {"completed", "purchased", "rejected"},
    "added_to_cart": {"completed", "purchased", "rejected"},
    "completed": set(),
    "purchased": set(),
    "rejected": set(),
    "expired": set(),
}
OFFER_STATUSES = tuple(OFFER_TRANSITIONS)

# Identity fields any caller may merge into a profile
PROFILE_INPUT_FIELDS = {"customer_id", "ip_hash", "browser_fingerprint", "geo_country", "geo_city"}

# Derived fields, written only through apply_profile_metrics
PROFILE_METRIC_FIELDS = {
    "favorite_products",
    "peak_spending_quantity",
    "peak_spending_amount",
    "avg_order_value",
    "total_orders",
    "last_order_date",
    "days_since_last_order",
    "purchase_cycle_days",
    "next_prime_window_start",
    "next_prime_window_end",
    "profile_score",
    "last_recalculated",
}


def normalize_email(email) -> str:
    return (email or "").strip().lower()


def _best_effort(default=None):
    """Log + rollback + return `default` on any store failure."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(db: Session, *args, **kwargs):
            try:
                return fn(db, *args, **kwargs)
            except Exception as e:
                log.error(f"identity_store.{fn.__name__} failed: {e}")
                try:
                    db.rollback()
                except Exception as rollback_err:
                    log.warning(f"identity_store rollback failed: {rollback_err}")
                return default

        return wrapper

    return decorator


def _insert_for(db: Session):
    """Dialect-specific insert() that supports on_conflict_do_update."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"No atomic upsert available for dialect {dialect!r}")
    return insert


# ═══════════════════════════════════════════════════════════════════════
#  PROFILES
# ═══════════════════════════════════════════════════════════════════════


@_best_effort()
def find_profile(db: Session, email: str) -> CustomerProfile | None:
    email = normalize_email(email)
    if not email:
        return None
    return (
        db.query(CustomerProfile)
        .filter(CustomerProfile.email == email)
        .execution_options(populate_existing=True)
        .first()
    )


@_best_effort()
def find_profile_by_fingerprint(db: Session, fingerprint: str) -> CustomerProfile | None:
    if not fingerprint:
        return None
    return (
        db.query(CustomerProfile)
        .filter(CustomerProfile.browser_fingerprint == fingerprint)
        .order_by(CustomerProfile.updated_at.desc())
        .first()
    )


@_best_effort()
def upsert_profile(db: Session, email: str, **fields) -> CustomerProfile | None:
    """Merge identity fields into the profile for `email`, creating it if needed.

    Fields passed as None are left unchanged. Derived metric fields are
    ignored here; see apply_profile_metrics.
    """
    email = normalize_email(email)
    if not email:
        return None

    ignored = set(fields) - PROFILE_INPUT_FIELDS
    if ignored:
        log.debug(f"upsert_profile ignoring non-identity fields: {sorted(ignored)}")
    values = {k: v for k, v in fields.items() if k in PROFILE_INPUT_FIELDS and v is not None}

    now = datetime.now(timezone.utc)
    insert = _insert_for(db)
    stmt = insert(CustomerProfile).values(email=email, created_at=now, updated_at=now, **values)
    update_set = {k: stmt.excluded[k] for k in values}
    update_set["updated_at"] = now
    stmt = stmt.on_conflict_do_update(index_elements=["email"], set_=update_set)
    db.execute(stmt)
    db.commit()
    return find_profile(db, email)


@_best_effort()
def apply_profile_metrics(db: Session, email: str, metrics: dict) -> CustomerProfile | None:
    """Write recalculated metrics onto a profile. Only scoring_service calls this."""
    email = normalize_email(email)
    profile = find_profile(db, email)
    if profile is None:
        profile = upsert_profile(db, email)
    if profile is None:
        return None
    for key, value in metrics.items():
        if key in PROFILE_METRIC_FIELDS:
            setattr(profile, key, value)
    profile.updated_at = datetime.now(timezone.utc)
    db.commit()
    return profile


# ═══════════════════════════════════════════════════════════════════════
#  DEVICES
# ═══════════════════════════════════════════════════════════════════════


@_best_effort()
def upsert_device(
    db: Session,
    email: str | None = None,
    ip_hash: str | None = None,
    fingerprint: str | None = None,
    user_agent: str | None = None,
    geo_country: str | None = None,
    geo_city: str | None = None,
    customer_id: str | None = None,
) -> DeviceRecord | None:
    """Insert the device triple or bump visit_count/last_seen atomically."""
    email = normalize_email(email)
    ip_hash = ip_hash or ""
    fingerprint = fingerprint or ""
    if not (email or ip_hash or fingerprint):
        return None

    now = datetime.now(timezone.utc)
    table = DeviceRecord.__table__
    insert = _insert_for(db)
    stmt = insert(DeviceRecord).values(
        email=email,
        ip_hash=ip_hash,
        browser_fingerprint=fingerprint,
        customer_id=customer_id,
        first_seen=now,
        last_seen=now,
        visit_count=1,
        user_agent=user_agent,
        geo_country=geo_country,
        geo_city=geo_city,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["email", "ip_hash", "browser_fingerprint"],
        set_={
            "visit_count": table.c.visit_count + 1,
            "last_seen": now,
            "user_agent": func.coalesce(stmt.excluded.user_agent, table.c.user_agent),
            "geo_country": func.coalesce(stmt.excluded.geo_country, table.c.geo_country),
            "geo_city": func.coalesce(stmt.excluded.geo_city, table.c.geo_city),
            "customer_id": func.coalesce(stmt.excluded.customer_id, table.c.customer_id),
        },
    )
    db.execute(stmt)
    db.commit()
    return (
        db.query(DeviceRecord)
        .filter(
            DeviceRecord.email == email,
            DeviceRecord.ip_hash == ip_hash,
            DeviceRecord.browser_fingerprint == fingerprint,
        )
        .execution_options(populate_existing=True)
        .first()
    )


@_best_effort()
def find_device_by_fingerprint(db: Session, fingerprint: str) -> DeviceRecord | None:
    """Most recent device with this fingerprint that is tied to an email."""
    if not fingerprint:
        return None
    return (
        db.query(DeviceRecord)
        .filter(DeviceRecord.browser_fingerprint == fingerprint, DeviceRecord.email != "")
        .order_by(DeviceRecord.last_seen.desc())
        .first()
    )


@_best_effort()
def find_device_by_ip(db: Session, ip_hash: str) -> DeviceRecord | None:
    """Most recent emailed device seen from this IP hash."""
    if not ip_hash:
        return None
    return (
        db.query(DeviceRecord)
        .filter(DeviceRecord.ip_hash == ip_hash, DeviceRecord.email != "")
        .order_by(DeviceRecord.last_seen.desc())
        .first()
    )


# ═══════════════════════════════════════════════════════════════════════
#  BUNDLE OFFERS
# ═══════════════════════════════════════════════════════════════════════


def effective_status(offer: BundleOffer, now: datetime | None = None) -> str:
    """Stored status, except an overdue pending/viewed offer reads as expired."""
    if now is None:
        now = datetime.now(timezone.utc)
    expires_at = offer.expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if offer.status in ACTIVE_OFFER_STATUSES and expires_at is not None and expires_at <= now:
        return "expired"
    return offer.status


@_best_effort()
def find_active_offer(db: Session, email: str, now: datetime | None = None) -> BundleOffer | None:
    """Newest pending/viewed offer for `email` that has not expired."""
    email = normalize_email(email)
    if not email:
        return None
    if now is None:
        now = datetime.now(timezone.utc)
    return (
        db.query(BundleOffer)
        .filter(
            BundleOffer.customer_email == email,
            BundleOffer.status.in_(ACTIVE_OFFER_STATUSES),
            BundleOffer.expires_at > now,
        )
        .order_by(BundleOffer.offered_at.desc(), BundleOffer.id.desc())
        .first()
    )


@_best_effort()
def get_offer(db: Session, offer_id: int) -> BundleOffer | None:
    return db.get(BundleOffer, offer_id)


@_best_effort()
def create_offer(db: Session, **fields) -> BundleOffer | None:
    fields["customer_email"] = normalize_email(fields.get("customer_email"))
    offer = BundleOffer(**fields)
    db.add(offer)
    db.commit()
    db.refresh(offer)
    return offer


def transition_offer(
    db: Session,
    offer: BundleOffer,
    new_status: str,
    conversion_value: float | None = None,
    now: datetime | None = None,
) -> BundleOffer:
    """Move an offer to `new_status`. Raises ValueError on an illegal transition."""
    if new_status not in OFFER_TRANSITIONS:
        raise ValueError(f"Unknown offer status: {new_status}")
    if now is None:
        now = datetime.now(timezone.utc)

    current = effective_status(offer, now)
    if new_status == current:
        return offer
    if new_status not in OFFER_TRANSITIONS[current]:
        raise ValueError(f"Cannot move offer {offer.id} from {current} to {new_status}")

    offer.status = new_status
    if new_status == "viewed":
        offer.viewed_at = now
    elif new_status != "expired":
        offer.responded_at = now
    if conversion_value is not None:
        offer.conversion_value = conversion_value
    db.commit()
    return offer


# ═══════════════════════════════════════════════════════════════════════
#  BEHAVIORAL LOG
# ═══════════════════════════════════════════════════════════════════════


def log_event(
    db: Session,
    event_type: str,
    session_id: str | None = None,
    customer_email: str | None = None,
    customer_id: str | None = None,
    ip_hash: str | None = None,
    browser_fingerprint: str | None = None,
    event_data: dict | None = None,
    timestamp: datetime | None = None,
) -> BehavioralEvent | None:
    """Append one behavioral event. Never raises."""
    try:
        row = BehavioralEvent(
            session_id=session_id,
            customer_id=customer_id,
            customer_email=normalize_email(customer_email) or None,
            ip_hash=ip_hash,
            browser_fingerprint=browser_fingerprint,
            event_type=event_type,
            event_data=event_data or {},
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        db.add(row)
        db.commit()
        return row
    except Exception as e:
        log.warning(f"Behavioral event {event_type} for {mask_email(customer_email)} not logged: {e}")
        try:
            db.rollback()
        except Exception as rollback_err:
            log.warning(f"identity_store rollback failed: {rollback_err}")
        return None
