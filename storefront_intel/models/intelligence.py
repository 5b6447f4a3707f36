"""Intelligence models — profiles, devices, bundle offers, behavioral log."""

from sqlalchemy import (
    JSON,
    Column,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base, UTCDateTime, utcnow


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"
    id = Column(Integer, primary_key=True)
    customer_id = Column(String(64))  # external shop customer reference
    email = Column(String(255), nullable=False, unique=True, index=True)
    ip_hash = Column(String(64))
    browser_fingerprint = Column(String(255))
    geo_country = Column(String(8))
    geo_city = Column(String(120))

    # Derived by scoring_service.recalculate_profile only
    favorite_products = Column(JSON, default=list)  # [{product_id, quantity, appearances, score}]
    peak_spending_quantity = Column(Integer, default=0)
    peak_spending_amount = Column(Float, default=0)
    avg_order_value = Column(Float, default=0)
    total_orders = Column(Integer, default=0)
    last_order_date = Column(UTCDateTime)
    days_since_last_order = Column(Integer)
    purchase_cycle_days = Column(Integer)
    next_prime_window_start = Column(UTCDateTime)
    next_prime_window_end = Column(UTCDateTime)
    profile_score = Column(Integer, default=0)
    last_recalculated = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_customer_profiles_fingerprint", "browser_fingerprint"),
        Index("ix_customer_profiles_ip_hash", "ip_hash"),
    )


class DeviceRecord(Base):
    __tablename__ = "device_records"
    id = Column(Integer, primary_key=True)
    # "" means unknown; NULLs would never collide in the unique key
    email = Column(String(255), nullable=False, default="")
    ip_hash = Column(String(64), nullable=False, default="")
    browser_fingerprint = Column(String(255), nullable=False, default="")
    customer_id = Column(String(64))
    first_seen = Column(UTCDateTime, default=utcnow)
    last_seen = Column(UTCDateTime, default=utcnow)
    visit_count = Column(Integer, default=1, nullable=False)
    user_agent = Column(Text)
    geo_country = Column(String(8))
    geo_city = Column(String(120))

    __table_args__ = (
        UniqueConstraint("email", "ip_hash", "browser_fingerprint", name="uq_device_identity"),
        Index("ix_device_records_fingerprint", "browser_fingerprint"),
        Index("ix_device_records_ip_last_seen", "ip_hash", "last_seen"),
    )


class BundleOffer(Base):
    __tablename__ = "bundle_offers"
    id = Column(Integer, primary_key=True)
    customer_id = Column(String(64))
    customer_email = Column(String(255), nullable=False)
    bundle_products = Column(JSON, default=list)  # [{product_id, name, quantity, price}]
    total_quantity = Column(Integer, nullable=False)
    base_price = Column(Float, nullable=False)
    discount_amount = Column(Float, default=0)
    final_price = Column(Float, nullable=False)
    bonus_points = Column(Integer, default=0)
    trigger_reason = Column(String(50))
    cart_snapshot = Column(JSON)
    status = Column(String(20), default="pending", nullable=False)  # see identity_store.OFFER_TRANSITIONS
    offered_at = Column(UTCDateTime, default=utcnow)
    viewed_at = Column(UTCDateTime)
    responded_at = Column(UTCDateTime)
    expires_at = Column(UTCDateTime, nullable=False)
    conversion_value = Column(Float)

    __table_args__ = (
        Index("ix_bundle_offers_email_status", "customer_email", "status"),
    )


class BehavioralEvent(Base):
    """Append-only. Rows are never updated or deleted."""

    __tablename__ = "behavioral_events"
    id = Column(Integer, primary_key=True)
    session_id = Column(String(64))
    customer_id = Column(String(64))
    customer_email = Column(String(255))
    ip_hash = Column(String(64))
    browser_fingerprint = Column(String(255))
    event_type = Column(String(50), nullable=False)
    event_data = Column(JSON, default=dict)
    timestamp = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_behavioral_events_session", "session_id"),
        Index("ix_behavioral_events_email_type", "customer_email", "event_type"),
    )
