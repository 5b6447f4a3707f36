"""
conftest.py — Shared Test Fixtures for Storefront Intelligence

Provides an in-memory SQLite database, a FastAPI TestClient wired to it,
a recording fake destination, and factory fixtures for profiles and
bundle offers.

Business Rules:
- All tests run against an isolated in-memory DB (no production data risk)
- No test talks to a real ad platform: destinations are fakes or have
  http_client.http.post patched
- Each test function gets fresh tables

Called by: all test files via pytest autodiscovery
Depends on: storefront_intel.models (Base), storefront_intel.database
"""

import os
os.environ["TESTING"] = "1"  # Must be set before importing storefront_intel modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("ENABLED_DESTINATIONS", "[]")

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront_intel.database import SessionLocal
from storefront_intel.destinations import BaseDestination
from storefront_intel.models import Base, BundleOffer, CustomerProfile

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

# Sessions the dispatcher opens on its own (best-effort path) hit the same DB
SessionLocal.configure(bind=engine)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeDestination(BaseDestination):
    """Records every send; optionally fails, skips, or hangs."""

    def __init__(self, name: str = "fake", fail: Exception | None = None,
                 skip: bool = False, delay: float = 0.0):
        super().__init__(timeout=1.0)
        self.name = name
        self.fail = fail
        self.skip = skip
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []

    @property
    def enabled(self) -> bool:
        return True

    async def send(self, event_name: str, payload: dict) -> bool:
        self.calls.append((event_name, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        return not self.skip

    @property
    def event_names(self) -> list[str]:
        return [name for name, _ in self.calls]


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def make_destination():
    """Factory for FakeDestination (name, fail, skip, delay)."""
    return FakeDestination


@pytest.fixture()
def loyal_profile(db_session: Session) -> CustomerProfile:
    """A recalculated repeat customer who is inside their prime window."""
    profile = CustomerProfile(
        email="loyal@example.com",
        customer_id="501",
        browser_fingerprint="fp-loyal",
        favorite_products=[
            {"product_id": "101", "quantity": 6, "appearances": 3, "score": 21},
            {"product_id": "102", "quantity": 2, "appearances": 1, "score": 7},
        ],
        peak_spending_quantity=5,
        peak_spending_amount=60.0,
        avg_order_value=55.0,
        total_orders=4,
        last_order_date=NOW - timedelta(days=20),
        days_since_last_order=20,
        purchase_cycle_days=21,
        next_prime_window_start=NOW - timedelta(days=4),
        next_prime_window_end=NOW + timedelta(days=5),
        profile_score=85,
        last_recalculated=NOW,
        created_at=NOW,
        updated_at=NOW,
    )
    db_session.add(profile)
    db_session.commit()
    db_session.refresh(profile)
    return profile


@pytest.fixture()
def pending_offer(db_session: Session, loyal_profile: CustomerProfile) -> BundleOffer:
    """A pending bundle offer that expires a week from now (real clock)."""
    now = datetime.now(timezone.utc)
    offer = BundleOffer(
        customer_id=loyal_profile.customer_id,
        customer_email=loyal_profile.email,
        bundle_products=[
            {"product_id": "101", "name": "Blossom Drip", "quantity": 4},
            {"product_id": "102", "name": "Morning Vapor", "quantity": 2},
        ],
        total_quantity=6,
        base_price=89.7,
        discount_amount=13.46,
        final_price=76.24,
        bonus_points=114,
        trigger_reason="prime_window",
        status="pending",
        offered_at=now,
        expires_at=now + timedelta(days=7),
    )
    db_session.add(offer)
    db_session.commit()
    db_session.refresh(offer)
    return offer


@pytest.fixture()
def client(db_session: Session) -> TestClient:
    """FastAPI TestClient with get_db overridden to use the test session."""
    from storefront_intel.database import get_db
    from storefront_intel.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
