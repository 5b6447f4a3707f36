"""
dispatcher.py — Multi-Destination Dispatcher

Turns one DomainEvent into one normalized payload and delivers it to every
enabled destination concurrently.

Business Rules:
- Each destination call is independent: runs under its own timeout, and an
  exception or timeout in one is caught, logged, and recorded as "failed"
  without affecting the others
- dispatch() never raises; failures are only visible in the DispatchResult
  and the logs
- The BehavioralEvent row for the event is written once, before the
  fan-out, regardless of how many destinations succeed
- Total value is derived from items when not supplied (DomainEvent.total_value)
- Identity fields are hashed (privacy.hash_identity) before they are attached
  to ad-platform payloads; only the CRM destination reads the raw `customer` block
- A purchase with a billing email also upserts the profile and device
- send_best_effort() is the fire-and-forget path (exit beacon, engagement
  flush): scheduled, never awaited by the caller, not cancelled by the
  request ending; drain() waits for those at shutdown

Called by: capture/session, services/tracking_service, routers/capture
Depends on: destinations, services/events, services/identity_store, utils/privacy
"""

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..destinations import BaseDestination
from ..logging_config import mask_email
from ..utils.privacy import hash_identity, hash_ip
from . import identity_store
from .events import DomainEvent, EventKind

log = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    event_id: str
    event_name: str
    sent: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    logged: bool = False
    duplicate: bool = False

    def succeeded(self, destination: str) -> bool:
        return destination in self.sent

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event": self.event_name,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "logged": self.logged,
            "duplicate": self.duplicate,
        }


def build_payload(event: DomainEvent) -> dict:
    """The normalized payload every destination receives."""
    billing = event.billing or {}
    raw_identity = {
        "email": event.email or None,
        "phone": event.identity.get("phone") or billing.get("phone"),
        "first_name": event.identity.get("first_name") or billing.get("first_name"),
        "last_name": event.identity.get("last_name") or billing.get("last_name"),
        "city": event.identity.get("city") or billing.get("city"),
        "state": event.identity.get("state") or billing.get("state"),
        "zip": event.identity.get("zip") or billing.get("postcode"),
        "country": event.identity.get("country") or billing.get("country"),
        "external_id": event.customer_id,
    }
    return {
        "event_id": event.event_id,
        "event_time": int(event.timestamp.timestamp()),
        "event_time_iso": event.timestamp.isoformat(),
        "event_source_url": event.source_url or settings.storefront_url,
        "session_id": event.session_id,
        "client_id": event.session_id or event.fingerprint,
        "currency": settings.currency,
        "value": event.total_value,
        "items": [i.to_dict() for i in event.items],
        "transaction_id": event.transaction_id,
        "tax": event.tax,
        "shipping": event.shipping,
        "properties": dict(event.properties),
        "user_data": hash_identity(
            raw_identity,
            country_prefix=settings.default_phone_prefix,
            default_country=settings.default_country,
        ),
        "client": {
            "ip_address": event.ip_address,
            "user_agent": event.user_agent,
            "fbp": event.fbp,
            "fbc": event.fbc,
        },
        "customer": {k: v for k, v in raw_identity.items() if k in ("email", "phone", "first_name", "last_name", "external_id")},
    }


class Dispatcher:
    def __init__(
        self,
        destinations: list[BaseDestination],
        session_factory=SessionLocal,
        timeout: float | None = None,
    ):
        self.destinations = list(destinations)
        self.session_factory = session_factory
        self.timeout = timeout if timeout is not None else settings.dispatch_timeout_seconds
        self._background: set[asyncio.Task] = set()

    # ── Local side effects ──

    def _record(self, db: Session, event: DomainEvent) -> bool:
        row = identity_store.log_event(
            db,
            event.name,
            session_id=event.session_id,
            customer_email=event.email or None,
            customer_id=event.customer_id,
            ip_hash=event.ip_hash or hash_ip(event.ip_address),
            browser_fingerprint=event.fingerprint,
            event_data={
                "event_id": event.event_id,
                "value": event.total_value,
                "items": [{"id": i.id, "quantity": i.quantity, "price": i.price} for i in event.items],
                **event.properties,
            },
            timestamp=event.timestamp,
        )
        return row is not None

    def _propagate_identity(self, db: Session, event: DomainEvent) -> None:
        email = (event.billing or {}).get("email")
        if not email:
            return
        ip_hash = event.ip_hash or hash_ip(event.ip_address)
        identity_store.upsert_profile(
            db, email, customer_id=event.customer_id, ip_hash=ip_hash, browser_fingerprint=event.fingerprint,
        )
        identity_store.upsert_device(
            db,
            email=email,
            ip_hash=ip_hash,
            fingerprint=event.fingerprint,
            user_agent=event.user_agent,
            customer_id=event.customer_id,
        )

    def _local_effects(self, db: Session | None, event: DomainEvent, record: bool) -> bool:
        own_session = db is None
        if own_session:
            db = self.session_factory()
        try:
            if event.kind == EventKind.PURCHASE:
                self._propagate_identity(db, event)
            return self._record(db, event) if record else False
        finally:
            if own_session:
                db.close()

    # ── Fan-out ──

    async def _send_one(self, dest: BaseDestination, event_name: str, payload: dict) -> tuple[str, str | None]:
        try:
            delivered = await asyncio.wait_for(dest.send(event_name, payload), timeout=self.timeout)
            return ("sent" if delivered else "skipped"), None
        except asyncio.TimeoutError:
            log.warning(f"{dest.name}: {event_name} timed out after {self.timeout}s")
            return "failed", "timeout"
        except Exception as e:
            log.warning(f"{dest.name}: {event_name} failed: {e}")
            return "failed", str(e) or e.__class__.__name__

    async def dispatch(self, event: DomainEvent, db: Session | None = None, record: bool = True) -> DispatchResult:
        """Log the event once, then deliver it to every destination. Never raises."""
        result = DispatchResult(event_id=event.event_id, event_name=event.name)
        try:
            result.logged = self._local_effects(db, event, record)
        except Exception as e:
            log.error(f"Local effects for {event.name} ({mask_email(event.email)}) failed: {e}")

        try:
            payload = build_payload(event)
        except Exception as e:
            log.error(f"Could not build payload for {event.name}: {e}")
            for dest in self.destinations:
                result.failed[dest.name] = "payload"
            return result

        outcomes = await asyncio.gather(
            *[self._send_one(d, event.name, payload) for d in self.destinations],
            return_exceptions=True,
        )
        for dest, outcome in zip(self.destinations, outcomes):
            if isinstance(outcome, BaseException):
                result.failed[dest.name] = str(outcome) or outcome.__class__.__name__
                continue
            status, error = outcome
            if status == "sent":
                result.sent.append(dest.name)
            elif status == "skipped":
                result.skipped.append(dest.name)
            else:
                result.failed[dest.name] = error or "error"

        if result.failed:
            log.info(f"Dispatched {event.event_id}: sent={result.sent} failed={sorted(result.failed)}")
        return result

    # ── Best-effort path ──

    def send_best_effort(self, event: DomainEvent) -> asyncio.Task | None:
        """Schedule a dispatch without waiting for it. Safe to call during teardown."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning(f"No running loop; best-effort {event.name} dropped")
            return None
        task = loop.create_task(self.dispatch(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._background)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding best-effort sends (app shutdown)."""
        if not self._background:
            return
        done, not_done = await asyncio.wait(set(self._background), timeout=timeout)
        if not_done:
            log.warning(f"{len(not_done)} best-effort sends still pending at shutdown")
