"""Capture sessions — one visitor's observed state stream.

CaptureSession composes the cart, checkout and engagement trackers for a
single session id and forwards what they emit to the dispatcher.
Observations for one session are serialized by its lock; different
sessions never share state.

SessionRegistry hands out sessions by id and evicts idle ones.
"""

import asyncio
import logging
import time
from typing import Callable

from ..config import Settings, settings as default_settings
from ..services.dispatcher import DispatchResult, Dispatcher
from ..services.events import ENGAGED_SESSION, DomainEvent, EventKind, generate_event_id, normalize_item
from ..utils import clean_str, safe_float
from .cart import CartTracker
from .checkout import CaptureSignal, CheckoutTracker
from .engagement import EngagementTimer, EngagementTracker

log = logging.getLogger(__name__)

CONTEXT_FIELDS = ("customer_email", "customer_id", "fingerprint", "ip_address", "ip_hash",
                  "user_agent", "fbp", "fbc", "source_url")


class CaptureSession:
    def __init__(self, session_id: str, dispatcher: Dispatcher, cfg: Settings | None = None,
                 clock: Callable[[], float] = time.monotonic):
        cfg = cfg or default_settings
        self.session_id = session_id
        self.dispatcher = dispatcher
        self.clock = clock
        self.cart = CartTracker()
        self.checkout = CheckoutTracker()
        self.engagement = EngagementTracker(cfg.engagement_min_seconds, cfg.engagement_min_scroll_pct, clock)
        self.context: dict = {}
        self.lock = asyncio.Lock()
        self.last_seen = clock()
        self.timer = EngagementTimer(cfg.engagement_tick_seconds, self._timer_tick)
        self.periodic_checks = False
        self.reported_orders: set[str] = set()

    # ── Context ──

    def update_context(self, **fields) -> None:
        for key, value in fields.items():
            if key in CONTEXT_FIELDS and value:
                self.context[key] = value
        self.last_seen = self.clock()

    def _event(self, kind: EventKind, items=(), **kwargs) -> DomainEvent:
        return DomainEvent(
            kind=kind,
            items=[normalize_item(i) for i in items],
            session_id=self.session_id,
            **{k: self.context.get(k) for k in CONTEXT_FIELDS},
            **kwargs,
        )

    def _from_signal(self, signal: CaptureSignal) -> DomainEvent:
        if signal.kind == EventKind.IDENTIFY and signal.identity.get("email"):
            self.context["customer_email"] = signal.identity["email"]
        return self._event(
            signal.kind,
            signal.items,
            custom_name=signal.custom_name,
            properties=signal.properties,
            identity=signal.identity,
        )

    # ── Observations ──

    async def observe_cart(self, items) -> list[DispatchResult]:
        async with self.lock:
            self.last_seen = self.clock()
            delta = self.cart.observe(items)
            if delta is None:
                return []
            events = [self._event(EventKind.ADD_TO_CART, [line], identifier=line.id) for line in delta.added]
            events += [self._event(EventKind.REMOVE_FROM_CART, [line], identifier=line.id) for line in delta.removed]
            return [await self.dispatcher.dispatch(e) for e in events]

    async def observe_checkout(self, items, email: str | None = None, step: str | None = None,
                               identity: dict | None = None) -> list[DispatchResult]:
        async with self.lock:
            self.last_seen = self.clock()
            signals = self.checkout.observe(items, email=email, step=step, identity=identity)
            return [await self.dispatcher.dispatch(self._from_signal(s)) for s in signals]

    def _engaged_event(self, data: dict) -> DomainEvent:
        return self._event(EventKind.CUSTOM, custom_name=ENGAGED_SESSION, properties=data)

    async def observe_scroll(self, scroll_pct: float) -> DispatchResult | None:
        async with self.lock:
            self.last_seen = self.clock()
            data = self.engagement.check(scroll_pct=scroll_pct)
            if data is None:
                return None
            self.timer.stop()
            return await self.dispatcher.dispatch(self._engaged_event(data))

    async def tick(self, elapsed: float | None = None) -> DispatchResult | None:
        async with self.lock:
            data = self.engagement.check(elapsed=elapsed)
            if data is None:
                return None
            return await self.dispatcher.dispatch(self._engaged_event(data))

    async def _timer_tick(self) -> bool:
        await self.tick()
        return self.engagement.fired

    def new_page_view(self, source_url: str | None = None) -> None:
        self.engagement.reset()
        if source_url:
            self.context["source_url"] = source_url
        self.last_seen = self.clock()
        if self.periodic_checks:
            self.start_timer()

    def start_timer(self) -> None:
        self.periodic_checks = True
        if not self.engagement.fired:
            self.timer.start()

    def exit(self) -> asyncio.Task | None:
        """Page unload. Hands any unreported engagement to the best-effort path."""
        self.timer.stop()
        data = self.engagement.flush_on_exit()
        if data is None:
            return None
        return self.dispatcher.send_best_effort(self._engaged_event(data))

    async def purchase(self, order: dict) -> DispatchResult:
        """Dispatch a purchase for a completed order (items, totals, billing).

        An order id already reported by this session is not sent or logged
        again; the result comes back with duplicate=True.
        """
        async with self.lock:
            self.last_seen = self.clock()
            billing = order.get("billing") or {}
            if billing.get("email"):
                self.context["customer_email"] = clean_str(billing["email"]).lower()
            transaction_id = clean_str(order.get("id")) or None
            if transaction_id and transaction_id in self.reported_orders:
                log.info(f"Purchase {transaction_id} already reported for session {self.session_id}")
                return DispatchResult(
                    event_id=generate_event_id(EventKind.PURCHASE.value, transaction_id),
                    event_name=EventKind.PURCHASE.value,
                    duplicate=True,
                )
            event = self._event(
                EventKind.PURCHASE,
                order.get("items") or order.get("line_items") or [],
                transaction_id=transaction_id,
                value=safe_float(order.get("total")),
                tax=safe_float(order.get("tax")) or 0.0,
                shipping=safe_float(order.get("shipping")) or 0.0,
                billing=billing,
            )
            result = await self.dispatcher.dispatch(event)
            if transaction_id:
                self.reported_orders.add(transaction_id)
            return result

    def close(self) -> None:
        self.timer.stop()


class SessionRegistry:
    def __init__(self, dispatcher: Dispatcher, cfg: Settings | None = None,
                 clock: Callable[[], float] = time.monotonic, start_timers: bool = True):
        self.cfg = cfg or default_settings
        self.dispatcher = dispatcher
        self.clock = clock
        self.start_timers = start_timers
        self.ttl = self.cfg.capture_session_ttl_seconds
        self._sessions: dict[str, CaptureSession] = {}

    def get(self, session_id: str) -> CaptureSession:
        self.evict_idle()
        session = self._sessions.get(session_id)
        if session is None:
            session = CaptureSession(session_id, self.dispatcher, self.cfg, self.clock)
            self._sessions[session_id] = session
            if self.start_timers:
                session.start_timer()
        return session

    def peek(self, session_id: str) -> CaptureSession | None:
        return self._sessions.get(session_id)

    def evict_idle(self) -> int:
        now = self.clock()
        stale = [sid for sid, s in self._sessions.items() if now - s.last_seen > self.ttl]
        for sid in stale:
            self._sessions.pop(sid).close()
        if stale:
            log.debug(f"Evicted {len(stale)} idle capture sessions")
        return len(stale)

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
