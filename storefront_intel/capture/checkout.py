"""Checkout funnel tracking — begin_checkout once, identify per new email."""

import re
from dataclasses import dataclass, field

from ..services.events import EventKind
from .cart import CartLine, coerce_lines

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(value) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(str(value).strip()))


@dataclass
class CaptureSignal:
    """A tracker's decision that a domain event should be emitted."""

    kind: EventKind
    items: list[CartLine] = field(default_factory=list)
    custom_name: str | None = None
    properties: dict = field(default_factory=dict)
    identity: dict = field(default_factory=dict)


class CheckoutTracker:
    def __init__(self):
        self.started = False
        self.payment_reported = False
        self.last_email: str | None = None

    def observe(self, items, email: str | None = None, step: str | None = None,
                identity: dict | None = None) -> list[CaptureSignal]:
        lines = coerce_lines(items)
        signals = []

        if lines and not self.started:
            self.started = True
            signals.append(CaptureSignal(EventKind.BEGIN_CHECKOUT, items=lines))

        normalized = (email or "").strip().lower()
        if is_valid_email(normalized) and normalized != self.last_email:
            self.last_email = normalized
            signals.append(
                CaptureSignal(EventKind.IDENTIFY, identity={**(identity or {}), "email": normalized})
            )

        if step == "payment" and lines and not self.payment_reported:
            self.payment_reported = True
            signals.append(CaptureSignal(EventKind.ADD_PAYMENT_INFO, items=lines))

        return signals
