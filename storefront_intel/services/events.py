"""Canonical domain events and the normalized analytics item.

A DomainEvent describes one thing a shopper did, independent of where it
is sent. Every cart/purchase item is normalized once into AnalyticsItem so
each destination reads the same fields (id, name, brand, category, price,
quantity, currency, plus the feed ids: SKU, GLA feed id, stock status,
business vertical).
"""

import enum
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from ..config import settings
from ..utils import clean_str, safe_float, safe_int


class EventKind(str, enum.Enum):
    VIEW_ITEM = "view_item"
    ADD_TO_CART = "add_to_cart"
    REMOVE_FROM_CART = "remove_from_cart"
    BEGIN_CHECKOUT = "begin_checkout"
    ADD_PAYMENT_INFO = "add_payment_info"
    PURCHASE = "purchase"
    IDENTIFY = "identify"
    CUSTOM = "custom"


# Custom event names understood by more than one destination
PAGE_VIEW = "page_view"
LEAD = "lead"
SEARCH = "search"
ENGAGED_SESSION = "engaged_session"


@dataclass
class AnalyticsItem:
    id: str
    name: str
    price: float
    quantity: int
    variant: str = ""
    brand: str = ""
    category: str = ""
    currency: str = ""
    sku: str = ""
    feed_id: str = ""
    stock_status: str = "instock"
    stock_level: int | None = None
    business_vertical: str = "retail"

    @property
    def line_value(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_item(raw) -> AnalyticsItem:
    """Build an AnalyticsItem from a cart line, order line or plain dict."""
    if not isinstance(raw, dict):
        raw = {
            "id": getattr(raw, "id", ""),
            "title": getattr(raw, "title", ""),
            "price": getattr(raw, "price", 0),
            "quantity": getattr(raw, "quantity", 1),
            "variant": getattr(raw, "variant", ""),
        }
    pid = clean_str(raw.get("id") or raw.get("product_id"))
    quantity = safe_int(raw.get("quantity"))
    return AnalyticsItem(
        id=pid,
        name=clean_str(raw.get("title") or raw.get("name")) or f"Product {pid}",
        price=safe_float(raw.get("price")) or 0.0,
        quantity=quantity if quantity is not None else 1,
        variant=clean_str(raw.get("variant")),
        brand=clean_str(raw.get("brand")) or settings.brand,
        category=clean_str(raw.get("category")) or settings.default_category,
        currency=settings.currency,
        sku=f"WSG-WP-{pid}",
        feed_id=f"gla_{pid}",
    )


def generate_event_id(name: str, identifier=None, now: datetime | None = None) -> str:
    """Event id carried by every delivery of one event.

    purchase → "purchase_<order id>", so a replayed order keeps its id.
    Otherwise "<name>[_<identifier>]_<unix ms>_<random>": two real events
    never share an id, even for the same product in the same millisecond.
    The browser pixel and the server API both read the id from the one
    payload built per event.
    """
    ident = clean_str(identifier)
    if name == EventKind.PURCHASE.value and ident:
        return f"purchase_{ident}"
    if now is None:
        now = datetime.now(timezone.utc)
    ms = int(now.timestamp() * 1000)
    suffix = uuid.uuid4().hex[:8]
    if ident:
        return f"{name}_{ident}_{ms}_{suffix}"
    return f"{name}_{ms}_{suffix}"


@dataclass
class DomainEvent:
    kind: EventKind
    items: list[AnalyticsItem] = field(default_factory=list)
    value: float | None = None
    custom_name: str | None = None
    identifier: str | None = None  # product id / order id used in the event id

    # Who
    session_id: str | None = None
    customer_email: str | None = None
    customer_id: str | None = None
    fingerprint: str | None = None
    ip_address: str | None = None
    ip_hash: str | None = None
    user_agent: str | None = None
    fbp: str | None = None
    fbc: str | None = None
    identity: dict = field(default_factory=dict)  # raw email/phone/name/address, hashed before it leaves

    # Order details (purchase)
    transaction_id: str | None = None
    tax: float = 0.0
    shipping: float = 0.0
    billing: dict | None = None

    source_url: str | None = None
    properties: dict = field(default_factory=dict)
    event_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.kind = EventKind(self.kind)
        self.items = [i if isinstance(i, AnalyticsItem) else normalize_item(i) for i in self.items]
        if self.event_id is None:
            ident = self.identifier
            if ident is None and self.kind == EventKind.PURCHASE:
                ident = self.transaction_id
            if ident is None and len(self.items) == 1:
                ident = self.items[0].id
            self.event_id = generate_event_id(self.name, ident, self.timestamp)

    @property
    def name(self) -> str:
        if self.kind == EventKind.CUSTOM:
            return self.custom_name or "custom"
        return self.kind.value

    @property
    def total_value(self) -> float:
        if self.value is not None:
            return round(float(self.value), 2)
        return round(sum(i.line_value for i in self.items), 2)

    @property
    def email(self) -> str:
        billing = self.billing or {}
        return clean_str(self.customer_email or self.identity.get("email") or billing.get("email")).lower()
