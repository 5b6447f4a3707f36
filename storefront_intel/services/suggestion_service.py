"""
suggestion_service.py — Next-best-product suggestion (cart upsell waterfall)

Decides whether to suggest one product to a shopper right now, and which.

Business Rules:
- Subtotal at or above the free-shipping threshold → no suggestion
- Walk the hero candidates in order; skip any already in the cart
    - no purchase history: suggest the first hero not in the cart (generic message)
    - with history: suggest the first hero neither in the cart nor purchased
- All heroes purchased or in cart + history available → "buy it again":
  the most recent purchased product not in the cart; accessory products get
  a different message than scents
- Never suggest a product that is already in the cart
- Bad input (negative/non-numeric subtotal, empty candidate list) → None

Pure functions, no I/O.

Called by: routers/intelligence (/api/intelligence/suggestion)
Depends on: config (hero ids, accessory ids, free-shipping threshold)
"""

from dataclasses import dataclass

from ..config import settings
from ..utils import clean_str, safe_float
from .scoring_service import order_date

# ── Messages per hero candidate ──
# variants: first / additional (history-informed), generic / generic_additional
HERO_MESSAGES = {
    "334999": {
        "first": "You haven't tried these 5 lovely scents yet!",
        "additional": "Add another sample pack for free shipping!",
        "generic": "Try our popular sample pack!",
        "generic_additional": "Add a sample pack for free shipping!",
    },
    "267628": {
        "first": "5 new scents you haven't tried before!",
        "additional": "Try this second sample pack for free shipping!",
        "generic": "Discover 5 new scents!",
        "generic_additional": "Try this second sample pack for free shipping!",
    },
    "335060": {
        "first": "Try our popular laundry strips!",
        "additional": "Add laundry strips to reach free shipping!",
        "generic": "Try our popular laundry strips!",
        "generic_additional": "Add laundry strips to reach free shipping!",
    },
}
DEFAULT_HERO_MESSAGES = {
    "first": "Something new to try with your next wash!",
    "additional": "Add this for free shipping!",
    "generic": "Customers love this one. Give it a try!",
    "generic_additional": "Add this for free shipping!",
}
REPEAT_MESSAGES = {
    "repeat_accessory": "Upgrade your detergent! Try our laundry strips.",
    "repeat_accessory_additional": "Complete your laundry routine with laundry strips for free shipping!",
    "repeat_scent": "Never run out of your favorite scent! Order now.",
    "repeat_scent_additional": "Time to refill your favorite + free shipping!",
}


@dataclass(frozen=True)
class Suggestion:
    product_id: str
    message: str
    variant: str
    is_from_history: bool


def _item_id(item) -> str:
    if isinstance(item, dict):
        return clean_str(item.get("id") or item.get("product_id"))
    return clean_str(getattr(item, "id", None))


def extract_purchased_product_ids(orders: list[dict] | None) -> list[str]:
    """Distinct product ids across orders, most recent order first.

    Accepts storefront orders ({items: [{id}]}) and shop API orders
    ({line_items: [{product_id}]}).
    """
    if not orders:
        return []
    dated = [o for o in orders if order_date(o)]
    if len(dated) == len(orders):
        orders = sorted(orders, key=order_date, reverse=True)

    seen: dict[str, None] = {}
    for order in orders:
        for item in order.get("items") or order.get("line_items") or []:
            pid = clean_str(item.get("id") or item.get("product_id"))
            if pid:
                seen.setdefault(pid, None)
    return list(seen)


def suggest_product(
    purchased_ids: list[str] | None,
    cart_items: list,
    subtotal,
    candidates: list[str] | None = None,
) -> Suggestion | None:
    """Run the waterfall. Returns a Suggestion or None."""
    total = safe_float(subtotal)
    if total is None or total < 0:
        return None
    if total >= settings.free_shipping_threshold:
        return None

    if candidates is None:
        candidates = settings.hero_product_ids
    candidates = [clean_str(c) for c in candidates if clean_str(c)]
    if not candidates:
        return None

    in_cart = {_item_id(i) for i in cart_items or []}
    purchased = [clean_str(p) for p in purchased_ids or [] if clean_str(p)]
    has_history = bool(purchased)
    has_suggestion_in_cart = any(c in in_cart for c in candidates)

    for product_id in candidates:
        if product_id in in_cart:
            continue
        messages = HERO_MESSAGES.get(product_id, DEFAULT_HERO_MESSAGES)
        if not has_history:
            variant = "generic_additional" if has_suggestion_in_cart else "generic"
            return Suggestion(product_id, messages[variant], variant, is_from_history=False)
        if product_id not in purchased:
            variant = "additional" if has_suggestion_in_cart else "first"
            return Suggestion(product_id, messages[variant], variant, is_from_history=True)

    if has_history:
        for product_id in purchased:
            if product_id in in_cart:
                continue
            kind = "repeat_accessory" if product_id in settings.accessory_product_ids else "repeat_scent"
            variant = f"{kind}_additional" if has_suggestion_in_cart else kind
            return Suggestion(product_id, REPEAT_MESSAGES[variant], variant, is_from_history=True)

    return None
