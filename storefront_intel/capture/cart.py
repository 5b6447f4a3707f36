"""Cart diffing — turn two cart snapshots into incremental add/remove lines.

Lines are matched on (product id, variant). A line's quantity in the
delta is only the change, never the resulting cart quantity, so an
"added €12 of X" event reflects what was just added.

Reconciliation law: apply_cart_delta(old, compute_cart_delta(old, new))
has the same (id, variant) → quantity map as `new`.
"""

from dataclasses import dataclass, field, replace

from ..utils import clean_str, safe_float, safe_int


@dataclass(frozen=True)
class CartLine:
    id: str
    title: str = ""
    price: float = 0.0
    quantity: int = 1
    variant: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.id, self.variant)

    @classmethod
    def from_raw(cls, raw) -> "CartLine":
        if isinstance(raw, CartLine):
            return raw
        quantity = safe_int(raw.get("quantity"))
        return cls(
            id=clean_str(raw.get("id") or raw.get("product_id")),
            title=clean_str(raw.get("title") or raw.get("name")),
            price=safe_float(raw.get("price")) or 0.0,
            quantity=quantity if quantity is not None else 1,
            variant=clean_str(raw.get("variant")),
        )


@dataclass
class CartDelta:
    added: list[CartLine] = field(default_factory=list)
    removed: list[CartLine] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def coerce_lines(items) -> list[CartLine]:
    """CartLines from dicts/CartLines; lines without an id or quantity are dropped."""
    lines = []
    for raw in items or []:
        line = CartLine.from_raw(raw)
        if line.id and line.quantity > 0:
            lines.append(line)
    return lines


def _merge(lines: list[CartLine]) -> dict[tuple[str, str], CartLine]:
    """One line per key, quantities summed; dict keeps first-seen order."""
    merged: dict[tuple[str, str], CartLine] = {}
    for line in lines:
        existing = merged.get(line.key)
        if existing is None:
            merged[line.key] = line
        else:
            merged[line.key] = replace(existing, quantity=existing.quantity + line.quantity)
    return merged


def compute_cart_delta(old_items, new_items) -> CartDelta:
    old = _merge(coerce_lines(old_items))
    new = _merge(coerce_lines(new_items))
    delta = CartDelta()

    for key, line in new.items():
        before = old[key].quantity if key in old else 0
        if line.quantity > before:
            delta.added.append(replace(line, quantity=line.quantity - before))

    for key, line in old.items():
        after = new[key].quantity if key in new else 0
        if line.quantity > after:
            delta.removed.append(replace(line, quantity=line.quantity - after))

    return delta


def apply_cart_delta(old_items, delta: CartDelta) -> list[CartLine]:
    cart = _merge(coerce_lines(old_items))
    for line in delta.added:
        existing = cart.get(line.key)
        qty = (existing.quantity if existing else 0) + line.quantity
        cart[line.key] = replace(existing or line, quantity=qty)
    for line in delta.removed:
        existing = cart.get(line.key)
        if existing is None:
            continue
        qty = existing.quantity - line.quantity
        if qty > 0:
            cart[line.key] = replace(existing, quantity=qty)
        else:
            del cart[line.key]
    return list(cart.values())


class CartTracker:
    """Diffs each observed cart against the last one it diffed from.

    The first observation (a cart restored from storage on page load) only
    sets the baseline; it never produces a delta.
    """

    def __init__(self):
        self._last: list[CartLine] | None = None

    @property
    def current(self) -> list[CartLine]:
        return list(self._last or [])

    def observe(self, items) -> CartDelta | None:
        lines = coerce_lines(items)
        if self._last is None:
            self._last = lines
            return None
        delta = compute_cart_delta(self._last, lines)
        self._last = lines
        return None if delta.is_empty else delta
