"""
test_cart_delta.py — Tests for capture/cart.py

Cart snapshots in, incremental add/remove lines out. The delta carries
quantity changes only, and applying it to the old cart reproduces the new one.

Called by: pytest
Depends on: storefront_intel/capture/cart.py
"""

from storefront_intel.capture.cart import (
    CartLine,
    CartTracker,
    apply_cart_delta,
    coerce_lines,
    compute_cart_delta,
)


def _qty_map(lines) -> dict:
    return {line.key: line.quantity for line in coerce_lines(lines)}


def _cart(*entries) -> list[dict]:
    return [{"id": pid, "title": f"Scent {pid}", "price": price, "quantity": qty} for pid, price, qty in entries]


class TestComputeCartDelta:
    def test_new_line_is_added(self):
        delta = compute_cart_delta([], _cart(("101", 14.95, 2)))
        assert [(l.id, l.quantity) for l in delta.added] == [("101", 2)]
        assert delta.removed == []

    def test_quantity_increase_reports_only_the_difference(self):
        delta = compute_cart_delta(_cart(("101", 14.95, 2)), _cart(("101", 14.95, 5)))
        assert [(l.id, l.quantity) for l in delta.added] == [("101", 3)]

    def test_quantity_decrease_is_a_removal(self):
        delta = compute_cart_delta(_cart(("101", 14.95, 5)), _cart(("101", 14.95, 1)))
        assert delta.added == []
        assert [(l.id, l.quantity) for l in delta.removed] == [("101", 4)]

    def test_line_dropped_from_cart(self):
        delta = compute_cart_delta(_cart(("101", 14.95, 1), ("102", 9.95, 2)), _cart(("101", 14.95, 1)))
        assert [(l.id, l.quantity) for l in delta.removed] == [("102", 2)]

    def test_unchanged_cart_is_empty(self):
        cart = _cart(("101", 14.95, 1))
        assert compute_cart_delta(cart, cart).is_empty

    def test_variants_are_separate_lines(self):
        old = [{"id": "101", "variant": "100ml", "quantity": 1}]
        new = [{"id": "101", "variant": "100ml", "quantity": 1}, {"id": "101", "variant": "250ml", "quantity": 1}]
        delta = compute_cart_delta(old, new)
        assert [(l.id, l.variant) for l in delta.added] == [("101", "250ml")]

    def test_duplicate_lines_are_merged(self):
        delta = compute_cart_delta([], [{"id": "101", "quantity": 1}, {"id": "101", "quantity": 2}])
        assert [(l.id, l.quantity) for l in delta.added] == [("101", 3)]

    def test_lines_without_id_or_quantity_ignored(self):
        delta = compute_cart_delta([], [{"id": "", "quantity": 3}, {"id": "101", "quantity": 0}])
        assert delta.is_empty

    def test_added_line_keeps_unit_price(self):
        delta = compute_cart_delta(_cart(("101", 14.95, 1)), _cart(("101", 14.95, 3)))
        assert delta.added[0].price == 14.95


class TestReconciliation:
    def test_apply_delta_reproduces_new_cart(self):
        cases = [
            ([], _cart(("101", 10, 2))),
            (_cart(("101", 10, 2)), []),
            (_cart(("101", 10, 2), ("102", 5, 1)), _cart(("101", 10, 1), ("103", 7, 4))),
            (_cart(("101", 10, 1)), _cart(("101", 10, 6), ("102", 5, 2))),
        ]
        for old, new in cases:
            result = apply_cart_delta(old, compute_cart_delta(old, new))
            assert _qty_map(result) == _qty_map(new)

    def test_apply_ignores_removal_of_unknown_line(self):
        from storefront_intel.capture.cart import CartDelta

        result = apply_cart_delta([], CartDelta(removed=[CartLine(id="999", quantity=1)]))
        assert result == []


class TestCartTracker:
    def test_first_observation_is_baseline_only(self):
        tracker = CartTracker()
        assert tracker.observe(_cart(("101", 10, 2))) is None
        assert [l.id for l in tracker.current] == ["101"]

    def test_subsequent_observation_yields_delta(self):
        tracker = CartTracker()
        tracker.observe(_cart(("101", 10, 1)))
        delta = tracker.observe(_cart(("101", 10, 2)))
        assert [(l.id, l.quantity) for l in delta.added] == [("101", 1)]

    def test_same_cart_twice_yields_none(self):
        tracker = CartTracker()
        tracker.observe([])
        tracker.observe(_cart(("101", 10, 1)))
        assert tracker.observe(_cart(("101", 10, 1))) is None
