"""Customer intelligence scoring — profile metrics and session quality.

Computes, from a customer's completed orders:
  1. Favorites — from the 3 most recent orders, score = 2 x qty + 3 x appearances
  2. Peak spending — the order with the largest (non-excluded) item quantity
  3. Purchase cycle — mean gap between orders in days (min 7, default 14)
  4. Prime window — [last + 80% cycle, last + 120% cycle], the predicted reorder range
  5. Profile score (0-100) — orders (max 30) + order value (max 30) + recency (max 40)

All compute_* functions are pure; recalculate_profile() persists the
result through identity_store.apply_profile_metrics (the only writer of
derived profile fields).
"""

import logging
import math
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..config import settings
from ..utils import clean_str, safe_float, safe_int
from . import identity_store

log = logging.getLogger(__name__)

# ── Thresholds ──
FAVORITE_ORDER_WINDOW = 3  # favorites come from the last N orders
MAX_FAVORITES = 5
DEFAULT_CYCLE_DAYS = 14  # fewer than two orders
MIN_CYCLE_DAYS = 7
PRIME_WINDOW_TOLERANCE = 0.2
NO_ORDER_DAYS = 999

# ── Profile score weights ──
ORDER_POINTS = 5
ORDER_POINTS_MAX = 30
AOV_POINTS_PER_10 = 3
AOV_POINTS_MAX = 30
RECENCY_POINTS = ((14, 40), (30, 30), (60, 20), (90, 10))  # (max days, points)

# ── Session score weights ──
SESSION_EVENT_POINTS = {
    "product_viewed": 10,
    "bundle_viewed": 15,
    "bundle_accepted": 25,
    "checkout_start": 30,
    "checkout_email_entered": 40,
    "search": 5,
}

COMPLETED_ORDER_STATUSES = {"completed"}


# ── Order parsing ─────────────────────────────────────────────────────


def _parse_date(value) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    else:
        s = clean_str(value)
        if not s:
            return None
        try:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def order_date(order: dict) -> datetime | None:
    return _parse_date(order.get("date_created") or order.get("date"))


def order_items(order: dict) -> list[dict]:
    """Line items as [{product_id, quantity}] whichever key shape the order uses."""
    raw = order.get("items") or order.get("line_items") or []
    items = []
    for item in raw:
        pid = clean_str(item.get("product_id") or item.get("id"))
        if not pid:
            continue
        items.append({"product_id": pid, "quantity": safe_int(item.get("quantity")) or 0})
    return items


def completed_orders(orders: list[dict]) -> list[dict]:
    """Completed, dated orders, newest first. Orders without a status count as completed."""
    result = [
        o for o in orders or []
        if (o.get("status") or "completed") in COMPLETED_ORDER_STATUSES and order_date(o)
    ]
    result.sort(key=order_date, reverse=True)
    return result


# ── Pure metrics ──────────────────────────────────────────────────────


def compute_favorites(orders: list[dict], excluded_ids=None) -> list[dict]:
    """Top products across the most recent orders (expects newest-first input)."""
    excluded = {str(x) for x in (excluded_ids or [])}
    stats: dict[str, dict] = {}
    for order in orders[:FAVORITE_ORDER_WINDOW]:
        for item in order_items(order):
            pid = item["product_id"]
            if pid in excluded:
                continue
            entry = stats.setdefault(pid, {"product_id": pid, "quantity": 0, "appearances": 0})
            entry["quantity"] += item["quantity"]
            entry["appearances"] += 1
    for entry in stats.values():
        entry["score"] = entry["quantity"] * 2 + entry["appearances"] * 3
    ranked = sorted(stats.values(), key=lambda e: e["score"], reverse=True)
    return ranked[:MAX_FAVORITES]


def compute_purchase_cycle(orders: list[dict]) -> int:
    dates = sorted(d for d in (order_date(o) for o in orders) if d)
    if len(dates) < 2:
        return DEFAULT_CYCLE_DAYS
    gaps = [(b - a).total_seconds() / 86400 for a, b in zip(dates, dates[1:])]
    return max(MIN_CYCLE_DAYS, round(sum(gaps) / len(gaps)))


def compute_prime_window(last_order: datetime | None, cycle_days: int) -> tuple[datetime | None, datetime | None]:
    if last_order is None:
        return None, None
    start = last_order + timedelta(days=math.floor(cycle_days * (1 - PRIME_WINDOW_TOLERANCE)))
    end = last_order + timedelta(days=math.ceil(cycle_days * (1 + PRIME_WINDOW_TOLERANCE)))
    return start, end


def compute_profile_score(total_orders: int, avg_order_value: float, days_since_last_order: int | None) -> int:
    """0-100; non-decreasing in order count, order value and recency."""
    order_points = min(ORDER_POINTS_MAX, max(0, total_orders) * ORDER_POINTS)
    aov_points = min(AOV_POINTS_MAX, max(0.0, avg_order_value or 0) / 10 * AOV_POINTS_PER_10)
    recency_points = 0
    if days_since_last_order is not None:
        for max_days, points in RECENCY_POINTS:
            if days_since_last_order <= max_days:
                recency_points = points
                break
    score = order_points + aov_points + recency_points
    return int(max(0, min(100, round(score))))


def compute_profile_metrics(orders: list[dict], excluded_ids=None, now: datetime | None = None) -> dict:
    """All derived profile fields from raw orders.

    Returns a dict keyed by CustomerProfile column names.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if excluded_ids is None:
        excluded_ids = settings.excluded_product_ids
    excluded = {str(x) for x in excluded_ids}

    completed = completed_orders(orders)
    total_orders = len(completed)

    peak_qty, peak_amount = 0, 0.0
    for order in completed:
        qty = sum(i["quantity"] for i in order_items(order) if i["product_id"] not in excluded)
        if qty > peak_qty:
            peak_qty, peak_amount = qty, safe_float(order.get("total")) or 0.0

    totals = [safe_float(o.get("total")) or 0.0 for o in completed]
    avg_order_value = round(sum(totals) / len(totals), 2) if totals else 0.0

    last_order = order_date(completed[0]) if completed else None
    days_since = (now - last_order).days if last_order else NO_ORDER_DAYS
    cycle = compute_purchase_cycle(completed)
    window_start, window_end = compute_prime_window(last_order, cycle)

    return {
        "favorite_products": compute_favorites(completed, excluded),
        "peak_spending_quantity": peak_qty,
        "peak_spending_amount": peak_amount,
        "avg_order_value": avg_order_value,
        "total_orders": total_orders,
        "last_order_date": last_order,
        "days_since_last_order": days_since,
        "purchase_cycle_days": cycle,
        "next_prime_window_start": window_start,
        "next_prime_window_end": window_end,
        "profile_score": compute_profile_score(total_orders, avg_order_value, days_since if last_order else None),
        "last_recalculated": now,
    }


def recalculate_profile(db: Session, email: str, orders: list[dict], now: datetime | None = None):
    """Recompute and persist a profile's derived fields. Returns the profile or None."""
    metrics = compute_profile_metrics(orders, now=now)
    profile = identity_store.apply_profile_metrics(db, email, metrics)
    if profile is not None:
        log.info(
            f"Profile recalculated: orders={metrics['total_orders']} "
            f"cycle={metrics['purchase_cycle_days']}d score={metrics['profile_score']}"
        )
    return profile


# ── Session quality ───────────────────────────────────────────────────


def compute_session_score(profile, event_type: str, event_data: dict | None = None) -> int:
    """0-100 quality score for the current visit (profile history + this event)."""
    score = 0
    if profile is not None:
        orders = profile.total_orders or 0
        if orders > 0:
            score += 30
        if orders >= 3:
            score += 20
        if (profile.avg_order_value or 0) > 50:
            score += 10

    score += SESSION_EVENT_POINTS.get(event_type, 0)

    if event_type == "engaged_session":
        data = event_data or {}
        if (safe_float(data.get("time_on_page")) or 0) > 60:
            score += 15
        if (safe_float(data.get("scroll_depth")) or 0) > 75:
            score += 10

    return min(100, score)
