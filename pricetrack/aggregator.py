"""Dashboard and statistics rollups over products, variants and orders."""

import os
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from pricetrack.models import Item, Notification, Order, OrderStatus, Variant, utcnow

DEFAULT_RECENT_CAPACITY = 10
TOP_PRODUCTS_LIMIT = 5
UNKNOWN_PRODUCT = "Unknown"


def get_recent_capacity() -> int:
    """Get recent-orders buffer size from env or default."""
    try:
        return max(1, int(os.environ.get("RECENT_ORDERS_CAPACITY", DEFAULT_RECENT_CAPACITY)))
    except ValueError:
        return DEFAULT_RECENT_CAPACITY


def _money(value: float) -> str:
    return f"{value:.2f}"


class RecentOrders:
    """
    Bounded most-recent-first window of orders.

    Pushing beyond capacity evicts the oldest entry. All mutations hold a lock
    so they stay atomic with the order write they accompany.
    """

    def __init__(self, capacity: int = DEFAULT_RECENT_CAPACITY):
        self.capacity = capacity
        self._orders: deque[Order] = deque(maxlen=capacity)
        self._lock = threading.RLock()

    @classmethod
    def from_orders(cls, orders: Iterable[Order], capacity: int = DEFAULT_RECENT_CAPACITY) -> "RecentOrders":
        """Rebuild the window from a collection, newest first by creation time."""
        buffer = cls(capacity)
        buffer.reload(orders)
        return buffer

    def reload(self, orders: Iterable[Order]) -> None:
        """Replace the window contents with the newest orders of a collection."""
        with self._lock:
            self._orders.clear()
            for order in sorted(orders, key=lambda o: (o.created_at, o.id or 0)):
                self._orders.appendleft(order)

    def push(self, order: Order) -> None:
        with self._lock:
            self._orders.appendleft(order)

    def discard(self, order_id) -> bool:
        with self._lock:
            for existing in self._orders:
                if existing.id == order_id:
                    self._orders.remove(existing)
                    return True
        return False

    def replace(self, order: Order) -> None:
        """Swap in an updated copy of an order already in the window."""
        with self._lock:
            for i, existing in enumerate(self._orders):
                if existing.id == order.id:
                    self._orders[i] = order
                    return

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def __iter__(self):
        with self._lock:
            return iter(list(self._orders))

    def __len__(self) -> int:
        return len(self._orders)


def counts_toward_revenue(order: Order) -> bool:
    return OrderStatus(order.status) is not OrderStatus.CANCELLED


def total_revenue(orders: Iterable[Order]) -> float:
    """Sum of order totals, excluding cancelled orders."""
    return sum(o.total_price for o in orders if counts_toward_revenue(o))


def status_histogram(orders: Iterable[Order]) -> dict[str, int]:
    """Order count per status. Every status is present, even at zero."""
    counts = {status.value: 0 for status in OrderStatus}
    for order in orders:
        counts[OrderStatus(order.status).value] += 1
    return counts


def top_products(
    orders: Iterable[Order], products: Iterable[Item], limit: int = TOP_PRODUCTS_LIMIT
) -> list[dict]:
    """
    Products ranked by total quantity ordered.

    Ties keep the order in which products were first seen among the orders.
    Names are looked up now, so a deleted product shows as "Unknown".
    """
    names = {p.id: p.name for p in products}
    quantities: dict = {}
    order_counts: dict = {}
    for order in orders:
        quantities[order.product_id] = quantities.get(order.product_id, 0) + order.quantity
        order_counts[order.product_id] = order_counts.get(order.product_id, 0) + 1

    ranked = sorted(quantities.items(), key=lambda kv: kv[1], reverse=True)
    return [
        {
            "productId": product_id,
            "name": names.get(product_id, UNKNOWN_PRODUCT),
            "totalQuantity": quantity,
            "orderCount": order_counts[product_id],
        }
        for product_id, quantity in ranked[:limit]
    ]


def average_order_value(revenue: float, order_count: int) -> float:
    if order_count == 0:
        return 0
    return round(revenue / order_count, 2)


@dataclass
class DashboardSnapshot:
    """Aggregate view of current entity state."""

    total_products: int
    total_variants: int
    total_orders: int
    total_revenue: float
    order_statuses: dict[str, int]
    top_products: list[dict]
    recent_orders: list[Order]
    average_order_value: float
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "summary": {
                "totalProducts": self.total_products,
                "totalVariants": self.total_variants,
                "totalOrders": self.total_orders,
                "totalRevenue": _money(self.total_revenue),
            },
            "orderStatuses": dict(self.order_statuses),
            "topProducts": list(self.top_products),
            "recentOrders": [o.to_dict() for o in self.recent_orders],
            "averageOrderValue": _money(self.average_order_value),
            "lastUpdated": self.last_updated.isoformat(),
        }


def compute_dashboard(
    products: Iterable[Item],
    variants: Iterable[Variant],
    orders: Iterable[Order],
    recent: RecentOrders | None = None,
    now: datetime | None = None,
) -> DashboardSnapshot:
    """
    Recompute dashboard metrics from the current collections.

    `recent` is the incrementally maintained window; without one it is
    rebuilt from `orders`.
    """
    products, variants, orders = list(products), list(variants), list(orders)
    if recent is None:
        recent = RecentOrders.from_orders(orders)

    revenue = total_revenue(orders)
    return DashboardSnapshot(
        total_products=len(products),
        total_variants=len(variants),
        total_orders=len(orders),
        total_revenue=revenue,
        order_statuses=status_histogram(orders),
        top_products=top_products(orders, products),
        recent_orders=list(recent),
        average_order_value=average_order_value(revenue, len(orders)),
        last_updated=now or utcnow(),
    )


def compute_stats(
    products: Iterable[Item],
    variants: Iterable[Variant],
    notifications: Iterable[Notification] = (),
    now: datetime | None = None,
) -> dict:
    """Category and variant-type buckets plus tracker-wide figures."""
    now = now or utcnow()
    products = list(products)

    by_category: dict[str, int] = {}
    for product in products:
        by_category[product.category] = by_category.get(product.category, 0) + 1

    by_type: dict[str, int] = {}
    for variant in variants:
        by_type[variant.type] = by_type.get(variant.type, 0) + 1

    prices = [p.price for p in products if p.price is not None]
    since = now - timedelta(hours=24)
    recent_notifications = sum(1 for n in notifications if n.created_at >= since)

    return {
        "totalItems": len(products),
        "averagePrice": sum(prices) / len(prices) if prices else 0,
        "productsByCategory": by_category,
        "variantsByType": by_type,
        "recentNotifications": recent_notifications,
        "timestamp": now.isoformat(),
    }
