"""Tests for dashboard and statistics rollups."""

from datetime import datetime, timedelta, timezone

import pytest

from pricetrack.aggregator import (
    RecentOrders,
    average_order_value,
    compute_dashboard,
    compute_stats,
    status_histogram,
    top_products,
    total_revenue,
)
from pricetrack.models import Item, Notification, NotificationKind, Order, OrderStatus, Variant

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def product(pid: int, name: str, category: str = "Uncategorized", price: float | None = 10.0) -> Item:
    return Item(id=pid, name=name, url=f"https://shop.test/{pid}", price=price, category=category)


def order(oid: int, pid: int, qty: int = 1, total: float = 10.0, status=OrderStatus.PENDING) -> Order:
    return Order(
        id=oid,
        product_id=pid,
        quantity=qty,
        total_price=total,
        status=status,
        created_at=T0 + timedelta(minutes=oid),
    )


class TestComputeDashboard:
    """Tests for the full dashboard snapshot."""

    def test_two_order_example(self):
        products = [product(1, "A"), product(2, "B")]
        orders = [
            order(1, 1, qty=2, total=20, status=OrderStatus.PENDING),
            order(2, 2, qty=1, total=5, status=OrderStatus.SHIPPED),
        ]

        snapshot = compute_dashboard(products, [], orders)

        assert snapshot.total_revenue == 25
        assert snapshot.order_statuses == {
            "pending": 1,
            "processing": 0,
            "shipped": 1,
            "delivered": 0,
            "cancelled": 0,
        }
        assert [(p["name"], p["totalQuantity"]) for p in snapshot.top_products] == [("A", 2), ("B", 1)]
        assert snapshot.average_order_value == 12.5

        data = snapshot.to_dict()
        assert data["summary"] == {
            "totalProducts": 2,
            "totalVariants": 0,
            "totalOrders": 2,
            "totalRevenue": "25.00",
        }
        assert data["averageOrderValue"] == "12.50"

    def test_no_orders(self):
        snapshot = compute_dashboard([product(1, "A")], [], [])

        assert snapshot.average_order_value == 0
        assert snapshot.total_revenue == 0
        assert sum(snapshot.order_statuses.values()) == 0
        assert snapshot.top_products == []
        assert snapshot.recent_orders == []
        assert snapshot.to_dict()["averageOrderValue"] == "0.00"

    def test_last_updated_is_computation_time(self):
        now = datetime(2030, 6, 1, tzinfo=timezone.utc)
        snapshot = compute_dashboard([], [], [order(1, 1)], now=now)
        assert snapshot.last_updated == now

    def test_counts_variants(self):
        variants = [
            Variant(id=1, product_id=1, type="size", value="M"),
            Variant(id=2, product_id=1, type="color", value="red"),
        ]
        snapshot = compute_dashboard([product(1, "A")], variants, [])
        assert snapshot.total_variants == 2

    def test_recent_orders_rebuilt_when_no_buffer(self):
        orders = [order(i, 1) for i in range(1, 16)]

        snapshot = compute_dashboard([product(1, "A")], [], orders)

        assert [o.id for o in snapshot.recent_orders] == list(range(15, 5, -1))

    def test_uses_given_buffer(self):
        recent = RecentOrders(capacity=10)
        recent.push(order(99, 1))

        snapshot = compute_dashboard([], [], [order(1, 1)], recent=recent)

        assert [o.id for o in snapshot.recent_orders] == [99]


class TestRevenue:
    def test_cancelled_orders_do_not_count(self):
        orders = [
            order(1, 1, total=20),
            order(2, 1, total=30, status=OrderStatus.CANCELLED),
            order(3, 1, total=5.5, status=OrderStatus.DELIVERED),
        ]
        assert total_revenue(orders) == pytest.approx(25.5)

    def test_average_rounds_to_cents(self):
        assert average_order_value(10, 3) == 3.33
        assert average_order_value(0, 0) == 0


class TestStatusHistogram:
    def test_sums_to_order_count(self):
        statuses = list(OrderStatus) * 3 + [OrderStatus.PENDING]
        orders = [order(i, 1, status=s) for i, s in enumerate(statuses, start=1)]

        histogram = status_histogram(orders)

        assert set(histogram) == {s.value for s in OrderStatus}
        assert sum(histogram.values()) == len(orders)
        assert histogram["pending"] == 4


class TestTopProducts:
    def test_truncates_to_five_sorted_desc(self):
        products = [product(i, f"P{i}") for i in range(1, 8)]
        orders = [order(i, i, qty=i) for i in range(1, 8)]

        ranked = top_products(orders, products)

        assert len(ranked) == 5
        quantities = [p["totalQuantity"] for p in ranked]
        assert quantities == sorted(quantities, reverse=True)
        assert [p["productId"] for p in ranked] == [7, 6, 5, 4, 3]

    def test_ties_keep_first_seen_order(self):
        products = [product(1, "One"), product(2, "Two"), product(3, "Three")]
        orders = [order(1, 3), order(2, 1), order(3, 2)]

        ranked = top_products(orders, products)

        assert [p["productId"] for p in ranked] == [3, 1, 2]

    def test_sums_quantities_and_counts_orders(self):
        orders = [order(1, 1, qty=2), order(2, 1, qty=3), order(3, 2, qty=4)]

        ranked = top_products(orders, [product(1, "A"), product(2, "B")])

        assert ranked[0] == {"productId": 1, "name": "A", "totalQuantity": 5, "orderCount": 2}
        assert ranked[1] == {"productId": 2, "name": "B", "totalQuantity": 4, "orderCount": 1}

    def test_deleted_product_shows_unknown(self):
        ranked = top_products([order(1, 42, qty=3)], [product(1, "A")])
        assert ranked[0]["name"] == "Unknown"


class TestRecentOrders:
    def test_bounded_and_newest_first(self):
        recent = RecentOrders(capacity=10)
        for i in range(1, 26):
            recent.push(order(i, 1))
            assert len(recent) <= 10

        assert [o.id for o in recent] == list(range(25, 15, -1))

    def test_discard(self):
        recent = RecentOrders(capacity=3)
        for i in range(1, 4):
            recent.push(order(i, 1))

        assert recent.discard(2) is True
        assert recent.discard(2) is False
        assert [o.id for o in recent] == [3, 1]

    def test_replace(self):
        recent = RecentOrders()
        recent.push(order(1, 1))

        recent.replace(order(1, 1, status=OrderStatus.SHIPPED))

        assert [o.status for o in recent] == [OrderStatus.SHIPPED]

    def test_from_orders_sorts_by_creation(self):
        orders = [order(3, 1), order(1, 1), order(2, 1)]
        recent = RecentOrders.from_orders(orders, capacity=2)
        assert [o.id for o in recent] == [3, 2]

    def test_reload_refills_from_collection(self):
        recent = RecentOrders(capacity=3)
        for i in range(1, 6):
            recent.push(order(i, 1))
        recent.discard(5)
        assert [o.id for o in recent] == [4, 3]

        recent.reload([order(i, 1) for i in range(1, 5)])

        assert [o.id for o in recent] == [4, 3, 2]


class TestComputeStats:
    def test_buckets(self):
        products = [
            product(1, "A", category="shirts", price=10),
            product(2, "B", category="shirts", price=30),
            product(3, "C", category="hats", price=None),
        ]
        variants = [
            Variant(id=1, product_id=1, type="size", value="S"),
            Variant(id=2, product_id=1, type="size", value="M"),
            Variant(id=3, product_id=2, type="color", value="blue"),
        ]

        stats = compute_stats(products, variants)

        assert stats["productsByCategory"] == {"shirts": 2, "hats": 1}
        assert stats["variantsByType"] == {"size": 2, "color": 1}
        assert stats["totalItems"] == 3
        assert stats["averagePrice"] == 20

    def test_recent_notifications_last_day(self):
        now = datetime(2024, 3, 2, 12, tzinfo=timezone.utc)
        notifications = [
            Notification(item_id=1, kind=NotificationKind.PRICE_DROP, message="x", created_at=now - timedelta(hours=1)),
            Notification(item_id=1, kind=NotificationKind.PRICE_DROP, message="y", created_at=now - timedelta(days=2)),
        ]

        stats = compute_stats([], [], notifications, now=now)

        assert stats["recentNotifications"] == 1
        assert stats["averagePrice"] == 0
        assert stats["timestamp"] == now.isoformat()
