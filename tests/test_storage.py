"""Repository contract tests, run against every implementation."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pricetrack import comparator
from pricetrack.errors import NotFoundError, PersistenceError, ValidationError
from pricetrack.models import (
    Item,
    Notification,
    NotificationKind,
    Order,
    OrderStatus,
    PricePoint,
    Variant,
)
from pricetrack.storage import SQLiteRepository, get_db_path

T0 = datetime(2024, 2, 1, 9, 30, tzinfo=timezone.utc)


def new_item(name="Widget", price=None, category="Uncategorized") -> Item:
    history = [PricePoint(price, T0)] if price is not None else []
    return Item(name=name, url=f"https://shop.test/{name}", price=price, price_history=history, category=category)


class TestItems:
    def test_add_and_get_round_trip(self, repo):
        item = repo.add_item(new_item(price=19.99))

        stored = repo.get_item(item.id)

        assert stored.id == item.id
        assert stored.name == "Widget"
        assert stored.price == 19.99
        assert stored.price_history == [PricePoint(19.99, T0)]
        assert stored.category == "Uncategorized"

    def test_get_missing_returns_none(self, repo):
        assert repo.get_item(999) is None

    def test_ids_are_unique(self, repo):
        a = repo.add_item(new_item("a"))
        b = repo.add_item(new_item("b"))
        assert a.id != b.id

    def test_filters(self, repo):
        repo.add_item(new_item("cheap", price=5, category="toys"))
        repo.add_item(new_item("mid", price=50, category="toys"))
        repo.add_item(new_item("dear", price=500, category="tools"))
        repo.add_item(new_item("unpriced", category="toys"))

        assert {i.name for i in repo.list_items(category="toys")} == {"cheap", "mid", "unpriced"}
        assert {i.name for i in repo.list_items(min_price=10)} == {"mid", "dear"}
        assert {i.name for i in repo.list_items(max_price=50)} == {"cheap", "mid"}
        assert {i.name for i in repo.list_items(category="toys", min_price=10, max_price=100)} == {"mid"}
        assert len(repo.list_items()) == 4

    def test_update_missing_raises(self, repo):
        ghost = new_item()
        ghost.id = 12345
        with pytest.raises(NotFoundError):
            repo.update_item(ghost)

    def test_delete(self, repo):
        item = repo.add_item(new_item())

        repo.delete_item(item.id)

        assert repo.get_item(item.id) is None
        with pytest.raises(NotFoundError):
            repo.delete_item(item.id)

    def test_rejects_missing_name(self, repo):
        with pytest.raises(ValidationError):
            repo.add_item(Item(name="", url="https://shop.test/x"))

    def test_rejects_price_out_of_step_with_history(self, repo):
        item = new_item(price=10)
        item.price = 12
        with pytest.raises(ValidationError):
            repo.add_item(item)


class TestRecordObservation:
    def test_writes_item_and_notification_together(self, repo):
        item = repo.add_item(new_item(price=100))
        item.price_history.append(PricePoint(80, T0 + timedelta(hours=1)))
        item.price = 80
        notification = Notification(
            item_id=item.id,
            kind=NotificationKind.PRICE_DROP,
            message="Price dropped from $100 to $80",
            threshold=100,
            created_at=T0,
        )

        repo.record_observation(item, notification)

        stored = repo.get_item(item.id)
        assert stored.price == 80
        assert [p.price for p in stored.price_history] == [100, 80]
        assert notification.id is not None
        assert [n.message for n in repo.list_notifications()] == ["Price dropped from $100 to $80"]

    def test_invalid_notification_writes_nothing(self, repo):
        item = repo.add_item(new_item(price=100))
        item.price_history.append(PricePoint(80, T0))
        item.price = 80
        bogus = Notification(item_id=item.id, kind="price_party", message="?")

        with pytest.raises(ValidationError):
            repo.record_observation(item, bogus)

        assert repo.get_item(item.id).price == 100
        assert repo.list_notifications() == []

    def test_unknown_item_raises(self, repo):
        ghost = new_item(price=1)
        ghost.id = 404
        with pytest.raises(NotFoundError):
            repo.record_observation(ghost, None)


class TestVariants:
    def test_filter_by_product_and_no_cascade(self, repo):
        shirt = repo.add_item(new_item("shirt", price=20))
        hat = repo.add_item(new_item("hat", price=15))
        repo.add_variant(Variant(product_id=shirt.id, type="size", value="M", stock=3))
        repo.add_variant(Variant(product_id=shirt.id, type="color", value="red", price=22.5))
        repo.add_variant(Variant(product_id=hat.id, type="size", value="L"))

        assert len(repo.list_variants(product_id=shirt.id)) == 2
        assert len(repo.list_variants()) == 3

        repo.delete_item(shirt.id)
        assert len(repo.list_variants(product_id=shirt.id)) == 2

    def test_update(self, repo):
        variant = repo.add_variant(Variant(product_id=1, type="size", value="S", stock=1))
        variant.stock = 9

        repo.update_variant(variant)

        assert repo.get_variant(variant.id).stock == 9

    @pytest.mark.parametrize("stock", [-1, 1.5, None])
    def test_rejects_bad_stock(self, repo, stock):
        with pytest.raises(ValidationError):
            repo.add_variant(Variant(product_id=1, type="size", value="S", stock=stock))

    def test_delete_missing_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.delete_variant(77)


class TestOrders:
    def test_filters(self, repo):
        repo.add_order(Order(product_id=1, quantity=1, total_price=10))
        shipped = repo.add_order(Order(product_id=2, quantity=2, total_price=20, status=OrderStatus.SHIPPED))
        repo.add_order(Order(product_id=2, quantity=1, total_price=10))

        assert [o.id for o in repo.list_orders(status=OrderStatus.SHIPPED)] == [shipped.id]
        assert [o.id for o in repo.list_orders(status="shipped")] == [shipped.id]
        assert len(repo.list_orders(product_id=2)) == 2
        assert len(repo.list_orders()) == 3

    def test_unknown_status_filter_raises(self, repo):
        repo.add_order(Order(product_id=1, quantity=1, total_price=10))
        with pytest.raises(ValidationError):
            repo.list_orders(status="bogus")

    def test_round_trip(self, repo):
        order = repo.add_order(
            Order(product_id=1, variant_id=3, quantity=2, total_price=31.5, customer_email="a@b.test", created_at=T0)
        )

        stored = repo.get_order(order.id)

        assert stored.status is OrderStatus.PENDING
        assert stored.variant_id == 3
        assert stored.total_price == 31.5
        assert stored.customer_email == "a@b.test"
        assert stored.created_at == T0

    def test_update_status(self, repo):
        order = repo.add_order(Order(product_id=1, quantity=1, total_price=10))
        order.status = OrderStatus.DELIVERED

        repo.update_order(order)

        assert repo.get_order(order.id).status is OrderStatus.DELIVERED

    def test_delete_returns_removed_order(self, repo):
        order = repo.add_order(Order(product_id=1, quantity=1, total_price=10))

        removed = repo.delete_order(order.id)

        assert removed.id == order.id
        assert repo.get_order(order.id) is None
        with pytest.raises(NotFoundError):
            repo.delete_order(order.id)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"quantity": 0, "total_price": 10},
            {"quantity": -2, "total_price": 10},
            {"quantity": 1, "total_price": -1},
            {"quantity": 1, "total_price": 10, "status": "lost"},
        ],
    )
    def test_rejects_invalid(self, repo, kwargs):
        with pytest.raises(ValidationError):
            repo.add_order(Order(product_id=1, **kwargs))


class TestNotifications:
    def test_unread_filter_and_mark_read(self, repo):
        first = repo.add_notification(
            Notification(item_id=1, kind=NotificationKind.PRICE_DROP, message="one", created_at=T0)
        )
        repo.add_notification(
            Notification(
                item_id=1,
                kind=NotificationKind.PRICE_INCREASE,
                message="two",
                created_at=T0 + timedelta(minutes=5),
            )
        )

        assert [n.message for n in repo.list_notifications()] == ["two", "one"]

        marked = repo.mark_notification_read(first.id)

        assert marked.is_read is True
        assert [n.message for n in repo.list_notifications(unread_only=True)] == ["two"]

    def test_mark_missing_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.mark_notification_read(31337)


class TestSQLiteSpecifics:
    def test_db_path_from_env(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("DB_PATH", str(tmp_path / "x.db"))
        assert get_db_path() == tmp_path / "x.db"
        assert SQLiteRepository().db_path == tmp_path / "x.db"

    def test_persists_across_instances(self, sqlite_repo: SQLiteRepository):
        item = sqlite_repo.add_item(new_item(price=3))

        reopened = SQLiteRepository(sqlite_repo.db_path)

        assert reopened.get_item(item.id).price == 3

    def test_unopenable_database_raises_persistence_error(self, tmp_path: Path):
        repo = SQLiteRepository(tmp_path)  # a directory, not a file

        with pytest.raises(PersistenceError):
            repo.init_db()

    def test_failed_observation_rolls_back_item_and_history(self, sqlite_repo: SQLiteRepository):
        item = sqlite_repo.add_item(new_item(price=100))
        with sqlite_repo.get_connection() as conn:
            conn.execute("DROP TABLE notifications")

        with pytest.raises(PersistenceError) as exc:
            comparator.record_observation(sqlite_repo, item, 50, threshold=1)

        stored = sqlite_repo.get_item(item.id)
        assert stored.price == 100
        assert [p.price for p in stored.price_history] == [100]
        assert exc.value.item.price == 50
        assert [p.price for p in exc.value.item.price_history] == [100, 50]

    def test_notification_id_unset_when_commit_fails(self, sqlite_repo: SQLiteRepository):
        item = sqlite_repo.add_item(new_item(price=100))
        item.price_history.append(PricePoint(80, T0))
        item.price = 80
        notification = Notification(item_id=item.id, kind=NotificationKind.PRICE_DROP, message="drop")
        with sqlite_repo.get_connection() as conn:
            conn.execute("DROP TABLE notifications")

        with pytest.raises(PersistenceError):
            sqlite_repo.record_observation(item, notification)
        with pytest.raises(PersistenceError):
            sqlite_repo.add_notification(notification)

        assert notification.id is None
