"""Persistence for items, price history, variants, orders and notifications."""

import copy
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from pricetrack.errors import NotFoundError, PersistenceError
from pricetrack.models import (
    Item,
    Notification,
    NotificationKind,
    Order,
    OrderStatus,
    PricePoint,
    Variant,
    parse_status,
)

logger = logging.getLogger(__name__)


def get_db_path() -> Path:
    """Get database path from env or default."""
    path = os.environ.get("DB_PATH", "data/pricetrack.db")
    return Path(path)


class Repository(ABC):
    """
    Store for all tracker entities.

    Implementations validate every entity they write, assign ids on insert,
    and never cascade deletes from a product to its variants or orders.
    `get_*` return None on a miss; `update_*` and `delete_*` raise NotFoundError.
    """

    # ── Items ────────────────────────────────────────────────────────────────
    @abstractmethod
    def add_item(self, item: Item) -> Item: ...

    @abstractmethod
    def get_item(self, item_id: int) -> Item | None: ...

    @abstractmethod
    def list_items(
        self,
        category: str | None = None,
        min_price: float | None = None,
        max_price: float | None = None,
    ) -> list[Item]: ...

    @abstractmethod
    def update_item(self, item: Item) -> Item: ...

    @abstractmethod
    def delete_item(self, item_id: int) -> None: ...

    @abstractmethod
    def record_observation(self, item: Item, notification: Notification | None) -> None:
        """Persist an item's new price/history and its notification as one unit."""

    # ── Variants ─────────────────────────────────────────────────────────────
    @abstractmethod
    def add_variant(self, variant: Variant) -> Variant: ...

    @abstractmethod
    def get_variant(self, variant_id: int) -> Variant | None: ...

    @abstractmethod
    def list_variants(self, product_id: int | None = None) -> list[Variant]: ...

    @abstractmethod
    def update_variant(self, variant: Variant) -> Variant: ...

    @abstractmethod
    def delete_variant(self, variant_id: int) -> None: ...

    # ── Orders ───────────────────────────────────────────────────────────────
    @abstractmethod
    def add_order(self, order: Order) -> Order: ...

    @abstractmethod
    def get_order(self, order_id: int) -> Order | None: ...

    @abstractmethod
    def list_orders(
        self, status: OrderStatus | None = None, product_id: int | None = None
    ) -> list[Order]: ...

    @abstractmethod
    def update_order(self, order: Order) -> Order: ...

    @abstractmethod
    def delete_order(self, order_id: int) -> Order: ...

    # ── Notifications ────────────────────────────────────────────────────────
    @abstractmethod
    def add_notification(self, notification: Notification) -> Notification: ...

    @abstractmethod
    def list_notifications(self, unread_only: bool = False) -> list[Notification]: ...

    @abstractmethod
    def mark_notification_read(self, notification_id: int) -> Notification: ...


def _price_in_range(price, min_price, max_price) -> bool:
    if min_price is None and max_price is None:
        return True
    if price is None:
        return False
    if min_price is not None and price < min_price:
        return False
    if max_price is not None and price > max_price:
        return False
    return True


class InMemoryRepository(Repository):
    """Dict-backed repository. Stores and returns copies, never live references."""

    def __init__(self):
        self._items: dict[int, Item] = {}
        self._variants: dict[int, Variant] = {}
        self._orders: dict[int, Order] = {}
        self._notifications: dict[int, Notification] = {}
        self._next_id = {"item": 1, "variant": 1, "order": 1, "notification": 1}

    def _insert(self, table: dict, kind: str, entity):
        entity.validate()
        entity.id = self._next_id[kind]
        self._next_id[kind] += 1
        table[entity.id] = copy.deepcopy(entity)
        return entity

    def _replace(self, table: dict, kind: str, entity):
        if entity.id not in table:
            raise NotFoundError(kind, entity.id)
        entity.validate()
        table[entity.id] = copy.deepcopy(entity)
        return entity

    def _remove(self, table: dict, kind: str, entity_id):
        try:
            return table.pop(entity_id)
        except KeyError:
            raise NotFoundError(kind, entity_id) from None

    # Items
    def add_item(self, item: Item) -> Item:
        return self._insert(self._items, "item", item)

    def get_item(self, item_id: int) -> Item | None:
        item = self._items.get(item_id)
        return copy.deepcopy(item) if item else None

    def list_items(self, category=None, min_price=None, max_price=None) -> list[Item]:
        return [
            copy.deepcopy(i)
            for i in self._items.values()
            if (category is None or i.category == category)
            and _price_in_range(i.price, min_price, max_price)
        ]

    def update_item(self, item: Item) -> Item:
        return self._replace(self._items, "item", item)

    def delete_item(self, item_id: int) -> None:
        self._remove(self._items, "item", item_id)

    def record_observation(self, item: Item, notification: Notification | None) -> None:
        if item.id not in self._items:
            raise NotFoundError("item", item.id)
        item.validate()
        if notification is not None:
            notification.validate()
            notification.id = self._next_id["notification"]
            self._next_id["notification"] += 1
            self._notifications[notification.id] = copy.deepcopy(notification)
        self._items[item.id] = copy.deepcopy(item)

    # Variants
    def add_variant(self, variant: Variant) -> Variant:
        return self._insert(self._variants, "variant", variant)

    def get_variant(self, variant_id: int) -> Variant | None:
        variant = self._variants.get(variant_id)
        return copy.deepcopy(variant) if variant else None

    def list_variants(self, product_id=None) -> list[Variant]:
        return [
            copy.deepcopy(v)
            for v in self._variants.values()
            if product_id is None or v.product_id == product_id
        ]

    def update_variant(self, variant: Variant) -> Variant:
        return self._replace(self._variants, "variant", variant)

    def delete_variant(self, variant_id: int) -> None:
        self._remove(self._variants, "variant", variant_id)

    # Orders
    def add_order(self, order: Order) -> Order:
        return self._insert(self._orders, "order", order)

    def get_order(self, order_id: int) -> Order | None:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    def list_orders(self, status=None, product_id=None) -> list[Order]:
        return [
            copy.deepcopy(o)
            for o in self._orders.values()
            if (status is None or o.status == parse_status(status))
            and (product_id is None or o.product_id == product_id)
        ]

    def update_order(self, order: Order) -> Order:
        return self._replace(self._orders, "order", order)

    def delete_order(self, order_id: int) -> Order:
        return self._remove(self._orders, "order", order_id)

    # Notifications
    def add_notification(self, notification: Notification) -> Notification:
        return self._insert(self._notifications, "notification", notification)

    def list_notifications(self, unread_only: bool = False) -> list[Notification]:
        found = [
            copy.deepcopy(n)
            for n in self._notifications.values()
            if not (unread_only and n.is_read)
        ]
        return sorted(found, key=lambda n: (n.created_at, n.id), reverse=True)

    def mark_notification_read(self, notification_id: int) -> Notification:
        notification = self._notifications.get(notification_id)
        if notification is None:
            raise NotFoundError("notification", notification_id)
        notification.is_read = True
        return copy.deepcopy(notification)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        url TEXT NOT NULL,
        price REAL,
        category TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        last_scraped TIMESTAMP,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS price_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id INTEGER NOT NULL,
        price REAL NOT NULL,
        observed_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_history_item
    ON price_history(item_id, id)
    """,
    """
    CREATE TABLE IF NOT EXISTS variants (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        value TEXT NOT NULL,
        price REAL,
        stock INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL,
        variant_id INTEGER,
        quantity INTEGER NOT NULL,
        total_price REAL NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        customer_email TEXT,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id INTEGER NOT NULL,
        kind TEXT NOT NULL,
        message TEXT NOT NULL,
        threshold REAL,
        is_read INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP NOT NULL
    )
    """,
]


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteRepository(Repository):
    """SQLite-backed repository. One connection per operation."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path) if db_path else get_db_path()

    @contextmanager
    def get_connection(self):
        """Context manager for SQLite connection; commits on success, rolls back on error."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("SQLite error on %s: %s", self.db_path, e)
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        with self.get_connection() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    # ── Row mapping ──────────────────────────────────────────────────────────
    def _load_item(self, conn, row) -> Item:
        history = conn.execute(
            "SELECT price, observed_at FROM price_history WHERE item_id = ? ORDER BY id",
            (row["id"],),
        ).fetchall()
        return Item(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            price=row["price"],
            price_history=[PricePoint(h["price"], _parse_ts(h["observed_at"])) for h in history],
            category=row["category"],
            description=row["description"],
            last_scraped=_parse_ts(row["last_scraped"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _variant(row) -> Variant:
        return Variant(
            id=row["id"],
            product_id=row["product_id"],
            type=row["type"],
            value=row["value"],
            price=row["price"],
            stock=row["stock"],
        )

    @staticmethod
    def _order(row) -> Order:
        return Order(
            id=row["id"],
            product_id=row["product_id"],
            variant_id=row["variant_id"],
            quantity=row["quantity"],
            total_price=row["total_price"],
            status=OrderStatus(row["status"]),
            customer_email=row["customer_email"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _notification(row) -> Notification:
        return Notification(
            id=row["id"],
            item_id=row["item_id"],
            kind=NotificationKind(row["kind"]),
            message=row["message"],
            threshold=row["threshold"],
            is_read=bool(row["is_read"]),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _sync_history(conn, item: Item) -> None:
        """Append history entries not yet stored. History is append-only."""
        stored = conn.execute(
            "SELECT COUNT(*) FROM price_history WHERE item_id = ?", (item.id,)
        ).fetchone()[0]
        conn.executemany(
            "INSERT INTO price_history (item_id, price, observed_at) VALUES (?, ?, ?)",
            [(item.id, p.price, _ts(p.observed_at)) for p in item.price_history[stored:]],
        )

    @staticmethod
    def _write_item(conn, item: Item) -> int:
        cur = conn.execute(
            """
            UPDATE items SET name = ?, url = ?, price = ?, category = ?, description = ?,
                last_scraped = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                item.name,
                item.url,
                item.price,
                item.category,
                item.description,
                _ts(item.last_scraped),
                _ts(item.updated_at),
                item.id,
            ),
        )
        return cur.rowcount

    @staticmethod
    def _insert_notification(conn, notification: Notification) -> int:
        cur = conn.execute(
            """
            INSERT INTO notifications (item_id, kind, message, threshold, is_read, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                notification.item_id,
                NotificationKind(notification.kind).value,
                notification.message,
                notification.threshold,
                int(notification.is_read),
                _ts(notification.created_at),
            ),
        )
        return cur.lastrowid

    # ── Items ────────────────────────────────────────────────────────────────
    def add_item(self, item: Item) -> Item:
        item.validate()
        with self.get_connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO items (name, url, price, category, description,
                    last_scraped, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.name,
                    item.url,
                    item.price,
                    item.category,
                    item.description,
                    _ts(item.last_scraped),
                    _ts(item.created_at),
                    _ts(item.updated_at),
                ),
            )
            item.id = cur.lastrowid
            self._sync_history(conn, item)
        return item

    def get_item(self, item_id: int) -> Item | None:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            return self._load_item(conn, row) if row else None

    def list_items(self, category=None, min_price=None, max_price=None) -> list[Item]:
        clauses, params = [], []
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if min_price is not None:
            clauses.append("price IS NOT NULL AND price >= ?")
            params.append(min_price)
        if max_price is not None:
            clauses.append("price IS NOT NULL AND price <= ?")
            params.append(max_price)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.get_connection() as conn:
            rows = conn.execute(f"SELECT * FROM items {where} ORDER BY id", params).fetchall()
            return [self._load_item(conn, row) for row in rows]

    def update_item(self, item: Item) -> Item:
        item.validate()
        with self.get_connection() as conn:
            if not self._write_item(conn, item):
                raise NotFoundError("item", item.id)
            self._sync_history(conn, item)
        return item

    def delete_item(self, item_id: int) -> None:
        with self.get_connection() as conn:
            cur = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
            if not cur.rowcount:
                raise NotFoundError("item", item_id)
            conn.execute("DELETE FROM price_history WHERE item_id = ?", (item_id,))

    def record_observation(self, item: Item, notification: Notification | None) -> None:
        item.validate()
        if notification is not None:
            notification.validate()
        notification_id = None
        with self.get_connection() as conn:
            if not self._write_item(conn, item):
                raise NotFoundError("item", item.id)
            self._sync_history(conn, item)
            if notification is not None:
                notification_id = self._insert_notification(conn, notification)
        # ids are only handed out once the transaction has committed
        if notification is not None:
            notification.id = notification_id

    # ── Variants ─────────────────────────────────────────────────────────────
    def add_variant(self, variant: Variant) -> Variant:
        variant.validate()
        with self.get_connection() as conn:
            cur = conn.execute(
                "INSERT INTO variants (product_id, type, value, price, stock) VALUES (?, ?, ?, ?, ?)",
                (variant.product_id, variant.type, variant.value, variant.price, variant.stock),
            )
            variant.id = cur.lastrowid
        return variant

    def get_variant(self, variant_id: int) -> Variant | None:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM variants WHERE id = ?", (variant_id,)).fetchone()
        return self._variant(row) if row else None

    def list_variants(self, product_id=None) -> list[Variant]:
        with self.get_connection() as conn:
            if product_id is None:
                rows = conn.execute("SELECT * FROM variants ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM variants WHERE product_id = ? ORDER BY id", (product_id,)
                ).fetchall()
        return [self._variant(row) for row in rows]

    def update_variant(self, variant: Variant) -> Variant:
        variant.validate()
        with self.get_connection() as conn:
            cur = conn.execute(
                "UPDATE variants SET product_id = ?, type = ?, value = ?, price = ?, stock = ? WHERE id = ?",
                (variant.product_id, variant.type, variant.value, variant.price, variant.stock, variant.id),
            )
            if not cur.rowcount:
                raise NotFoundError("variant", variant.id)
        return variant

    def delete_variant(self, variant_id: int) -> None:
        with self.get_connection() as conn:
            cur = conn.execute("DELETE FROM variants WHERE id = ?", (variant_id,))
            if not cur.rowcount:
                raise NotFoundError("variant", variant_id)

    # ── Orders ───────────────────────────────────────────────────────────────
    def add_order(self, order: Order) -> Order:
        order.validate()
        with self.get_connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO orders (product_id, variant_id, quantity, total_price, status,
                    customer_email, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.product_id,
                    order.variant_id,
                    order.quantity,
                    order.total_price,
                    order.status.value,
                    order.customer_email,
                    _ts(order.created_at),
                    _ts(order.updated_at),
                ),
            )
            order.id = cur.lastrowid
        return order

    def get_order(self, order_id: int) -> Order | None:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        return self._order(row) if row else None

    def list_orders(self, status=None, product_id=None) -> list[Order]:
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(parse_status(status).value)
        if product_id is not None:
            clauses.append("product_id = ?")
            params.append(product_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.get_connection() as conn:
            rows = conn.execute(f"SELECT * FROM orders {where} ORDER BY id", params).fetchall()
        return [self._order(row) for row in rows]

    def update_order(self, order: Order) -> Order:
        order.validate()
        with self.get_connection() as conn:
            cur = conn.execute(
                """
                UPDATE orders SET product_id = ?, variant_id = ?, quantity = ?, total_price = ?,
                    status = ?, customer_email = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    order.product_id,
                    order.variant_id,
                    order.quantity,
                    order.total_price,
                    order.status.value,
                    order.customer_email,
                    _ts(order.updated_at),
                    order.id,
                ),
            )
            if not cur.rowcount:
                raise NotFoundError("order", order.id)
        return order

    def delete_order(self, order_id: int) -> Order:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
            if row is None:
                raise NotFoundError("order", order_id)
            conn.execute("DELETE FROM orders WHERE id = ?", (order_id,))
        return self._order(row)

    # ── Notifications ────────────────────────────────────────────────────────
    def add_notification(self, notification: Notification) -> Notification:
        notification.validate()
        with self.get_connection() as conn:
            notification_id = self._insert_notification(conn, notification)
        notification.id = notification_id
        return notification

    def list_notifications(self, unread_only: bool = False) -> list[Notification]:
        query = "SELECT * FROM notifications"
        if unread_only:
            query += " WHERE is_read = 0"
        query += " ORDER BY created_at DESC, id DESC"
        with self.get_connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._notification(row) for row in rows]

    def mark_notification_read(self, notification_id: int) -> Notification:
        with self.get_connection() as conn:
            cur = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ?", (notification_id,)
            )
            if not cur.rowcount:
                raise NotFoundError("notification", notification_id)
            row = conn.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            ).fetchone()
        return self._notification(row)
