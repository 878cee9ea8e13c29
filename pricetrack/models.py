"""Data models for tracked items, inventory, orders and notifications."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pricetrack.errors import ValidationError

DEFAULT_CATEGORY = "Uncategorized"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def is_missing_price(value) -> bool:
    """True for None and NaN, the two ways a scrape reports 'no price'."""
    if value is None:
        return True
    try:
        return math.isnan(value)
    except TypeError:
        return True


class OrderStatus(str, Enum):
    """Order lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


def parse_status(value) -> "OrderStatus":
    """Coerce a status name to OrderStatus, raising ValidationError for unknown names."""
    try:
        return OrderStatus(value)
    except ValueError as e:
        raise ValidationError(f"Unknown order status: {value!r}") from e


class NotificationKind(str, Enum):
    """What a notification is about."""

    PRICE_DROP = "price_drop"
    PRICE_INCREASE = "price_increase"
    BACK_IN_STOCK = "back_in_stock"


@dataclass
class PricePoint:
    """One observed price, in insertion (chronological) order."""

    price: float
    observed_at: datetime

    def to_dict(self) -> dict:
        return {"price": self.price, "date": _iso(self.observed_at)}


@dataclass
class Item:
    """
    Tracked catalog entry, also used as the Product of orders and variants.

    `price` always mirrors the last entry of `price_history` when there is one.
    """

    name: str
    url: str
    price: float | None = None
    price_history: list[PricePoint] = field(default_factory=list)
    category: str = DEFAULT_CATEGORY
    description: str = ""
    last_scraped: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def validate(self) -> None:
        if not self.name or not self.url:
            raise ValidationError("Name and URL are required")
        if self.price is not None and (is_missing_price(self.price) or self.price < 0):
            raise ValidationError(f"Invalid price for item {self.name!r}: {self.price!r}")
        if self.price_history and self.price != self.price_history[-1].price:
            raise ValidationError(
                f"Item {self.name!r} price {self.price!r} does not match latest history entry"
            )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "price": self.price,
            "priceHistory": [p.to_dict() for p in self.price_history],
            "category": self.category,
            "description": self.description,
            "lastScraped": _iso(self.last_scraped),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class Variant:
    """Sub-option of a product (size, color, ...) with its own stock."""

    product_id: int
    type: str
    value: str
    price: float | None = None
    stock: int = 0
    id: int | None = None

    def effective_price(self, product: Item | None) -> float | None:
        """Variant override, else the parent product's price."""
        if self.price is not None:
            return self.price
        return product.price if product else None

    def validate(self) -> None:
        if self.product_id is None:
            raise ValidationError("Variant must belong to a product")
        if not self.type or not self.value:
            raise ValidationError("Variant type and value are required")
        if isinstance(self.stock, bool) or not isinstance(self.stock, int) or self.stock < 0:
            raise ValidationError(f"Stock must be a non-negative integer, got {self.stock!r}")
        if self.price is not None and (is_missing_price(self.price) or self.price < 0):
            raise ValidationError(f"Invalid variant price: {self.price!r}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "type": self.type,
            "value": self.value,
            "price": self.price,
            "stock": self.stock,
        }


@dataclass
class Order:
    """Order of one product, optionally a specific variant."""

    product_id: int
    quantity: int
    total_price: float
    variant_id: int | None = None
    status: OrderStatus = OrderStatus.PENDING
    customer_email: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def validate(self) -> None:
        if self.product_id is None:
            raise ValidationError("Order must reference a product")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValidationError(f"Quantity must be a positive integer, got {self.quantity!r}")
        if is_missing_price(self.total_price) or self.total_price < 0:
            raise ValidationError(f"Invalid order total: {self.total_price!r}")
        self.status = parse_status(self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "variantId": self.variant_id,
            "quantity": self.quantity,
            "totalPrice": round(self.total_price, 2),
            "status": OrderStatus(self.status).value,
            "customerEmail": self.customer_email,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class Notification:
    """Price movement alert. Only `is_read` changes after creation."""

    item_id: int
    kind: NotificationKind
    message: str
    threshold: float | None = None
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def validate(self) -> None:
        if self.item_id is None:
            raise ValidationError("Notification must reference an item")
        try:
            self.kind = NotificationKind(self.kind)
        except ValueError as e:
            raise ValidationError(f"Unknown notification kind: {self.kind!r}") from e

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "itemId": self.item_id,
            "type": NotificationKind(self.kind).value,
            "message": self.message,
            "threshold": self.threshold,
            "isRead": self.is_read,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class ScrapedPage:
    """Best-effort extraction result for one URL."""

    url: str
    name: str
    price: float | None
    description: str = ""
    ok: bool = True

    @classmethod
    def failed(cls, url: str) -> "ScrapedPage":
        """Sentinel record returned when a page could not be fetched."""
        return cls(url=url, name="Error", price=None, description="Failed to scrape content", ok=False)
