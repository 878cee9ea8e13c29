"""Tracker: ties the repository, page fetcher, detector and dashboard together."""

import logging
from typing import Callable

from pricetrack.aggregator import (
    DashboardSnapshot,
    RecentOrders,
    compute_dashboard,
    compute_stats,
    get_recent_capacity,
)
from pricetrack.comparator import record_observation
from pricetrack.errors import NotFoundError, PriceTrackError, ValidationError
from pricetrack.fetchers import fetch_page
from pricetrack.models import (
    DEFAULT_CATEGORY,
    Item,
    Notification,
    Order,
    OrderStatus,
    PricePoint,
    ScrapedPage,
    Variant,
    parse_status,
    utcnow,
)
from pricetrack.storage import Repository

logger = logging.getLogger(__name__)


class Tracker:
    """Application operations over an injected repository."""

    def __init__(
        self,
        repo: Repository,
        fetch: Callable[[str], ScrapedPage] = fetch_page,
        recent_capacity: int | None = None,
    ):
        self.repo = repo
        self.fetch = fetch
        capacity = recent_capacity or get_recent_capacity()
        self.recent = RecentOrders.from_orders(repo.list_orders(), capacity=capacity)

    # ── Items ────────────────────────────────────────────────────────────────
    def get_item(self, item_id: int) -> Item:
        item = self.repo.get_item(item_id)
        if item is None:
            raise NotFoundError("item", item_id)
        return item

    def add_item(self, name: str, url: str, category: str | None = None) -> Item:
        """Scrape the page once and start tracking it."""
        if not name or not url:
            raise ValidationError("Name and URL are required")

        page = self.fetch(url)
        now = utcnow()
        item = Item(
            name=page.name if page.ok and page.name else name,
            url=url,
            price=page.price,
            price_history=[PricePoint(page.price, now)] if page.price is not None else [],
            category=category or DEFAULT_CATEGORY,
            description=page.description,
            last_scraped=now,
        )
        item = self.repo.add_item(item)
        logger.info("Tracking item %s: %s @ %s", item.id, item.name[:50], item.price)
        return item

    def update_item(
        self,
        item_id: int,
        name: str | None = None,
        url: str | None = None,
        category: str | None = None,
    ) -> Item:
        item = self.get_item(item_id)
        if name is not None:
            item.name = name
        if url is not None:
            item.url = url
        if category is not None:
            item.category = category
        item.updated_at = utcnow()
        return self.repo.update_item(item)

    def delete_item(self, item_id: int) -> None:
        self.repo.delete_item(item_id)

    def list_items(self, category=None, min_price=None, max_price=None) -> list[Item]:
        return self.repo.list_items(category=category, min_price=min_price, max_price=max_price)

    def price_history(self, item_id: int) -> dict:
        item = self.get_item(item_id)
        return {
            "itemId": item.id,
            "name": item.name,
            "priceHistory": [p.to_dict() for p in item.price_history],
        }

    # ── Scraping ─────────────────────────────────────────────────────────────
    def scrape_item(self, item_id: int) -> tuple[Item, Notification | None]:
        """Fetch the item's page and record the observed price."""
        item = self.get_item(item_id)
        page = self.fetch(item.url)
        if not page.ok:
            logger.warning("Item %s: scrape failed, keeping price %s", item.id, item.price)
        return record_observation(self.repo, item, page.price)

    def scrape_all(self) -> list[dict]:
        """Scrape every item; one failure does not stop the batch."""
        results = []
        for item in self.repo.list_items():
            try:
                _, notification = self.scrape_item(item.id)
            except PriceTrackError as e:
                logger.error("Item %s: scrape failed: %s", item.id, e)
                results.append({"id": item.id, "status": "error", "error": str(e)})
                continue
            results.append(
                {
                    "id": item.id,
                    "status": "success",
                    "notification": notification.to_dict() if notification else None,
                }
            )
        return results

    # ── Variants ─────────────────────────────────────────────────────────────
    def add_variant(
        self,
        product_id: int,
        type: str,
        value: str,
        price: float | None = None,
        stock: int = 0,
    ) -> Variant:
        self.get_item(product_id)
        variant = Variant(product_id=product_id, type=type, value=value, price=price, stock=stock)
        return self.repo.add_variant(variant)

    def get_variant(self, variant_id: int) -> Variant:
        variant = self.repo.get_variant(variant_id)
        if variant is None:
            raise NotFoundError("variant", variant_id)
        return variant

    def update_variant(self, variant_id: int, **changes) -> Variant:
        variant = self.get_variant(variant_id)
        for key in ("type", "value", "price", "stock"):
            if changes.get(key) is not None:
                setattr(variant, key, changes[key])
        return self.repo.update_variant(variant)

    def delete_variant(self, variant_id: int) -> None:
        self.repo.delete_variant(variant_id)

    def list_variants(self, product_id: int | None = None) -> list[Variant]:
        return self.repo.list_variants(product_id=product_id)

    # ── Orders ───────────────────────────────────────────────────────────────
    def create_order(
        self,
        product_id: int,
        quantity: int,
        variant_id: int | None = None,
        total_price: float | None = None,
        customer_email: str | None = None,
    ) -> Order:
        """
        Place an order in `pending` status.

        Without an explicit total, charges unit price times quantity, where the
        unit price is the variant's override or else the product's price.
        """
        product = self.get_item(product_id)
        variant = None
        if variant_id is not None:
            variant = self.get_variant(variant_id)
            if variant.product_id != product_id:
                raise ValidationError(f"Variant {variant_id} does not belong to product {product_id}")

        if total_price is None:
            unit_price = variant.effective_price(product) if variant else product.price
            if unit_price is None:
                raise ValidationError(f"Product {product_id} has no price; total_price is required")
            total_price = round(unit_price * quantity, 2)

        order = Order(
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            total_price=total_price,
            customer_email=customer_email,
        )
        with self.recent.lock:
            order = self.repo.add_order(order)
            self.recent.push(order)
        logger.info("Order %s: %d x product %s = %.2f", order.id, quantity, product_id, total_price)
        return order

    def get_order(self, order_id: int) -> Order:
        order = self.repo.get_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        return order

    def list_orders(self, status=None, product_id=None) -> list[Order]:
        if status is not None:
            status = parse_status(status)
        return self.repo.list_orders(status=status, product_id=product_id)

    def update_order_status(self, order_id: int, status: OrderStatus | str) -> Order:
        """Move an order to any status in the closed set."""
        status = parse_status(status)
        order = self.get_order(order_id)
        order.status = status
        order.updated_at = utcnow()
        with self.recent.lock:
            order = self.repo.update_order(order)
            self.recent.replace(order)
        return order

    def delete_order(self, order_id: int) -> Order:
        """Delete an order, refilling the recent window from the store if it held it."""
        with self.recent.lock:
            order = self.repo.delete_order(order_id)
            if self.recent.discard(order_id):
                self.recent.reload(self.repo.list_orders())
        return order

    # ── Notifications ────────────────────────────────────────────────────────
    def notifications(self, unread_only: bool = False) -> list[Notification]:
        return self.repo.list_notifications(unread_only=unread_only)

    def mark_read(self, notification_id: int) -> Notification:
        return self.repo.mark_notification_read(notification_id)

    # ── Reporting ────────────────────────────────────────────────────────────
    def dashboard(self) -> DashboardSnapshot:
        return compute_dashboard(
            self.repo.list_items(),
            self.repo.list_variants(),
            self.repo.list_orders(),
            recent=self.recent,
        )

    def stats(self) -> dict:
        return compute_stats(
            self.repo.list_items(),
            self.repo.list_variants(),
            self.repo.list_notifications(),
        )
