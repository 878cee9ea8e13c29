"""Price comparison and change-notification logic."""

import logging
import os
from datetime import datetime

from pricetrack.errors import PersistenceError
from pricetrack.models import (
    Item,
    Notification,
    NotificationKind,
    PricePoint,
    is_missing_price,
    utcnow,
)
from pricetrack.storage import Repository

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PCT = 1.0


def get_change_threshold() -> float:
    """Get the percent-change threshold from environment."""
    val = os.environ.get("PRICE_CHANGE_THRESHOLD_PCT", str(DEFAULT_THRESHOLD_PCT))
    try:
        return float(val)
    except ValueError:
        logger.warning("Invalid PRICE_CHANGE_THRESHOLD_PCT=%r, using %s", val, DEFAULT_THRESHOLD_PCT)
        return DEFAULT_THRESHOLD_PCT


def format_price(value: float) -> str:
    """Render a price as observed: 100.0 -> '100', 98.5 -> '98.5'."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def percent_change(previous: float | None, current: float | None) -> float | None:
    """
    Absolute percent change from previous to current.

    None when either price is missing or previous is 0 (no meaningful baseline).
    """
    if is_missing_price(previous) or is_missing_price(current):
        return None
    if previous == 0:
        return None
    return abs(current - previous) / previous * 100


def evaluate(
    previous: float | None,
    current: float | None,
    item_id: int,
    threshold: float = DEFAULT_THRESHOLD_PCT,
    now: datetime | None = None,
) -> Notification | None:
    """
    Decide whether a price movement deserves a notification.

    Fires only when the change is strictly greater than `threshold` percent.
    """
    percent = percent_change(previous, current)
    if percent is None or percent <= threshold:
        return None

    if current < previous:
        kind, verb = NotificationKind.PRICE_DROP, "dropped"
    else:
        kind, verb = NotificationKind.PRICE_INCREASE, "increased"

    return Notification(
        item_id=item_id,
        kind=kind,
        message=f"Price {verb} from ${format_price(previous)} to ${format_price(current)}",
        threshold=previous,
        created_at=now or utcnow(),
    )


def apply_observation(item: Item, current: float | None, now: datetime | None = None) -> Item:
    """Append the observed price to history and make it the current price."""
    now = now or utcnow()
    if not is_missing_price(current):
        item.price_history.append(PricePoint(price=current, observed_at=now))
        item.price = current
    item.last_scraped = now
    item.updated_at = now
    return item


def record_observation(
    repo: Repository,
    item: Item,
    current: float | None,
    threshold: float | None = None,
) -> tuple[Item, Notification | None]:
    """
    Compare, update history and persist in one unit.

    Returns (updated_item, notification_or_None). If the store fails, the
    PersistenceError carries the updated item.
    """
    if threshold is None:
        threshold = get_change_threshold()
    now = utcnow()

    notification = evaluate(item.price, current, item.id, threshold=threshold, now=now)
    apply_observation(item, current, now=now)

    try:
        repo.record_observation(item, notification)
    except PersistenceError as e:
        e.item = item
        logger.error("Failed to persist price observation for item %s: %s", item.id, e)
        raise

    if notification:
        logger.info("Item %s: %s", item.id, notification.message)
    return item, notification
