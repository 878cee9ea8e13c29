"""Exception types shared across the tracker."""


class PriceTrackError(Exception):
    """Base class for tracker errors."""


class ValidationError(PriceTrackError):
    """Entity failed validation at the persistence boundary."""


class NotFoundError(PriceTrackError):
    """Requested entity does not exist."""

    def __init__(self, kind: str, entity_id):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class PersistenceError(PriceTrackError):
    """
    Storage failure.

    `item` holds the in-memory item state computed before the write failed,
    so a price observation is never lost just because the store was down.
    """

    def __init__(self, message: str, item=None):
        super().__init__(message)
        self.item = item
