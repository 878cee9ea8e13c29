"""REST API over the tracker."""

import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pricetrack import schemas
from pricetrack.errors import NotFoundError, PersistenceError, ValidationError
from pricetrack.models import OrderStatus, utcnow
from pricetrack.service import Tracker
from pricetrack.storage import SQLiteRepository

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


def _scheduler_enabled() -> bool:
    val = os.environ.get("ENABLE_SCHEDULER", "false").lower()
    return val in ("true", "1", "yes")


def _default_tracker() -> Tracker:
    repo = SQLiteRepository()
    repo.init_db()
    return Tracker(repo)


def get_tracker(request: Request) -> Tracker:
    tracker = request.app.state.tracker
    if tracker is None:
        tracker = request.app.state.tracker = _default_tracker()
    return tracker


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if _scheduler_enabled():
        tracker = app.state.tracker or _default_tracker()
        app.state.tracker = tracker
        interval_minutes = int(os.environ.get("CHECK_INTERVAL_MINUTES", "60"))
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            tracker.scrape_all,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id="scrape_all",
            max_instances=1,
            misfire_grace_time=300,
        )
        scheduler.start()
        logger.info("Scheduler: scraping all items every %d min", interval_minutes)
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(tracker: Tracker | None = None) -> FastAPI:
    """Build the API. Without a tracker, one backed by SQLite at DB_PATH is created on first use."""
    app = FastAPI(title="pricetrack", lifespan=lifespan)
    app.state.tracker = tracker

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, f"{exc.kind.capitalize()} not found")

    @app.exception_handler(ValidationError)
    async def invalid(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return _error(400, "; ".join(e.get("msg", "invalid") for e in exc.errors()))

    @app.exception_handler(PersistenceError)
    async def storage_down(request: Request, exc: PersistenceError):
        logger.error("Persistence error on %s %s: %s", request.method, request.url.path, exc)
        return _error(503, "Storage unavailable")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Endpoint not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error")

    # ── Health ───────────────────────────────────────────────────────────────
    @app.get("/api/health")
    def health():
        return {
            "status": "OK",
            "timestamp": utcnow().isoformat(),
            "uptime": time.monotonic() - STARTED_AT,
        }

    # ── Items ────────────────────────────────────────────────────────────────
    @app.post("/api/items", status_code=201)
    def create_item(body: schemas.ItemCreate, tracker: Tracker = Depends(get_tracker)):
        return tracker.add_item(body.name, body.url, body.category).to_dict()

    @app.get("/api/items")
    def list_items(
        category: Optional[str] = None,
        min_price: Optional[float] = Query(None, ge=0),
        max_price: Optional[float] = Query(None, ge=0),
        tracker: Tracker = Depends(get_tracker),
    ):
        items = tracker.list_items(category=category, min_price=min_price, max_price=max_price)
        items.sort(key=lambda i: i.created_at, reverse=True)
        return [i.to_dict() for i in items]

    @app.get("/api/items/{item_id}")
    def read_item(item_id: int, tracker: Tracker = Depends(get_tracker)):
        return tracker.get_item(item_id).to_dict()

    @app.put("/api/items/{item_id}")
    def update_item(item_id: int, body: schemas.ItemUpdate, tracker: Tracker = Depends(get_tracker)):
        return tracker.update_item(item_id, name=body.name, url=body.url, category=body.category).to_dict()

    @app.delete("/api/items/{item_id}")
    def delete_item(item_id: int, tracker: Tracker = Depends(get_tracker)):
        tracker.delete_item(item_id)
        return {"message": "Item deleted successfully"}

    @app.post("/api/items/{item_id}/scrape")
    def scrape_item(item_id: int, tracker: Tracker = Depends(get_tracker)):
        item, notification = tracker.scrape_item(item_id)
        return {
            "message": "Scraping completed",
            "item": item.to_dict(),
            "notification": notification.to_dict() if notification else None,
        }

    @app.post("/api/scrape-all")
    def scrape_all(tracker: Tracker = Depends(get_tracker)):
        return {
            "message": "Batch scraping completed",
            "results": tracker.scrape_all(),
            "timestamp": utcnow().isoformat(),
        }

    @app.get("/api/items/{item_id}/price-history")
    def price_history(item_id: int, tracker: Tracker = Depends(get_tracker)):
        return tracker.price_history(item_id)

    # ── Notifications ────────────────────────────────────────────────────────
    @app.get("/api/notifications")
    def list_notifications(unread: bool = False, tracker: Tracker = Depends(get_tracker)):
        return [n.to_dict() for n in tracker.notifications(unread_only=unread)]

    @app.patch("/api/notifications/{notification_id}/read")
    def mark_read(notification_id: int, tracker: Tracker = Depends(get_tracker)):
        return tracker.mark_read(notification_id).to_dict()

    # ── Variants ─────────────────────────────────────────────────────────────
    @app.post("/api/variants", status_code=201)
    def create_variant(body: schemas.VariantCreate, tracker: Tracker = Depends(get_tracker)):
        return tracker.add_variant(
            body.product_id, body.type, body.value, price=body.price, stock=body.stock
        ).to_dict()

    @app.get("/api/variants")
    def list_variants(product_id: Optional[int] = None, tracker: Tracker = Depends(get_tracker)):
        return [v.to_dict() for v in tracker.list_variants(product_id=product_id)]

    @app.patch("/api/variants/{variant_id}")
    def update_variant(variant_id: int, body: schemas.VariantUpdate, tracker: Tracker = Depends(get_tracker)):
        return tracker.update_variant(variant_id, **body.model_dump()).to_dict()

    @app.delete("/api/variants/{variant_id}")
    def delete_variant(variant_id: int, tracker: Tracker = Depends(get_tracker)):
        tracker.delete_variant(variant_id)
        return {"message": "Variant deleted successfully"}

    # ── Orders ───────────────────────────────────────────────────────────────
    @app.post("/api/orders", status_code=201)
    def create_order(body: schemas.OrderCreate, tracker: Tracker = Depends(get_tracker)):
        return tracker.create_order(
            body.product_id,
            body.quantity,
            variant_id=body.variant_id,
            total_price=body.total_price,
            customer_email=body.customer_email,
        ).to_dict()

    @app.get("/api/orders")
    def list_orders(
        status: Optional[OrderStatus] = None,
        product_id: Optional[int] = None,
        tracker: Tracker = Depends(get_tracker),
    ):
        return [o.to_dict() for o in tracker.list_orders(status=status, product_id=product_id)]

    @app.patch("/api/orders/{order_id}/status")
    def update_order_status(order_id: int, body: schemas.OrderStatusUpdate, tracker: Tracker = Depends(get_tracker)):
        return tracker.update_order_status(order_id, body.status).to_dict()

    @app.delete("/api/orders/{order_id}")
    def delete_order(order_id: int, tracker: Tracker = Depends(get_tracker)):
        tracker.delete_order(order_id)
        return {"message": "Order deleted successfully"}

    # ── Reporting ────────────────────────────────────────────────────────────
    @app.get("/api/stats")
    def stats(tracker: Tracker = Depends(get_tracker)):
        return tracker.stats()

    @app.get("/api/dashboard")
    def dashboard(tracker: Tracker = Depends(get_tracker)):
        return {"success": True, "data": tracker.dashboard().to_dict()}

    return app


def serve() -> None:
    """Run the API with uvicorn."""
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    host = os.environ.get("API_HOST", "127.0.0.1")
    port = int(os.environ.get("API_PORT", "5000"))
    logger.info("API listening on %s:%d", host, port)
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    serve()
