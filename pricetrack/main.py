"""Entry point and scheduler for the price tracker."""

import logging
import os
import random
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pricetrack.service import Tracker
from pricetrack.storage import SQLiteRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def run_check(tracker: Tracker) -> None:
    """Scrape every tracked item and report notifications."""
    results = tracker.scrape_all()
    failed = [r for r in results if r["status"] != "success"]
    fired = [r["notification"] for r in results if r.get("notification")]

    for notification in fired:
        logger.info("🔔 Item %s: %s", notification["itemId"], notification["message"])
    logger.info(
        "Checked %d items: %d notifications, %d failures",
        len(results), len(fired), len(failed),
    )


def run_check_with_jitter(tracker: Tracker) -> None:
    """
    Add randomized jitter before each scheduled check.

    The base interval is CHECK_INTERVAL_MINUTES; each run is preceded by a
    random delay of 0–JITTER_MAX_SECONDS seconds.
    """
    jitter_max = int(os.environ.get("JITTER_MAX_SECONDS", "120"))
    delay = random.uniform(0, jitter_max)
    logger.debug("Jitter: sleeping %.1f s before check", delay)
    time.sleep(delay)
    run_check(tracker)


def main() -> None:
    """Initialize DB, run once immediately, then start the scheduler."""
    repo = SQLiteRepository()
    repo.init_db()
    tracker = Tracker(repo)
    logger.info("🚀 Price tracker started (db: %s)", repo.db_path)

    interval_minutes = int(os.environ.get("CHECK_INTERVAL_MINUTES", "60"))
    jitter_max = int(os.environ.get("JITTER_MAX_SECONDS", "120"))

    logger.info(
        "Scheduler: every ~%d min ± %d s jitter",
        interval_minutes, jitter_max,
    )

    run_check(tracker)

    scheduler = BlockingScheduler()
    scheduler.add_job(
        run_check_with_jitter,
        args=[tracker],
        trigger=IntervalTrigger(minutes=interval_minutes),
        id="price_check",
        max_instances=1,          # Prevent overlapping runs
        misfire_grace_time=300,
    )
    scheduler.start()


if __name__ == "__main__":
    main()
