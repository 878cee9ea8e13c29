"""Shared test fixtures for pricetrack."""

from pathlib import Path

import pytest

from pricetrack.models import ScrapedPage
from pricetrack.service import Tracker
from pricetrack.storage import InMemoryRepository, SQLiteRepository


class FakeFetcher:
    """Stands in for fetch_page; serves canned pages keyed by URL."""

    def __init__(self):
        self.pages: dict[str, ScrapedPage] = {}
        self.calls: list[str] = []

    def set(self, url: str, name: str = "Widget", price: float | None = 10.0, description: str = ""):
        self.pages[url] = ScrapedPage(url=url, name=name, price=price, description=description)

    def fail(self, url: str):
        self.pages[url] = ScrapedPage.failed(url)

    def __call__(self, url: str) -> ScrapedPage:
        self.calls.append(url)
        return self.pages.get(url) or ScrapedPage.failed(url)


@pytest.fixture
def memory_repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def sqlite_repo(tmp_path: Path) -> SQLiteRepository:
    repo = SQLiteRepository(tmp_path / "db" / "test.db")
    repo.init_db()
    return repo


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path: Path):
    """Every repository implementation, for contract tests."""
    if request.param == "memory":
        return InMemoryRepository()
    repo = SQLiteRepository(tmp_path / "contract.db")
    repo.init_db()
    return repo


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def tracker(memory_repo: InMemoryRepository, fetcher: FakeFetcher) -> Tracker:
    return Tracker(memory_repo, fetch=fetcher, recent_capacity=10)
