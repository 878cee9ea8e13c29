"""Generic product page fetcher: name, price and description from plain HTML."""

import logging
import os
import re

import requests
from bs4 import BeautifulSoup

from pricetrack.models import ScrapedPage

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 10.0

PRICE_PATTERN = re.compile(r"\$\s*(\d+(?:\.\d{2})?)")


def _timeout() -> float:
    val = os.environ.get("SCRAPE_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT))
    try:
        return float(val)
    except ValueError:
        logger.warning("Invalid SCRAPE_TIMEOUT_SECONDS=%r, using %s", val, DEFAULT_TIMEOUT)
        return DEFAULT_TIMEOUT


def parse_price(text: str) -> float | None:
    """Extract the first '$12' / '$ 12.99' amount from text."""
    if not text:
        return None
    match = PRICE_PATTERN.search(text)
    return float(match.group(1)) if match else None


def parse_page(url: str, html: str) -> ScrapedPage:
    """Pull name, price and description out of a product page."""
    soup = BeautifulSoup(html, "html.parser")

    name = ""
    h1 = soup.find("h1")
    if h1:
        name = h1.get_text(strip=True)
    if not name and soup.title and soup.title.string:
        name = soup.title.string.strip()

    meta = soup.find("meta", attrs={"name": "description"})
    description = (meta.get("content") or "").strip() if meta else ""

    body = soup.body or soup
    return ScrapedPage(
        url=url,
        name=name or "Unknown Product",
        price=parse_price(body.get_text(" ")),
        description=description,
    )


def fetch_page(url: str) -> ScrapedPage:
    """
    Fetch a product page and extract what we can.

    Never raises for network or HTTP errors: returns ScrapedPage.failed(url).
    """
    headers = {
        "User-Agent": os.environ.get("SCRAPE_USER_AGENT", DEFAULT_USER_AGENT),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    }
    try:
        resp = requests.get(url, headers=headers, timeout=_timeout())
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning("Error scraping %s: %s", url, e)
        return ScrapedPage.failed(url)

    page = parse_page(url, resp.text)
    logger.debug("Scraped %s: %s @ %s", url, page.name[:50], page.price)
    return page
