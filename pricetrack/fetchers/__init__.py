"""Fetchers for product data from web pages."""

from pricetrack.fetchers.page import fetch_page, parse_page, parse_price

__all__ = ["fetch_page", "parse_page", "parse_price"]
