"""Reporting module for mpintel.

Read-only price queries over human-verified quotes.
"""

from mpintel.reporting.price_queries import (
    category_price_summary,
    price_history,
    search_verified_prices,
    supplier_price_summary,
)

__all__ = [
    "search_verified_prices",
    "price_history",
    "supplier_price_summary",
    "category_price_summary",
]
