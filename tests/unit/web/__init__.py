"""Unit tests for mpintel web route modules.

One test file per route module:
    tests/unit/web/
    ├── test_routes_documents.py     # Upload, polling, resubmit
    ├── test_routes_quotes.py        # Review, approval, normalization status
    ├── test_routes_prices.py        # Verified price search and summaries
    ├── test_routes_materials.py     # Unmatched lines, manual mapping
    └── test_routes_health.py

Testing pattern:
    - Bare FastAPI app with the routers and error handlers
    - Dependencies overridden with a per-test SQLite database
    - httpx AsyncClient over ASGITransport
"""
