"""mpintel web route modules.

Each module exports a ``router`` (APIRouter instance) that
``mpintel.web.app`` includes. Shared dependencies live in
``mpintel.web.dependencies`` and request/response models in
``mpintel.web.models``.

Usage:
    from mpintel.web.routes import documents
    app.include_router(documents.router)
"""

from mpintel.web.routes import (
    documents,
    health,
    materials,
    prices,
    quotes,
)

__all__ = [
    "documents",
    "health",
    "materials",
    "prices",
    "quotes",
]
