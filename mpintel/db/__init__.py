"""Database layer for mpintel with async SQLAlchemy."""

from mpintel.db.connection import get_session, init_db
from mpintel.db.models import (
    Base,
    DocumentModel,
    DocumentStatusEventModel,
    LineItemModel,
    MaterialAliasModel,
    MaterialCategoryModel,
    MaterialModel,
    QuoteModel,
    SupplierModel,
)

__all__ = [
    "Base",
    "DocumentModel",
    "DocumentStatusEventModel",
    "QuoteModel",
    "LineItemModel",
    "SupplierModel",
    "MaterialModel",
    "MaterialCategoryModel",
    "MaterialAliasModel",
    "get_session",
    "init_db",
]
