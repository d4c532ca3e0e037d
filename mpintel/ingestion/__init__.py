"""Quote document ingestion for mpintel.

Stores uploads, runs extraction through the external service and persists
validated draft quotes.
"""

from mpintel.ingestion.extraction import HttpExtractor
from mpintel.ingestion.lifecycle import DocumentLifecycleController
from mpintel.ingestion.storage import InMemoryObjectStorage, LocalObjectStorage
from mpintel.ingestion.suppliers import find_or_create_supplier

__all__ = [
    "DocumentLifecycleController",
    "HttpExtractor",
    "InMemoryObjectStorage",
    "LocalObjectStorage",
    "find_or_create_supplier",
]
