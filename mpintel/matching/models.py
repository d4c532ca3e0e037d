"""Data models for the material matcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass
class CatalogMaterial:
    """Canonical material as seen by the matcher."""

    id: UUID
    canonical_name: str
    category_id: UUID | None = None
    category_name: str | None = None
    unit_of_measure: str | None = None
    synonyms: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)  # Maintainer-confirmed raw descriptions


@dataclass
class CatalogSnapshot:
    """Point-in-time view of the active catalog plus the popularity prior.

    ``popularity`` counts line items already linked to each material; it only
    breaks ties between equally scored candidates.
    """

    materials: list[CatalogMaterial] = field(default_factory=list)
    popularity: dict[UUID, int] = field(default_factory=dict)

    def in_category(self, hint: UUID | str) -> list[CatalogMaterial]:
        """Materials whose category id or name matches the hint."""
        if isinstance(hint, UUID):
            return [m for m in self.materials if m.category_id == hint]
        wanted = str(hint).strip().lower()
        return [
            m
            for m in self.materials
            if (m.category_name or "").lower() == wanted or str(m.category_id) == wanted
        ]


@dataclass(frozen=True)
class MaterialMatch:
    """Accepted match for one description."""

    material_id: UUID
    canonical_name: str
    score: float
    method: str  # "exact" or "fuzzy"
