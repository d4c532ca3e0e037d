"""Catalog readers for the material matcher.

The matcher never queries the database itself; it asks a ``CatalogReader``
for a snapshot. Production uses ``DatabaseCatalogReader``, tests and
offline tools use ``InMemoryCatalog``.
"""

from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mpintel.db.models import (
    LineItemModel,
    MaterialAliasModel,
    MaterialCategoryModel,
    MaterialModel,
)
from mpintel.matching.models import CatalogMaterial, CatalogSnapshot

logger = logging.getLogger(__name__)


class CatalogReader(Protocol):
    """Source of catalog snapshots."""

    async def load_snapshot(self) -> CatalogSnapshot: ...


class InMemoryCatalog:
    """Fixed catalog held in memory."""

    def __init__(
        self,
        materials: list[CatalogMaterial],
        popularity: dict[UUID, int] | None = None,
    ):
        self._snapshot = CatalogSnapshot(
            materials=list(materials), popularity=dict(popularity or {})
        )

    async def load_snapshot(self) -> CatalogSnapshot:
        return self._snapshot


class DatabaseCatalogReader:
    """Reads active materials, aliases and link counts for one org."""

    def __init__(self, session: AsyncSession, org_id: str):
        self.session = session
        self.org_id = org_id

    async def load_snapshot(self) -> CatalogSnapshot:
        stmt = (
            select(MaterialModel, MaterialCategoryModel.name)
            .outerjoin(
                MaterialCategoryModel,
                MaterialModel.category_id == MaterialCategoryModel.id,
            )
            .where(
                MaterialModel.org_id == self.org_id,
                MaterialModel.is_active.is_(True),
            )
            .order_by(MaterialModel.canonical_name)
        )
        rows = (await self.session.execute(stmt)).all()

        materials: dict[UUID, CatalogMaterial] = {}
        for material, category_name in rows:
            materials[material.id] = CatalogMaterial(
                id=material.id,
                canonical_name=material.canonical_name,
                category_id=material.category_id,
                category_name=category_name,
                unit_of_measure=material.unit_of_measure,
                synonyms=list(material.synonyms or []),
            )

        if materials:
            alias_rows = await self.session.execute(
                select(MaterialAliasModel.material_id, MaterialAliasModel.alias).where(
                    MaterialAliasModel.material_id.in_(list(materials))
                )
            )
            for material_id, alias in alias_rows:
                materials[material_id].aliases.append(alias)

        popularity_rows = await self.session.execute(
            select(LineItemModel.material_id, func.count(LineItemModel.id))
            .where(LineItemModel.material_id.is_not(None))
            .group_by(LineItemModel.material_id)
        )
        popularity = {
            material_id: count
            for material_id, count in popularity_rows
            if material_id in materials
        }

        logger.debug(
            "Loaded catalog snapshot: %d materials, %d with usage",
            len(materials),
            len(popularity),
        )
        return CatalogSnapshot(materials=list(materials.values()), popularity=popularity)
