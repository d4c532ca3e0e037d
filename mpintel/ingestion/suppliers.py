"""Supplier resolution for extracted quotes."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mpintel.db.models import SupplierModel
from mpintel.models import ExtractedSupplier

logger = logging.getLogger(__name__)


def normalize_supplier_name(name: str) -> str:
    return " ".join(name.split()).lower()


async def _lookup(session: AsyncSession, org_id: str, normalized: str) -> SupplierModel | None:
    return await session.scalar(
        select(SupplierModel).where(
            SupplierModel.org_id == org_id,
            SupplierModel.normalized_name == normalized,
        )
    )


async def find_or_create_supplier(
    session: AsyncSession, org_id: str, supplier: ExtractedSupplier
) -> SupplierModel:
    """Return the org's supplier with this name, creating it when missing.

    Two extractions for a new supplier can race; the loser's insert fails
    the unique constraint inside a savepoint and it re-reads the winner's row.
    """
    normalized = normalize_supplier_name(supplier.name)

    existing = await _lookup(session, org_id, normalized)
    if existing is not None:
        return existing

    model = SupplierModel(
        org_id=org_id,
        name=supplier.name,
        normalized_name=normalized,
        contact_name=supplier.contact_name,
        contact_email=supplier.contact_email,
        contact_phone=supplier.contact_phone,
        address=supplier.address,
    )
    try:
        async with session.begin_nested():
            session.add(model)
    except IntegrityError:
        winner = await _lookup(session, org_id, normalized)
        if winner is None:
            raise
        logger.info("Supplier '%s' created concurrently; using existing row", normalized)
        return winner

    logger.info("Created supplier '%s' for org %s", supplier.name, org_id)
    return model
