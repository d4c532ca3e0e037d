"""Verified price search and summary routes."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mpintel.models import (
    CategoryPriceSummary,
    PricePoint,
    PriceSearchFilters,
    SupplierPriceSummary,
)
from mpintel.reporting.price_queries import (
    category_price_summary,
    price_history,
    search_verified_prices,
    supplier_price_summary,
)
from mpintel.web.dependencies import get_db, get_org_id

router = APIRouter(prefix="/prices", tags=["prices"])


@router.get("/search", response_model=list[PricePoint])
async def search_prices(
    q: str | None = Query(default=None, description="Description or material name"),
    material_id: UUID | None = None,
    category_id: UUID | None = None,
    supplier_id: UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    matched_only: bool = False,
    limit: int = Query(default=200, ge=1, le=1000),
    org_id: str = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    filters = PriceSearchFilters(
        query=q,
        material_id=material_id,
        category_id=category_id,
        supplier_id=supplier_id,
        date_from=date_from,
        date_to=date_to,
        matched_only=matched_only,
        limit=limit,
    )
    return await search_verified_prices(db, org_id, filters)


@router.get("/history/{material_id}", response_model=list[PricePoint])
async def material_price_history(
    material_id: UUID,
    org_id: str = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    return await price_history(db, org_id, material_id)


@router.get("/suppliers", response_model=list[SupplierPriceSummary])
async def supplier_summary(
    material_id: UUID | None = None,
    org_id: str = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Compare suppliers on verified prices, cheapest average first."""
    return await supplier_price_summary(db, org_id, material_id)


@router.get("/categories", response_model=list[CategoryPriceSummary])
async def category_summary(
    org_id: str = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    return await category_price_summary(db, org_id)
