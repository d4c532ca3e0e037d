"""Read-only queries over verified material prices.

Every query here is restricted to quotes a human approved
(``verified = true``) and to ``material`` lines. Prices are the
discount-adjusted effective unit price, falling back to the list unit
price for lines stored before effective prices were derived.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mpintel.db.models import (
    LineItemModel,
    MaterialCategoryModel,
    MaterialModel,
    QuoteModel,
    SupplierModel,
)
from mpintel.models import (
    CategoryPriceSummary,
    LineType,
    PricePoint,
    PriceSearchFilters,
    SupplierPriceSummary,
)

_FOUR_PLACES = Decimal("0.0001")

effective_price_expr = func.coalesce(
    LineItemModel.effective_unit_price, LineItemModel.unit_price
)


def _money(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(_FOUR_PLACES)


def _as_date(value) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _verified_material_lines(org_id: str) -> Select:
    return (
        select(
            LineItemModel,
            QuoteModel.quote_date,
            QuoteModel.quote_number,
            QuoteModel.project_name,
            QuoteModel.supplier_id,
            SupplierModel.name.label("supplier_name"),
            MaterialModel.canonical_name,
            MaterialModel.category_id,
        )
        .join(QuoteModel, LineItemModel.quote_id == QuoteModel.id)
        .outerjoin(SupplierModel, QuoteModel.supplier_id == SupplierModel.id)
        .outerjoin(MaterialModel, LineItemModel.material_id == MaterialModel.id)
        .where(
            QuoteModel.org_id == org_id,
            QuoteModel.verified.is_(True),
            LineItemModel.line_type == LineType.MATERIAL.value,
            effective_price_expr.is_not(None),
        )
    )


def _to_price_point(row) -> PricePoint:
    line = row.LineItemModel
    return PricePoint(
        line_item_id=line.id,
        quote_id=line.quote_id,
        raw_description=line.raw_description,
        quantity=line.quantity,
        unit=line.unit,
        unit_price=line.unit_price,
        effective_unit_price=(
            line.effective_unit_price
            if line.effective_unit_price is not None
            else line.unit_price
        ),
        line_total=line.line_total,
        quote_date=row.quote_date,
        quote_number=row.quote_number,
        project_name=row.project_name,
        supplier_id=row.supplier_id,
        supplier_name=row.supplier_name,
        material_id=line.material_id,
        canonical_name=row.canonical_name,
        category_id=row.category_id,
    )


async def search_verified_prices(
    session: AsyncSession, org_id: str, filters: PriceSearchFilters | None = None
) -> list[PricePoint]:
    """Verified material line prices matching the filters, newest quotes first."""
    filters = filters or PriceSearchFilters()
    stmt = _verified_material_lines(org_id)

    if filters.material_id is not None:
        stmt = stmt.where(LineItemModel.material_id == filters.material_id)
    if filters.category_id is not None:
        stmt = stmt.where(MaterialModel.category_id == filters.category_id)
    if filters.supplier_id is not None:
        stmt = stmt.where(QuoteModel.supplier_id == filters.supplier_id)
    if filters.matched_only:
        stmt = stmt.where(LineItemModel.material_id.is_not(None))
    if filters.date_from is not None:
        stmt = stmt.where(QuoteModel.quote_date >= filters.date_from)
    if filters.date_to is not None:
        stmt = stmt.where(QuoteModel.quote_date <= filters.date_to)
    if filters.query:
        pattern = f"%{filters.query.strip()}%"
        stmt = stmt.where(
            or_(
                LineItemModel.raw_description.ilike(pattern),
                MaterialModel.canonical_name.ilike(pattern),
            )
        )

    stmt = stmt.order_by(
        QuoteModel.quote_date.desc().nulls_last(), LineItemModel.id
    ).limit(filters.limit)

    rows = (await session.execute(stmt)).all()
    return [_to_price_point(row) for row in rows]


async def price_history(
    session: AsyncSession, org_id: str, material_id: UUID
) -> list[PricePoint]:
    """Every verified price of one material, oldest quote first."""
    stmt = (
        _verified_material_lines(org_id)
        .where(LineItemModel.material_id == material_id)
        .order_by(QuoteModel.quote_date.asc().nulls_first(), LineItemModel.id)
    )
    rows = (await session.execute(stmt)).all()
    return [_to_price_point(row) for row in rows]


async def supplier_price_summary(
    session: AsyncSession, org_id: str, material_id: UUID | None = None
) -> list[SupplierPriceSummary]:
    """Min/max/avg effective price per supplier over matched verified lines."""
    stmt = (
        select(
            QuoteModel.supplier_id,
            SupplierModel.name,
            func.count(LineItemModel.id),
            func.min(effective_price_expr),
            func.max(effective_price_expr),
            func.avg(effective_price_expr),
            func.max(QuoteModel.quote_date),
        )
        .join(QuoteModel, LineItemModel.quote_id == QuoteModel.id)
        .outerjoin(SupplierModel, QuoteModel.supplier_id == SupplierModel.id)
        .where(
            QuoteModel.org_id == org_id,
            QuoteModel.verified.is_(True),
            LineItemModel.line_type == LineType.MATERIAL.value,
            LineItemModel.material_id.is_not(None),
            effective_price_expr.is_not(None),
        )
        .group_by(QuoteModel.supplier_id, SupplierModel.name)
        .order_by(func.avg(effective_price_expr).asc(), SupplierModel.name)
    )
    if material_id is not None:
        stmt = stmt.where(LineItemModel.material_id == material_id)

    rows = (await session.execute(stmt)).all()
    return [
        SupplierPriceSummary(
            supplier_id=supplier_id,
            supplier_name=name,
            material_id=material_id,
            line_count=count,
            min_price=_money(min_price),
            max_price=_money(max_price),
            avg_price=_money(avg_price),
            latest_quote_date=_as_date(latest),
        )
        for supplier_id, name, count, min_price, max_price, avg_price, latest in rows
    ]


async def category_price_summary(
    session: AsyncSession, org_id: str
) -> list[CategoryPriceSummary]:
    """Verified matched lines rolled up per material category."""
    stmt = (
        select(
            MaterialModel.category_id,
            MaterialCategoryModel.name,
            func.count(func.distinct(MaterialModel.id)),
            func.count(LineItemModel.id),
            func.avg(effective_price_expr),
            func.max(QuoteModel.quote_date),
        )
        .join(QuoteModel, LineItemModel.quote_id == QuoteModel.id)
        .join(MaterialModel, LineItemModel.material_id == MaterialModel.id)
        .outerjoin(
            MaterialCategoryModel, MaterialModel.category_id == MaterialCategoryModel.id
        )
        .where(
            QuoteModel.org_id == org_id,
            QuoteModel.verified.is_(True),
            LineItemModel.line_type == LineType.MATERIAL.value,
            effective_price_expr.is_not(None),
        )
        .group_by(
            MaterialModel.category_id,
            MaterialCategoryModel.name,
            MaterialCategoryModel.sort_order,
        )
        .order_by(MaterialCategoryModel.sort_order, MaterialCategoryModel.name)
    )
    rows = (await session.execute(stmt)).all()
    return [
        CategoryPriceSummary(
            category_id=category_id,
            category_name=name,
            material_count=materials,
            line_count=lines,
            avg_price=_money(avg_price),
            latest_quote_date=_as_date(latest),
        )
        for category_id, name, materials, lines, avg_price, latest in rows
    ]
