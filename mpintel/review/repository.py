"""Database queries for the review workflow."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mpintel.db.models import (
    LineItemModel,
    MaterialModel,
    QuoteModel,
    SupplierModel,
)
from mpintel.exceptions import QuoteNotFoundError
from mpintel.models import LineType, ValidationWarning
from mpintel.review.models import (
    DraftQuoteView,
    NormalizationStatus,
    ReviewLineItem,
    ReviewSupplier,
    UnmatchedLineItem,
)


def stored_warnings(quote: QuoteModel) -> list[ValidationWarning]:
    """Warnings recorded by the last validation run."""
    raw = (quote.raw_extraction or {}).get("validation") or {}
    return [ValidationWarning.model_validate(w) for w in raw.get("warnings", [])]


async def fetch_draft_quote(session: AsyncSession, quote_id: UUID) -> DraftQuoteView:
    """Quote, supplier, line items and stored warnings for review.

    Raises:
        QuoteNotFoundError: If the quote does not exist
    """
    quote = await session.scalar(
        select(QuoteModel)
        .options(
            selectinload(QuoteModel.line_items).selectinload(LineItemModel.material),
            selectinload(QuoteModel.supplier),
            selectinload(QuoteModel.document),
        )
        .where(QuoteModel.id == quote_id)
    )
    if quote is None:
        raise QuoteNotFoundError(quote_id)

    supplier = None
    if quote.supplier is not None:
        supplier = ReviewSupplier(
            id=quote.supplier.id,
            name=quote.supplier.name,
            contact_name=quote.supplier.contact_name,
            contact_email=quote.supplier.contact_email,
            contact_phone=quote.supplier.contact_phone,
        )

    return DraftQuoteView(
        quote_id=quote.id,
        document_id=quote.document_id,
        document_status=quote.document.status,
        file_name=quote.document.file_name,
        org_id=quote.org_id,
        supplier=supplier,
        quote_number=quote.quote_number,
        quote_date=quote.quote_date,
        valid_until=quote.valid_until,
        project_name=quote.project_name,
        subtotal=quote.subtotal,
        delivery_cost=quote.delivery_cost,
        tax_amount=quote.tax_amount,
        tax_rate=quote.tax_rate,
        total_amount=quote.total_amount,
        payment_terms=quote.payment_terms,
        notes=quote.notes,
        confidence_score=quote.confidence_score,
        verified=quote.verified,
        verified_at=quote.verified_at,
        verified_by=quote.verified_by,
        normalized_at=quote.normalized_at,
        line_items=[
            ReviewLineItem(
                id=line.id,
                sort_order=line.sort_order,
                raw_description=line.raw_description,
                line_type=line.line_type,
                quantity=line.quantity,
                unit=line.unit,
                unit_price=line.unit_price,
                extended_price=line.extended_price,
                discount_pct=line.discount_pct,
                discount_amount=line.discount_amount,
                line_total=line.line_total,
                effective_unit_price=line.effective_unit_price,
                confidence=line.confidence,
                notes=line.notes,
                material_id=line.material_id,
                material_name=line.material.canonical_name if line.material else None,
                match_confidence=line.match_confidence,
            )
            for line in quote.line_items
        ],
        warnings=stored_warnings(quote),
    )


async def get_normalization_status(
    session: AsyncSession, quote_id: UUID
) -> NormalizationStatus:
    """Matched/unmatched counts over a quote's material lines."""
    quote = await session.get(QuoteModel, quote_id)
    if quote is None:
        raise QuoteNotFoundError(quote_id)

    row = (
        await session.execute(
            select(
                func.count(LineItemModel.id),
                func.count(LineItemModel.material_id),
            ).where(
                LineItemModel.quote_id == quote_id,
                LineItemModel.line_type == LineType.MATERIAL.value,
            )
        )
    ).one()

    return NormalizationStatus(
        quote_id=quote.id,
        verified=quote.verified,
        normalized_at=quote.normalized_at,
        material_lines=row[0],
        matched=row[1],
    )


async def fetch_unmatched_line_items(
    session: AsyncSession, org_id: str, limit: int = 100
) -> list[UnmatchedLineItem]:
    """Verified, normalized material lines the matcher could not link."""
    stmt = (
        select(LineItemModel, QuoteModel, SupplierModel.name)
        .join(QuoteModel, LineItemModel.quote_id == QuoteModel.id)
        .outerjoin(SupplierModel, QuoteModel.supplier_id == SupplierModel.id)
        .where(
            QuoteModel.org_id == org_id,
            QuoteModel.verified.is_(True),
            QuoteModel.normalized_at.is_not(None),
            LineItemModel.line_type == LineType.MATERIAL.value,
            LineItemModel.material_id.is_(None),
        )
        .order_by(QuoteModel.quote_date.desc(), LineItemModel.raw_description)
        .limit(limit)
    )
    rows = (await session.execute(stmt)).all()
    return [
        UnmatchedLineItem(
            line_item_id=line.id,
            quote_id=quote.id,
            raw_description=line.raw_description,
            unit=line.unit,
            effective_unit_price=line.effective_unit_price,
            supplier_name=supplier_name,
            quote_date=quote.quote_date,
        )
        for line, quote, supplier_name in rows
    ]


async def fetch_active_material(
    session: AsyncSession, org_id: str, material_id: UUID
) -> MaterialModel | None:
    return await session.scalar(
        select(MaterialModel).where(
            MaterialModel.id == material_id,
            MaterialModel.org_id == org_id,
            MaterialModel.is_active.is_(True),
        )
    )

