"""SQLAlchemy async database models for mpintel.

Documents, quotes and line items are owned by the ingestion pipeline;
materials, categories and suppliers are reference data read (and, for
suppliers, created) by it.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

DOCUMENT_STATUSES = (
    "pending",
    "processing",
    "completed",
    "review_needed",
    "approved",
    "failed",
)
LINE_TYPES = ("material", "discount", "fee", "subtotal_line", "note")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class SupplierModel(Base):
    """Supplier resolved or created during extraction."""

    __tablename__ = "suppliers"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    org_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_name: Mapped[str | None] = mapped_column(Text)
    contact_email: Mapped[str | None] = mapped_column(Text)
    contact_phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("org_id", "normalized_name", name="uq_suppliers_org_name"),
    )


class MaterialCategoryModel(Base):
    """Material category (lumber, hardware, roofing, ...)."""

    __tablename__ = "material_categories"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class MaterialModel(Base):
    """Canonical catalog entry. Curated outside this pipeline."""

    __tablename__ = "materials"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    org_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    category_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("material_categories.id"), index=True
    )
    canonical_name: Mapped[str] = mapped_column(Text, nullable=False)
    unit_of_measure: Mapped[str | None] = mapped_column(Text)
    synonyms: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    category: Mapped[MaterialCategoryModel | None] = relationship()
    aliases: Mapped[list[MaterialAliasModel]] = relationship(
        back_populates="material", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("org_id", "canonical_name", name="uq_materials_org_name"),
    )


class MaterialAliasModel(Base):
    """Raw description confirmed by a catalog maintainer for a material."""

    __tablename__ = "material_aliases"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    material_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    alias: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_alias: Mapped[str] = mapped_column(Text, nullable=False)
    source_quote_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    created_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    material: Mapped[MaterialModel] = relationship(back_populates="aliases")

    __table_args__ = (
        UniqueConstraint(
            "material_id", "normalized_alias", name="uq_material_aliases_alias"
        ),
    )


class DocumentModel(Base):
    """Uploaded source file and its processing status."""

    __tablename__ = "documents"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    org_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)  # Storage locator
    file_type: Mapped[str] = mapped_column(Text, nullable=False)  # e.g. "application/pdf"
    file_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", index=True)
    error_message: Mapped[str | None] = mapped_column(Text)

    # Weak reference; the owning FK lives on quotes.document_id
    quote_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), index=True)
    resubmitted_from_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    uploaded_by: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    events: Mapped[list[DocumentStatusEventModel]] = relationship(
        back_populates="document",
        order_by="DocumentStatusEventModel.sequence",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", DOCUMENT_STATUSES), name="ck_documents_status"),
        Index("idx_documents_status_started", "status", "started_at"),
    )


class DocumentStatusEventModel(Base):
    """Append-only record of every document status transition."""

    __tablename__ = "document_status_events"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str | None] = mapped_column(Text)
    to_status: Mapped[str] = mapped_column(Text, nullable=False)
    detail: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    document: Mapped[DocumentModel] = relationship(back_populates="events")

    __table_args__ = (
        UniqueConstraint("document_id", "sequence", name="uq_document_events_sequence"),
    )


class QuoteModel(Base):
    """Structured result of extracting one document."""

    __tablename__ = "quotes"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    org_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    document_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("documents.id"), nullable=False, unique=True
    )
    supplier_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id"), index=True
    )

    quote_number: Mapped[str | None] = mapped_column(Text)
    quote_date: Mapped[date | None] = mapped_column(Date, index=True)
    valid_until: Mapped[date | None] = mapped_column(Date)
    project_name: Mapped[str | None] = mapped_column(Text)

    subtotal: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    delivery_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    payment_terms: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # Extraction payload, per-field confidences and validation warnings
    raw_extraction: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    verified_by: Mapped[str | None] = mapped_column(Text)
    normalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )

    document: Mapped[DocumentModel] = relationship()
    supplier: Mapped[SupplierModel | None] = relationship()
    line_items: Mapped[list[LineItemModel]] = relationship(
        back_populates="quote",
        order_by="LineItemModel.sort_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_quotes_confidence_range",
        ),
    )


class LineItemModel(Base):
    """One row of a quote."""

    __tablename__ = "line_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    quote_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    material_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("materials.id"), index=True
    )

    raw_description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    unit: Mapped[str | None] = mapped_column(Text)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    extended_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    discount_pct: Mapped[Decimal | None] = mapped_column(Numeric(7, 4))
    discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    line_total: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    line_type: Mapped[str] = mapped_column(Text, nullable=False, default="material")
    effective_unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    notes: Mapped[str | None] = mapped_column(Text)

    confidence: Mapped[float | None] = mapped_column(Float)  # Extraction confidence
    match_confidence: Mapped[float | None] = mapped_column(Float)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    matched_by: Mapped[str | None] = mapped_column(Text)  # Set for reviewer links
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    quote: Mapped[QuoteModel] = relationship(back_populates="line_items")
    material: Mapped[MaterialModel | None] = relationship()

    __table_args__ = (
        CheckConstraint(_in_clause("line_type", LINE_TYPES), name="ck_line_items_type"),
        CheckConstraint(
            "effective_unit_price IS NULL OR "
            "(line_type = 'material' AND unit_price IS NOT NULL)",
            name="ck_line_items_effective_price_domain",
        ),
        CheckConstraint(
            "material_id IS NULL OR line_type = 'material'",
            name="ck_line_items_material_only",
        ),
        CheckConstraint("quantity IS NULL OR quantity >= 0", name="ck_line_items_quantity"),
        CheckConstraint(
            "unit_price IS NULL OR unit_price >= 0", name="ck_line_items_unit_price"
        ),
        CheckConstraint(
            "discount_pct IS NULL OR (discount_pct >= 0 AND discount_pct <= 100)",
            name="ck_line_items_discount_pct",
        ),
        Index("idx_line_items_type_material", "line_type", "material_id"),
    )
