"""Data structures consumed by the review screen and its API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from mpintel.models import ValidationWarning, WarningSeverity


@dataclass(slots=True)
class ReviewSupplier:
    id: UUID
    name: str
    contact_name: str | None
    contact_email: str | None
    contact_phone: str | None


@dataclass(slots=True)
class ReviewLineItem:
    id: UUID
    sort_order: int
    raw_description: str
    line_type: str
    quantity: Decimal | None
    unit: str | None
    unit_price: Decimal | None
    extended_price: Decimal | None
    discount_pct: Decimal | None
    discount_amount: Decimal | None
    line_total: Decimal | None
    effective_unit_price: Decimal | None
    confidence: float | None
    notes: str | None
    material_id: UUID | None
    material_name: str | None
    match_confidence: float | None


@dataclass(slots=True)
class DraftQuoteView:
    quote_id: UUID
    document_id: UUID
    document_status: str
    file_name: str
    org_id: str
    supplier: ReviewSupplier | None
    quote_number: str | None
    quote_date: date | None
    valid_until: date | None
    project_name: str | None
    subtotal: Decimal | None
    delivery_cost: Decimal | None
    tax_amount: Decimal | None
    tax_rate: Decimal | None
    total_amount: Decimal | None
    payment_terms: str | None
    notes: str | None
    confidence_score: float
    verified: bool
    verified_at: datetime | None
    verified_by: str | None
    normalized_at: datetime | None
    line_items: list[ReviewLineItem] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def blocking_warnings(self) -> list[ValidationWarning]:
        return [w for w in self.warnings if w.severity is WarningSeverity.BLOCKING]

    @property
    def is_editable(self) -> bool:
        return not self.verified and self.document_status in ("completed", "review_needed")


@dataclass(slots=True)
class NormalizationStatus:
    quote_id: UUID
    verified: bool
    normalized_at: datetime | None
    material_lines: int
    matched: int

    @property
    def unmatched(self) -> int:
        return self.material_lines - self.matched

    @property
    def complete(self) -> bool:
        return self.normalized_at is not None


@dataclass(slots=True)
class UnmatchedLineItem:
    line_item_id: UUID
    quote_id: UUID
    raw_description: str
    unit: str | None
    effective_unit_price: Decimal | None
    supplier_name: str | None
    quote_date: date | None


@dataclass(slots=True)
class ApprovalOutcome:
    quote_id: UUID
    document_id: UUID
    already_verified: bool
    normalization_enqueued: bool
    verified_at: datetime | None
