"""mpintel Pydantic models for type-safe data validation.

The extraction service speaks loosely-typed JSON; everything it returns is
validated into ``ExtractionResult`` here before it reaches the lifecycle
controller. Review commands and query filters are modelled the same way.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DocumentStatus(str, Enum):
    """Document lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REVIEW_NEEDED = "review_needed"
    APPROVED = "approved"
    FAILED = "failed"


class LineType(str, Enum):
    """Kind of row on a supplier quote."""

    MATERIAL = "material"
    DISCOUNT = "discount"
    FEE = "fee"
    SUBTOTAL_LINE = "subtotal_line"
    NOTE = "note"


class WarningSeverity(str, Enum):
    """Validation warning severity levels."""

    BLOCKING = "blocking"  # Forces human review regardless of confidence
    ADVISORY = "advisory"  # Lowers confidence only


class ValidationVerdict(str, Enum):
    CLEAN = "clean"
    NEEDS_REVIEW = "needs_review"


class ValidationWarning(BaseModel):
    """One failed consistency check on an extracted quote."""

    check: str
    message: str
    severity: WarningSeverity = WarningSeverity.ADVISORY
    expected: Decimal | None = None
    actual: Decimal | None = None
    line_index: int | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "check": "totals_reconciliation",
                "message": "subtotal 1000.00 + delivery 50.00 + tax 70.00 = 1120.00, stated total is 1130.00",
                "severity": "blocking",
                "expected": "1120.00",
                "actual": "1130.00",
            }
        }
    )


def _lenient_date(value: Any) -> Any:
    """Turn unparseable date strings into None instead of failing the payload."""
    if value is None or isinstance(value, (date, datetime)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


class ExtractedSupplier(BaseModel):
    """Supplier block as reported by the extraction service."""

    name: str
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    address: str | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class ExtractedLineItem(BaseModel):
    """One extracted quote row."""

    raw_description: str
    quantity: Decimal | None = Field(default=None, ge=0)
    unit: str | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)
    extended_price: Decimal | None = None
    discount_pct: Decimal | None = Field(default=None, ge=0, le=100)
    discount_amount: Decimal | None = Field(default=None, ge=0)
    line_total: Decimal | None = None
    line_type: LineType = LineType.MATERIAL
    notes: str | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class ExtractedTotals(BaseModel):
    subtotal: Decimal | None = None
    delivery_cost: Decimal | None = None
    tax_amount: Decimal | None = None
    tax_rate: Decimal | None = None  # decimal fraction, 0.07 for 7%
    total_amount: Decimal | None = None


class ExtractionResult(BaseModel):
    """Strictly-typed extraction payload (validated at the service boundary)."""

    supplier: ExtractedSupplier | None = None
    quote_number: str | None = None
    quote_date: date | None = None
    valid_until: date | None = None
    project_name: str | None = None
    payment_terms: str | None = None
    notes: str | None = None
    line_items: list[ExtractedLineItem] = Field(default_factory=list)
    totals: ExtractedTotals = Field(default_factory=ExtractedTotals)
    overall_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    field_confidences: dict[str, float] = Field(default_factory=dict)
    extraction_notes: str | None = None

    @field_validator("quote_date", "valid_until", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return _lenient_date(v)

    @field_validator("field_confidences")
    @classmethod
    def validate_field_confidences(cls, v: dict[str, float]) -> dict[str, float]:
        for name, value in v.items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"confidence for '{name}' must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def drop_blank_supplier(self) -> ExtractionResult:
        if self.supplier is not None and not self.supplier.name:
            self.supplier = None
        return self


class LineItemEdit(BaseModel):
    """A line item as submitted from the review screen.

    Rows carrying an ``id`` update the existing line; rows without one are
    inserted. Existing lines absent from the submission are removed.
    """

    id: UUID | None = None
    raw_description: str
    quantity: Decimal | None = Field(default=None, ge=0)
    unit: str | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)
    extended_price: Decimal | None = None
    discount_pct: Decimal | None = Field(default=None, ge=0, le=100)
    discount_amount: Decimal | None = Field(default=None, ge=0)
    line_total: Decimal | None = None
    line_type: LineType = LineType.MATERIAL
    notes: str | None = None


class QuoteReviewUpdate(BaseModel):
    """Reviewer edits. Only fields explicitly present are applied."""

    quote_number: str | None = None
    quote_date: date | None = None
    valid_until: date | None = None
    project_name: str | None = None
    payment_terms: str | None = None
    notes: str | None = None
    subtotal: Decimal | None = None
    delivery_cost: Decimal | None = None
    tax_amount: Decimal | None = None
    tax_rate: Decimal | None = None
    total_amount: Decimal | None = None
    line_items: list[LineItemEdit] | None = None

    model_config = ConfigDict(extra="forbid")

    def quote_fields(self) -> dict[str, Any]:
        """Scalar quote fields explicitly set by the reviewer."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "line_items"
        }


class PriceSearchFilters(BaseModel):
    """Filters for verified price search."""

    material_id: UUID | None = None
    category_id: UUID | None = None
    supplier_id: UUID | None = None
    query: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    matched_only: bool = False
    limit: int = Field(default=200, ge=1, le=1000)


class PricePoint(BaseModel):
    """A verified material price row as exposed to analytics."""

    line_item_id: UUID
    quote_id: UUID
    raw_description: str
    quantity: Decimal | None = None
    unit: str | None = None
    unit_price: Decimal | None = None
    effective_unit_price: Decimal | None = None
    line_total: Decimal | None = None
    quote_date: date | None = None
    quote_number: str | None = None
    project_name: str | None = None
    supplier_id: UUID | None = None
    supplier_name: str | None = None
    material_id: UUID | None = None
    canonical_name: str | None = None
    category_id: UUID | None = None


class SupplierPriceSummary(BaseModel):
    """Effective price spread for one supplier (optionally one material)."""

    supplier_id: UUID | None = None
    supplier_name: str | None = None
    material_id: UUID | None = None
    line_count: int
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    avg_price: Decimal | None = None
    latest_quote_date: date | None = None


class CategoryPriceSummary(BaseModel):
    """Verified material pricing rolled up per category."""

    category_id: UUID | None = None
    category_name: str | None = None
    material_count: int
    line_count: int
    avg_price: Decimal | None = None
    latest_quote_date: date | None = None
