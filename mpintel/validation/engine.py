"""Arithmetic validation and confidence gating for extracted quotes.

``validate`` is a pure function: it inspects a quote draft and its line
items, returns the warnings it found, the adjusted overall confidence and
the routing verdict. Nothing here touches the database.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from mpintel.config import ValidationConfig, get_config
from mpintel.models import (
    ExtractionResult,
    LineType,
    ValidationVerdict,
    ValidationWarning,
    WarningSeverity,
)

_CENTS = Decimal("0.01")
_UNPRICED_LINE_TYPES = (LineType.SUBTOTAL_LINE, LineType.NOTE)


class LineLike(Protocol):
    """Attributes the engine reads from a line item (extracted or stored)."""

    raw_description: str
    quantity: Decimal | None
    unit_price: Decimal | None
    extended_price: Decimal | None
    discount_pct: Decimal | None
    discount_amount: Decimal | None
    line_total: Decimal | None
    line_type: Any
    confidence: float | None


@dataclass
class QuoteDraft:
    """Quote-level values the checks need."""

    has_supplier: bool
    subtotal: Decimal | None = None
    delivery_cost: Decimal | None = None
    tax_amount: Decimal | None = None
    tax_rate: Decimal | None = None
    total_amount: Decimal | None = None
    overall_confidence: float = 1.0
    field_confidences: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_extraction(cls, result: ExtractionResult) -> QuoteDraft:
        totals = result.totals
        return cls(
            has_supplier=result.supplier is not None,
            subtotal=totals.subtotal,
            delivery_cost=totals.delivery_cost,
            tax_amount=totals.tax_amount,
            tax_rate=totals.tax_rate,
            total_amount=totals.total_amount,
            overall_confidence=result.overall_confidence,
            field_confidences=dict(result.field_confidences),
        )

    @classmethod
    def from_quote(cls, quote: Any) -> QuoteDraft:
        """Build from a stored ``QuoteModel``; reported confidences come from raw_extraction."""
        raw = quote.raw_extraction or {}
        return cls(
            has_supplier=quote.supplier_id is not None,
            subtotal=quote.subtotal,
            delivery_cost=quote.delivery_cost,
            tax_amount=quote.tax_amount,
            tax_rate=quote.tax_rate,
            total_amount=quote.total_amount,
            overall_confidence=float(raw.get("overall_confidence", 1.0)),
            field_confidences={
                k: float(v) for k, v in (raw.get("field_confidences") or {}).items()
            },
        )


@dataclass
class ValidationResult:
    warnings: list[ValidationWarning]
    overall_confidence: float
    verdict: ValidationVerdict

    @property
    def is_clean(self) -> bool:
        return self.verdict is ValidationVerdict.CLEAN

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe form stored under ``raw_extraction["validation"]``."""
        return {
            "warnings": [w.model_dump(mode="json") for w in self.warnings],
            "overall_confidence": self.overall_confidence,
            "verdict": self.verdict.value,
        }


def _q(value: Decimal) -> Decimal:
    return value.quantize(_CENTS)


def _line_type(line: LineLike) -> LineType:
    return LineType(line.line_type)


def _line_discount(line: LineLike, gross: Decimal) -> Decimal:
    if line.discount_pct is not None and line.discount_pct > 0:
        return gross * line.discount_pct / Decimal("100")
    if line.discount_amount is not None and line.discount_amount > 0:
        return line.discount_amount
    return Decimal("0")


def _line_tolerance(expected: Decimal, config: ValidationConfig) -> Decimal:
    return max(abs(expected) * config.line_relative_tolerance, config.line_absolute_tolerance)


def _check_lines(
    line_items: Sequence[LineLike], config: ValidationConfig
) -> list[ValidationWarning]:
    warnings: list[ValidationWarning] = []

    for i, line in enumerate(line_items):
        line_type = _line_type(line)

        if (
            line.quantity is not None
            and line.unit_price is not None
            and line.extended_price is not None
        ):
            expected = line.quantity * line.unit_price
            if abs(expected - line.extended_price) > _line_tolerance(expected, config):
                warnings.append(
                    ValidationWarning(
                        check="extended_price",
                        message=(
                            f"Line {i + 1}: {line.quantity} x {line.unit_price} = "
                            f"{_q(expected)}, stated extended price is {line.extended_price}"
                        ),
                        expected=_q(expected),
                        actual=line.extended_price,
                        line_index=i,
                    )
                )

        if line_type is LineType.MATERIAL:
            if line.unit_price is None:
                warnings.append(
                    ValidationWarning(
                        check="material_missing_price",
                        message=f"Line {i + 1}: material line has no unit price",
                        line_index=i,
                    )
                )
            elif line.quantity is not None and line.line_total is not None:
                gross = line.quantity * line.unit_price
                expected = gross - _line_discount(line, gross)
                if abs(expected - line.line_total) > _line_tolerance(expected, config):
                    warnings.append(
                        ValidationWarning(
                            check="line_arithmetic",
                            message=(
                                f"Line {i + 1}: {line.quantity} x {line.unit_price} "
                                f"less discount = {_q(expected)}, stated line total is "
                                f"{line.line_total}"
                            ),
                            severity=WarningSeverity.BLOCKING,
                            expected=_q(expected),
                            actual=line.line_total,
                            line_index=i,
                        )
                    )

        if (
            line_type is LineType.DISCOUNT
            and line.line_total is None
            and line.discount_amount is None
            and line.discount_pct is None
        ):
            warnings.append(
                ValidationWarning(
                    check="discount_without_amount",
                    message=f"Line {i + 1}: discount line carries no amount or percentage",
                    line_index=i,
                )
            )

        if line.confidence is not None and line.confidence < config.low_line_confidence:
            warnings.append(
                ValidationWarning(
                    check="low_line_confidence",
                    message=(
                        f"Line {i + 1}: extraction confidence {line.confidence:.2f} "
                        f"is below {config.low_line_confidence:.2f}"
                    ),
                    line_index=i,
                )
            )

    return warnings


def _check_subtotal(
    draft: QuoteDraft, line_items: Sequence[LineLike], config: ValidationConfig
) -> list[ValidationWarning]:
    if draft.subtotal is None:
        return []

    material_totals = [
        line.line_total
        for line in line_items
        if _line_type(line) is LineType.MATERIAL and line.line_total is not None
    ]
    if not material_totals:
        return []

    material_sum = sum(material_totals, Decimal("0"))
    tolerance = config.totals_absolute_tolerance
    if abs(material_sum - draft.subtotal) <= tolerance:
        return []

    # Fees and discount lines are often folded into the stated subtotal
    priced_sum = sum(
        (
            line.line_total
            for line in line_items
            if _line_type(line) not in _UNPRICED_LINE_TYPES and line.line_total is not None
        ),
        Decimal("0"),
    )
    if abs(priced_sum - draft.subtotal) <= tolerance:
        return []

    return [
        ValidationWarning(
            check="subtotal_reconciliation",
            message=(
                f"Sum of material line totals is {_q(material_sum)}, "
                f"stated subtotal is {draft.subtotal}"
            ),
            severity=WarningSeverity.BLOCKING,
            expected=_q(material_sum),
            actual=draft.subtotal,
        )
    ]


def _check_totals(draft: QuoteDraft, config: ValidationConfig) -> list[ValidationWarning]:
    warnings: list[ValidationWarning] = []

    parts = (draft.subtotal, draft.delivery_cost, draft.tax_amount, draft.total_amount)
    if all(p is not None for p in parts):
        expected = draft.subtotal + draft.delivery_cost + draft.tax_amount
        if abs(expected - draft.total_amount) > config.totals_absolute_tolerance:
            warnings.append(
                ValidationWarning(
                    check="totals_reconciliation",
                    message=(
                        f"subtotal {draft.subtotal} + delivery {draft.delivery_cost} + "
                        f"tax {draft.tax_amount} = {_q(expected)}, "
                        f"stated total is {draft.total_amount}"
                    ),
                    severity=WarningSeverity.BLOCKING,
                    expected=_q(expected),
                    actual=draft.total_amount,
                )
            )

    if (
        draft.tax_amount is not None
        and draft.tax_rate is not None
        and draft.subtotal is not None
        and draft.subtotal > 0
    ):
        implied = draft.tax_amount / draft.subtotal
        if abs(implied - draft.tax_rate) > config.tax_rate_tolerance:
            warnings.append(
                ValidationWarning(
                    check="tax_rate",
                    message=(
                        f"Tax {draft.tax_amount} on subtotal {draft.subtotal} implies a "
                        f"rate of {implied:.4f}, stated rate is {draft.tax_rate}"
                    ),
                    expected=implied.quantize(Decimal("0.0001")),
                    actual=draft.tax_rate,
                )
            )

    return warnings


def score_confidence(
    draft: QuoteDraft, warnings: Sequence[ValidationWarning], config: ValidationConfig
) -> float:
    """Overall confidence after warning penalties.

    The lowest reported confidence (overall or per field) is capped by
    ``1 - penalty``, floored at ``confidence_floor`` and rounded to 2 places.
    """
    penalty = sum(
        config.blocking_penalty
        if w.severity is WarningSeverity.BLOCKING
        else config.advisory_penalty
        for w in warnings
    )
    reported = [draft.overall_confidence, *draft.field_confidences.values()]
    confidence = min(*reported, 1.0 - min(penalty, config.max_penalty))
    return round(max(confidence, config.confidence_floor), 2)


def validate(
    draft: QuoteDraft,
    line_items: Sequence[LineLike],
    config: ValidationConfig | None = None,
    review_threshold: float | None = None,
) -> ValidationResult:
    """Run every check and decide whether the quote needs human review.

    Args:
        draft: Quote-level totals and reported confidences
        line_items: Extracted or stored line items, in quote order
        config: Tolerances and penalties (default from app config)
        review_threshold: Minimum confidence for a CLEAN verdict

    Returns:
        ValidationResult with warnings, overall confidence and verdict
    """
    app_config = None
    if config is None or review_threshold is None:
        app_config = get_config()
    config = config or app_config.validation
    if review_threshold is None:
        review_threshold = app_config.pipeline.review_confidence_threshold

    warnings: list[ValidationWarning] = []

    if not draft.has_supplier:
        warnings.append(
            ValidationWarning(
                check="missing_supplier",
                message="No supplier could be identified on the document",
                severity=WarningSeverity.BLOCKING,
            )
        )
    if not line_items:
        warnings.append(
            ValidationWarning(
                check="missing_line_items",
                message="No line items were extracted",
                severity=WarningSeverity.BLOCKING,
            )
        )

    warnings.extend(_check_lines(line_items, config))
    warnings.extend(_check_subtotal(draft, line_items, config))
    warnings.extend(_check_totals(draft, config))

    overall = score_confidence(draft, warnings, config)
    has_blocking = any(w.severity is WarningSeverity.BLOCKING for w in warnings)
    verdict = (
        ValidationVerdict.CLEAN
        if not has_blocking and overall >= review_threshold
        else ValidationVerdict.NEEDS_REVIEW
    )

    return ValidationResult(warnings=warnings, overall_confidence=overall, verdict=verdict)
