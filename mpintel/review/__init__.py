"""Quote review, approval and manual material mapping."""

from mpintel.review.models import (
    ApprovalOutcome,
    DraftQuoteView,
    NormalizationStatus,
    ReviewLineItem,
    ReviewSupplier,
    UnmatchedLineItem,
)
from mpintel.review.repository import (
    fetch_draft_quote,
    fetch_unmatched_line_items,
    get_normalization_status,
)
from mpintel.review.service import ReviewService

__all__ = [
    "ApprovalOutcome",
    "DraftQuoteView",
    "NormalizationStatus",
    "ReviewLineItem",
    "ReviewSupplier",
    "UnmatchedLineItem",
    "fetch_draft_quote",
    "fetch_unmatched_line_items",
    "get_normalization_status",
    "ReviewService",
]
