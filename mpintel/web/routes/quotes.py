"""Quote review, approval and normalization status routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mpintel.models import QuoteReviewUpdate
from mpintel.review.repository import fetch_draft_quote, get_normalization_status
from mpintel.review.service import ReviewService
from mpintel.web.dependencies import get_db, get_review_service
from mpintel.web.models import (
    ApprovalRequest,
    ApprovalResponse,
    NormalizationStatusResponse,
)

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.get("/{quote_id}")
async def get_quote(quote_id: UUID, db: AsyncSession = Depends(get_db)):
    """Draft quote with line items and stored validation warnings."""
    return await fetch_draft_quote(db, quote_id)


@router.put("/{quote_id}/review")
async def save_review(
    quote_id: UUID,
    changes: QuoteReviewUpdate,
    reviewer: str = Query(..., min_length=1),
    service: ReviewService = Depends(get_review_service),
):
    """Persist reviewer corrections and re-run validation."""
    return await service.save_review(quote_id, changes, reviewer=reviewer)


@router.post("/{quote_id}/approve", response_model=ApprovalResponse)
async def approve_quote(
    quote_id: UUID,
    request: ApprovalRequest,
    service: ReviewService = Depends(get_review_service),
):
    outcome = await service.approve_quote(quote_id, approved_by=request.approved_by)
    return ApprovalResponse(
        quote_id=outcome.quote_id,
        document_id=outcome.document_id,
        already_verified=outcome.already_verified,
        normalization_enqueued=outcome.normalization_enqueued,
        verified_at=outcome.verified_at,
    )


@router.get("/{quote_id}/normalization", response_model=NormalizationStatusResponse)
async def normalization_status(quote_id: UUID, db: AsyncSession = Depends(get_db)):
    status = await get_normalization_status(db, quote_id)
    return NormalizationStatusResponse(
        quote_id=status.quote_id,
        verified=status.verified,
        normalized_at=status.normalized_at,
        material_lines=status.material_lines,
        matched=status.matched,
        unmatched=status.unmatched,
        complete=status.complete,
    )
