"""Manual material mapping routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mpintel.review.repository import fetch_unmatched_line_items
from mpintel.review.service import ReviewService
from mpintel.web.dependencies import get_db, get_org_id, get_review_service
from mpintel.web.models import AssignMaterialRequest, AssignMaterialResponse

router = APIRouter(tags=["materials"])


@router.get("/materials/unmatched")
async def list_unmatched(
    limit: int = Query(default=100, ge=1, le=500),
    org_id: str = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Verified material lines the matcher left unlinked."""
    return await fetch_unmatched_line_items(db, org_id, limit=limit)


@router.post("/line-items/{line_item_id}/material", response_model=AssignMaterialResponse)
async def assign_material(
    line_item_id: UUID,
    request: AssignMaterialRequest,
    service: ReviewService = Depends(get_review_service),
):
    line = await service.assign_material(
        line_item_id, request.material_id, assigned_by=request.assigned_by
    )
    return AssignMaterialResponse(
        line_item_id=line.id,
        material_id=line.material_id,
        match_confidence=line.match_confidence,
    )
