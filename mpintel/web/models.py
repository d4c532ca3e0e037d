"""Shared Pydantic models for the mpintel web API.

Usage:
    from mpintel.web.models import DocumentResponse

    @router.get("/documents/{document_id}", response_model=DocumentResponse)
    async def get_document(...):
        ...
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Documents
# ============================================================================


class StatusEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_status: str | None = None
    to_status: str
    detail: str | None = None
    created_at: datetime


class DocumentResponse(BaseModel):
    """Document status as seen by pollers.

    Used by: POST /documents, GET /documents/{id}, POST /documents/{id}/resubmit
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: str
    file_name: str
    file_type: str
    file_size_bytes: int
    status: str
    error_message: str | None = None
    quote_id: UUID | None = None
    resubmitted_from_id: UUID | None = None
    uploaded_by: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    events: list[StatusEventResponse] = Field(default_factory=list)


# ============================================================================
# Review & Approval
# ============================================================================


class ApprovalRequest(BaseModel):
    approved_by: str = Field(min_length=1)


class ApprovalResponse(BaseModel):
    quote_id: UUID
    document_id: UUID
    already_verified: bool
    normalization_enqueued: bool
    verified_at: datetime | None = None


class NormalizationStatusResponse(BaseModel):
    quote_id: UUID
    verified: bool
    normalized_at: datetime | None = None
    material_lines: int
    matched: int
    unmatched: int
    complete: bool


# ============================================================================
# Manual mapping
# ============================================================================


class AssignMaterialRequest(BaseModel):
    material_id: UUID
    assigned_by: str = Field(min_length=1)


class AssignMaterialResponse(BaseModel):
    line_item_id: UUID
    material_id: UUID
    match_confidence: float | None = None
