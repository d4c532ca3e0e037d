"""Document upload and status routes."""

from __future__ import annotations

from collections.abc import Awaitable
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from mpintel.db.models import DocumentModel
from mpintel.exceptions import DispatchError
from mpintel.ingestion.lifecycle import DocumentLifecycleController
from mpintel.web.dependencies import get_lifecycle, get_org_id
from mpintel.web.models import DocumentResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/documents", tags=["documents"])


async def _accepted(
    lifecycle: DocumentLifecycleController, command: Awaitable[DocumentModel]
) -> DocumentModel:
    """Run a create/resubmit command and return the stored document.

    A document whose extraction job could not be queued is still returned;
    it stays ``pending`` with the dispatch failure in ``error_message``.
    """
    try:
        document = await command
        document_id = document.id
    except DispatchError as exc:
        if exc.document_id is None:
            raise
        logger.warning(
            "document_accepted_without_dispatch",
            document_id=str(exc.document_id),
            error=str(exc),
        )
        document_id = exc.document_id
    return await lifecycle.get_document_status(document_id)


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_document(
    file: UploadFile = File(...),
    uploaded_by: str | None = Form(default=None),
    org_id: str = Depends(get_org_id),
    lifecycle: DocumentLifecycleController = Depends(get_lifecycle),
):
    """Store an uploaded quote and queue it for extraction."""
    content = await file.read()
    return await _accepted(
        lifecycle,
        lifecycle.create_document(
            org_id=org_id,
            file_name=file.filename or "document",
            content=content,
            content_type=file.content_type or "application/octet-stream",
            uploaded_by=uploaded_by,
        ),
    )


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: UUID,
    lifecycle: DocumentLifecycleController = Depends(get_lifecycle),
):
    """Poll a document's status."""
    return await lifecycle.get_document_status(document_id)


@router.post(
    "/{document_id}/resubmit",
    response_model=DocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def resubmit_document(
    document_id: UUID,
    uploaded_by: str | None = Form(default=None),
    lifecycle: DocumentLifecycleController = Depends(get_lifecycle),
):
    """Re-run extraction of a failed document as a new document."""
    return await _accepted(
        lifecycle, lifecycle.resubmit_document(document_id, uploaded_by=uploaded_by)
    )
