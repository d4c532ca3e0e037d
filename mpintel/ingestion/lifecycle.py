"""Document lifecycle controller.

States::

    pending -> processing -> completed | review_needed | failed
    completed | review_needed -> approved      (review service only)

``approved`` and ``failed`` are terminal. Every transition is a guarded
UPDATE (``WHERE status = <observed status>``) so the database row decides
which of two concurrent deliveries wins; the loser sees a zero row count
and backs off. Each successful transition appends a status event.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from mpintel.config import AppConfig, get_config
from mpintel.core.queue import JobDispatcher
from mpintel.db.models import (
    DocumentModel,
    DocumentStatusEventModel,
    LineItemModel,
    QuoteModel,
)
from mpintel.exceptions import (
    DispatchError,
    DocumentNotFoundError,
    DocumentStateError,
    ExtractionError,
    ExtractionTimeoutError,
    StorageError,
)
from mpintel.ingestion.extraction import Extractor
from mpintel.ingestion.storage import ObjectStorage, build_locator
from mpintel.ingestion.suppliers import find_or_create_supplier
from mpintel.models import DocumentStatus, ExtractedLineItem, ExtractionResult
from mpintel.notifications.status import StatusChange, StatusNotifier
from mpintel.pricing.effective_price import derive_effective_unit_price
from mpintel.validation.engine import QuoteDraft, validate

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.COMPLETED, DocumentStatus.REVIEW_NEEDED, DocumentStatus.FAILED}
    ),
    DocumentStatus.COMPLETED: frozenset({DocumentStatus.APPROVED}),
    DocumentStatus.REVIEW_NEEDED: frozenset({DocumentStatus.APPROVED}),
    DocumentStatus.APPROVED: frozenset(),
    DocumentStatus.FAILED: frozenset(),
}

EXTRACT_JOB = "process_document_job"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extraction_job_id(document_id: UUID) -> str:
    return f"extract:{document_id}"


async def record_status_event(
    session: AsyncSession,
    document_id: UUID,
    from_status: DocumentStatus | None,
    to_status: DocumentStatus,
    detail: str | None = None,
) -> DocumentStatusEventModel:
    """Append the next event in the document's history."""
    last = await session.scalar(
        select(func.max(DocumentStatusEventModel.sequence)).where(
            DocumentStatusEventModel.document_id == document_id
        )
    )
    event = DocumentStatusEventModel(
        document_id=document_id,
        sequence=(last or 0) + 1,
        from_status=from_status.value if from_status else None,
        to_status=to_status.value,
        detail=detail,
    )
    session.add(event)
    await session.flush()
    return event


async def transition_document(
    session: AsyncSession,
    document_id: UUID,
    target: DocumentStatus,
    detail: str | None = None,
    **values: Any,
) -> DocumentStatus | None:
    """Move a document to ``target`` if its current status allows it.

    Returns the status the document was moved from, or None when the
    transition was refused (wrong source status or lost a race).

    Raises:
        DocumentNotFoundError: If the document does not exist
    """
    current = await session.scalar(
        select(DocumentModel.status).where(DocumentModel.id == document_id)
    )
    if current is None:
        raise DocumentNotFoundError(document_id)

    source = DocumentStatus(current)
    if target not in ALLOWED_TRANSITIONS[source]:
        return None

    result = await session.execute(
        update(DocumentModel)
        .where(DocumentModel.id == document_id, DocumentModel.status == source.value)
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None

    await record_status_event(session, document_id, source, target, detail)
    return source


def line_item_from_extraction(item: ExtractedLineItem, sort_order: int) -> LineItemModel:
    return LineItemModel(
        raw_description=item.raw_description,
        quantity=item.quantity,
        unit=item.unit,
        unit_price=item.unit_price,
        extended_price=item.extended_price,
        discount_pct=item.discount_pct,
        discount_amount=item.discount_amount,
        line_total=item.line_total,
        line_type=item.line_type.value,
        effective_unit_price=derive_effective_unit_price(
            item.line_type,
            item.unit_price,
            item.discount_pct,
            item.discount_amount,
            item.quantity,
        ),
        notes=item.notes,
        confidence=item.confidence,
        sort_order=sort_order,
    )


class DocumentLifecycleController:
    """Owns every document status change outside approval."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ObjectStorage,
        dispatcher: JobDispatcher,
        notifier: StatusNotifier | None = None,
        config: AppConfig | None = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.config = config or get_config()

    async def _publish(
        self,
        document_id: UUID,
        org_id: str,
        from_status: DocumentStatus | None,
        to_status: DocumentStatus,
        **kwargs: Any,
    ) -> None:
        logger.info(
            "document_status_changed",
            document_id=str(document_id),
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
        )
        if self.notifier is not None:
            await self.notifier.publish(
                StatusChange(
                    document_id=document_id,
                    org_id=org_id,
                    from_status=from_status.value if from_status else None,
                    to_status=to_status.value,
                    **kwargs,
                )
            )

    async def _insert_pending(self, document: DocumentModel, detail: str) -> DocumentModel:
        async with self.session_factory() as session:
            session.add(document)
            await session.flush()
            await record_status_event(
                session, document.id, None, DocumentStatus.PENDING, detail
            )
            await session.commit()
        await self._publish(
            document.id,
            document.org_id,
            None,
            DocumentStatus.PENDING,
            file_name=document.file_name,
        )
        return document

    async def _dispatch_extraction(self, document: DocumentModel) -> None:
        try:
            await self.dispatcher.enqueue(
                EXTRACT_JOB, str(document.id), job_id=extraction_job_id(document.id)
            )
        except DispatchError as exc:
            logger.error(
                "extraction_dispatch_failed", document_id=str(document.id), error=str(exc)
            )
            async with self.session_factory() as session:
                await session.execute(
                    update(DocumentModel)
                    .where(
                        DocumentModel.id == document.id,
                        DocumentModel.status == DocumentStatus.PENDING.value,
                    )
                    .values(error_message=f"Dispatch failed: {exc}")
                )
                await session.commit()
            document.error_message = f"Dispatch failed: {exc}"
            exc.document_id = document.id
            raise

    async def create_document(
        self,
        org_id: str,
        file_name: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        uploaded_by: str | None = None,
    ) -> DocumentModel:
        """Store an upload, persist it as ``pending`` and dispatch extraction.

        Raises:
            StorageError: If the bytes could not be stored (nothing is persisted)
            DispatchError: If the extraction job could not be queued; the
                document stays ``pending`` with the error recorded and its id
                on ``document_id``
        """
        document_id = uuid4()
        locator = await self.storage.put(
            build_locator(org_id, document_id, file_name), content
        )

        document = DocumentModel(
            id=document_id,
            org_id=org_id,
            file_name=file_name,
            file_path=locator,
            file_type=content_type,
            file_size_bytes=len(content),
            status=DocumentStatus.PENDING.value,
            uploaded_by=uploaded_by,
        )
        await self._insert_pending(document, detail="uploaded")
        await self._dispatch_extraction(document)
        return document

    async def resubmit_document(
        self, document_id: UUID, uploaded_by: str | None = None
    ) -> DocumentModel:
        """Start a fresh extraction of a failed document's file.

        The failed document stays terminal; the new ``pending`` document
        points at the same stored file and records its lineage.
        """
        async with self.session_factory() as session:
            original = await session.get(DocumentModel, document_id)
            if original is None:
                raise DocumentNotFoundError(document_id)
            if original.status != DocumentStatus.FAILED.value:
                raise DocumentStateError(document_id, original.status, "resubmit")

            document = DocumentModel(
                id=uuid4(),
                org_id=original.org_id,
                file_name=original.file_name,
                file_path=original.file_path,
                file_type=original.file_type,
                file_size_bytes=original.file_size_bytes,
                status=DocumentStatus.PENDING.value,
                resubmitted_from_id=original.id,
                uploaded_by=uploaded_by or original.uploaded_by,
            )

        await self._insert_pending(document, detail=f"resubmitted from {document_id}")
        await self._dispatch_extraction(document)
        return document

    async def get_document_status(self, document_id: UUID) -> DocumentModel:
        """Current document row with its status history (for polling)."""
        async with self.session_factory() as session:
            document = await session.scalar(
                select(DocumentModel)
                .options(selectinload(DocumentModel.events))
                .where(DocumentModel.id == document_id)
            )
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def on_extraction_started(self, document_id: UUID) -> bool:
        """``pending -> processing``. False for duplicate or late deliveries."""
        async with self.session_factory() as session:
            source = await transition_document(
                session,
                document_id,
                DocumentStatus.PROCESSING,
                detail="extraction started",
                started_at=utcnow(),
            )
            org_id = await session.scalar(
                select(DocumentModel.org_id).where(DocumentModel.id == document_id)
            )
            await session.commit()

        if source is None:
            logger.warning("extraction_start_ignored", document_id=str(document_id))
            return False

        await self._publish(document_id, org_id, source, DocumentStatus.PROCESSING)
        return True

    async def on_extraction_result(
        self, document_id: UUID, result: ExtractionResult
    ) -> QuoteModel | None:
        """Persist the extracted quote and route it to completed or review_needed.

        Ignored (returns None) unless the document is ``processing``.
        """
        async with self.session_factory() as session:
            document = await session.get(DocumentModel, document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            if document.status != DocumentStatus.PROCESSING.value:
                logger.warning(
                    "extraction_result_ignored",
                    document_id=str(document_id),
                    status=document.status,
                )
                return None

            supplier = None
            if result.supplier is not None:
                supplier = await find_or_create_supplier(
                    session, document.org_id, result.supplier
                )

            validation = validate(
                QuoteDraft.from_extraction(result),
                result.line_items,
                self.config.validation,
                self.config.pipeline.review_confidence_threshold,
            )

            totals = result.totals
            quote = QuoteModel(
                org_id=document.org_id,
                document_id=document.id,
                supplier_id=supplier.id if supplier else None,
                quote_number=result.quote_number,
                quote_date=result.quote_date,
                valid_until=result.valid_until,
                project_name=result.project_name,
                subtotal=totals.subtotal,
                delivery_cost=totals.delivery_cost,
                tax_amount=totals.tax_amount,
                tax_rate=totals.tax_rate,
                total_amount=totals.total_amount,
                payment_terms=result.payment_terms,
                notes=result.notes,
                confidence_score=validation.overall_confidence,
                raw_extraction={
                    "extraction": result.model_dump(mode="json"),
                    "overall_confidence": result.overall_confidence,
                    "field_confidences": dict(result.field_confidences),
                    "extraction_notes": result.extraction_notes,
                    "validation": validation.to_payload(),
                },
                verified=False,
                line_items=[
                    line_item_from_extraction(item, i)
                    for i, item in enumerate(result.line_items)
                ],
            )
            session.add(quote)
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                logger.warning("extraction_result_duplicate", document_id=str(document_id))
                return None

            target = (
                DocumentStatus.COMPLETED
                if validation.is_clean
                else DocumentStatus.REVIEW_NEEDED
            )
            source = await transition_document(
                session,
                document_id,
                target,
                detail=f"{len(validation.warnings)} warning(s), confidence "
                f"{validation.overall_confidence:.2f}",
                quote_id=quote.id,
                completed_at=utcnow(),
                error_message=None,
            )
            if source is None:
                await session.rollback()
                logger.warning("extraction_result_ignored", document_id=str(document_id))
                return None

            await session.commit()

        logger.info(
            "extraction_persisted",
            document_id=str(document_id),
            quote_id=str(quote.id),
            line_items=len(result.line_items),
            warnings=[w.check for w in validation.warnings],
            confidence=validation.overall_confidence,
        )
        await self._publish(
            document_id,
            document.org_id,
            source,
            target,
            file_name=document.file_name,
            quote_id=quote.id,
        )
        return quote

    async def on_extraction_error(self, document_id: UUID, error: str | BaseException) -> bool:
        """``processing -> failed`` with the literal error message."""
        message = str(error) or type(error).__name__
        async with self.session_factory() as session:
            source = await transition_document(
                session,
                document_id,
                DocumentStatus.FAILED,
                detail="extraction failed",
                error_message=message,
                completed_at=utcnow(),
            )
            document = await session.get(DocumentModel, document_id)
            await session.commit()

        if source is None:
            logger.warning(
                "extraction_error_ignored", document_id=str(document_id), error=message
            )
            return False

        await self._publish(
            document_id,
            document.org_id,
            source,
            DocumentStatus.FAILED,
            file_name=document.file_name,
            error_message=message,
        )
        return True

    async def expire_stale_extractions(self, now: datetime | None = None) -> list[UUID]:
        """Fail documents stuck in ``processing`` past the extraction deadline."""
        timeout = self.config.pipeline.extraction_timeout_seconds
        cutoff = (now or utcnow()) - timedelta(seconds=timeout)

        async with self.session_factory() as session:
            stale_ids = list(
                await session.scalars(
                    select(DocumentModel.id).where(
                        DocumentModel.status == DocumentStatus.PROCESSING.value,
                        DocumentModel.started_at < cutoff,
                    )
                )
            )

        expired: list[UUID] = []
        for document_id in stale_ids:
            if await self.on_extraction_error(
                document_id, f"Extraction timed out after {timeout} seconds"
            ):
                expired.append(document_id)

        if expired:
            logger.info("stale_extractions_expired", count=len(expired))
        return expired

    async def process_document(self, document_id: UUID, extractor: Extractor) -> str:
        """Run one extraction end to end. Returns the resulting status.

        Any failure while fetching or extracting fails the document with the
        error text; nothing is retried.
        """
        if not await self.on_extraction_started(document_id):
            async with self.session_factory() as session:
                status = await session.scalar(
                    select(DocumentModel.status).where(DocumentModel.id == document_id)
                )
            return status

        async with self.session_factory() as session:
            document = await session.get(DocumentModel, document_id)

        timeout = self.config.pipeline.extraction_timeout_seconds
        try:
            content = await self.storage.get(document.file_path)
            result = await asyncio.wait_for(
                extractor.extract(content, document.file_name, document.file_type),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            await self.on_extraction_error(
                document_id,
                ExtractionTimeoutError(f"Extraction timed out after {timeout} seconds"),
            )
            return DocumentStatus.FAILED.value
        except (ExtractionError, StorageError) as exc:
            logger.warning("extraction_failed", document_id=str(document_id), error=str(exc))
            await self.on_extraction_error(document_id, exc)
            return DocumentStatus.FAILED.value
        except Exception as exc:
            logger.exception("extraction_crashed", document_id=str(document_id))
            await self.on_extraction_error(document_id, exc)
            return DocumentStatus.FAILED.value

        await self.on_extraction_result(document_id, result)
        async with self.session_factory() as session:
            return await session.scalar(
                select(DocumentModel.status).where(DocumentModel.id == document_id)
            )
