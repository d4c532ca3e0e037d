"""Review and approval operations on extracted quotes."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from mpintel.canonical.normalizer import get_normalizer
from mpintel.config import AppConfig, get_config
from mpintel.core.queue import JobDispatcher
from mpintel.db.models import LineItemModel, MaterialAliasModel, QuoteModel
from mpintel.exceptions import (
    DispatchError,
    LineItemNotFoundError,
    MaterialNotFoundError,
    QuoteImmutableError,
    QuoteNotFoundError,
    ReviewNotAllowedError,
)
from mpintel.ingestion.lifecycle import transition_document
from mpintel.models import DocumentStatus, LineItemEdit, LineType, QuoteReviewUpdate
from mpintel.pricing.effective_price import derive_effective_unit_price
from mpintel.review.models import ApprovalOutcome, DraftQuoteView
from mpintel.review.repository import fetch_active_material, fetch_draft_quote
from mpintel.validation.engine import QuoteDraft, validate

logger = structlog.get_logger(__name__)

NORMALIZE_JOB = "normalize_quote_job"
_REVIEWABLE = (DocumentStatus.COMPLETED.value, DocumentStatus.REVIEW_NEEDED.value)


def normalization_job_id(quote_id: UUID) -> str:
    return f"normalize:{quote_id}"


def _apply_edit(line: LineItemModel, edit: LineItemEdit, sort_order: int) -> None:
    line.raw_description = edit.raw_description
    line.quantity = edit.quantity
    line.unit = edit.unit
    line.unit_price = edit.unit_price
    line.extended_price = edit.extended_price
    line.discount_pct = edit.discount_pct
    line.discount_amount = edit.discount_amount
    line.line_total = edit.line_total
    line.line_type = edit.line_type.value
    line.notes = edit.notes
    line.sort_order = sort_order


def _rederive(line: LineItemModel) -> None:
    line.effective_unit_price = derive_effective_unit_price(
        line.line_type,
        line.unit_price,
        line.discount_pct,
        line.discount_amount,
        line.quantity,
    )
    if line.line_type != LineType.MATERIAL.value:
        line.material_id = None
        line.match_confidence = None
        line.matched_at = None
        line.matched_by = None


class ReviewService:
    """Save reviewer edits and approve quotes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: JobDispatcher,
        config: AppConfig | None = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.config = config or get_config()

    async def _load_for_review(self, session: AsyncSession, quote_id: UUID) -> QuoteModel:
        quote = await session.scalar(
            select(QuoteModel)
            .options(
                selectinload(QuoteModel.line_items),
                selectinload(QuoteModel.document),
            )
            .where(QuoteModel.id == quote_id)
        )
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        if quote.verified or quote.document.status == DocumentStatus.APPROVED.value:
            raise QuoteImmutableError(quote_id)
        if quote.document.status not in _REVIEWABLE:
            raise ReviewNotAllowedError(quote_id, quote.document.status)
        return quote

    def _replace_lines(self, quote: QuoteModel, edits: list[LineItemEdit]) -> None:
        existing = {line.id: line for line in quote.line_items}
        lines: list[LineItemModel] = []
        for i, edit in enumerate(edits):
            if edit.id is not None:
                line = existing.get(edit.id)
                if line is None:
                    raise LineItemNotFoundError(edit.id)
            else:
                line = LineItemModel()
            _apply_edit(line, edit, i)
            lines.append(line)
        # Lines missing from the submission are deleted (delete-orphan)
        quote.line_items = lines

    async def save_review(
        self, quote_id: UUID, changes: QuoteReviewUpdate, reviewer: str
    ) -> DraftQuoteView:
        """Apply reviewer edits, re-derive prices and re-run validation.

        Rejected before any write when the quote is approved or its
        document is not reviewable.

        Raises:
            QuoteNotFoundError: If the quote does not exist
            QuoteImmutableError: If the quote was already approved
            ReviewNotAllowedError: If the document is not completed/review_needed
            LineItemNotFoundError: If an edit references a line of another quote
        """
        async with self.session_factory() as session:
            quote = await self._load_for_review(session, quote_id)

            for name, value in changes.quote_fields().items():
                setattr(quote, name, value)
            if changes.line_items is not None:
                self._replace_lines(quote, changes.line_items)

            for line in quote.line_items:
                _rederive(line)

            validation = validate(
                QuoteDraft.from_quote(quote),
                quote.line_items,
                self.config.validation,
                self.config.pipeline.review_confidence_threshold,
            )
            quote.confidence_score = validation.overall_confidence
            raw = dict(quote.raw_extraction or {})
            raw["validation"] = validation.to_payload()
            raw["last_reviewed_by"] = reviewer
            raw["last_reviewed_at"] = datetime.now(timezone.utc).isoformat()
            quote.raw_extraction = raw
            await session.flush()

            # Approval may have landed since the quote was loaded
            guard = await session.execute(
                update(QuoteModel)
                .where(QuoteModel.id == quote_id, QuoteModel.verified.is_(False))
                .values(updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            if guard.rowcount != 1:
                await session.rollback()
                raise QuoteImmutableError(quote_id)

            await session.commit()

        logger.info(
            "quote_review_saved",
            quote_id=str(quote_id),
            reviewer=reviewer,
            warnings=[w.check for w in validation.warnings],
            confidence=validation.overall_confidence,
        )
        async with self.session_factory() as session:
            return await fetch_draft_quote(session, quote_id)

    async def approve_quote(self, quote_id: UUID, approved_by: str) -> ApprovalOutcome:
        """Verify the quote, approve its document and enqueue normalization.

        Idempotent: approving a verified quote reports ``already_verified``
        and submits nothing.
        """
        async with self.session_factory() as session:
            quote = await session.get(
                QuoteModel, quote_id, options=[selectinload(QuoteModel.document)]
            )
            if quote is None:
                raise QuoteNotFoundError(quote_id)
            document_id = quote.document_id

            if quote.verified:
                return ApprovalOutcome(
                    quote_id=quote_id,
                    document_id=document_id,
                    already_verified=True,
                    normalization_enqueued=False,
                    verified_at=quote.verified_at,
                )

            if quote.document.status not in _REVIEWABLE:
                raise ReviewNotAllowedError(quote_id, quote.document.status)

            now = datetime.now(timezone.utc)
            flipped = await session.execute(
                update(QuoteModel)
                .where(QuoteModel.id == quote_id, QuoteModel.verified.is_(False))
                .values(verified=True, verified_at=now, verified_by=approved_by)
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount != 1:
                await session.rollback()
                logger.info("quote_already_approved", quote_id=str(quote_id))
                return ApprovalOutcome(
                    quote_id=quote_id,
                    document_id=document_id,
                    already_verified=True,
                    normalization_enqueued=False,
                    verified_at=None,
                )

            source = await transition_document(
                session,
                document_id,
                DocumentStatus.APPROVED,
                detail=f"approved by {approved_by}",
            )
            if source is None:
                await session.rollback()
                raise ReviewNotAllowedError(quote_id, "changed concurrently")

            await session.commit()

        logger.info("quote_approved", quote_id=str(quote_id), approved_by=approved_by)

        enqueued = False
        try:
            enqueued = await self.dispatcher.enqueue(
                NORMALIZE_JOB, str(quote_id), job_id=normalization_job_id(quote_id)
            )
        except DispatchError as exc:
            # The stale-quote sweep re-enqueues un-normalized verified quotes
            logger.error("normalization_dispatch_failed", quote_id=str(quote_id), error=str(exc))

        return ApprovalOutcome(
            quote_id=quote_id,
            document_id=document_id,
            already_verified=False,
            normalization_enqueued=enqueued,
            verified_at=now,
        )

    async def assign_material(
        self, line_item_id: UUID, material_id: UUID, assigned_by: str
    ) -> LineItemModel:
        """Link a material line by hand and remember its description as an alias."""
        async with self.session_factory() as session:
            line = await session.get(
                LineItemModel, line_item_id, options=[selectinload(LineItemModel.quote)]
            )
            if line is None:
                raise LineItemNotFoundError(line_item_id)
            if line.line_type != LineType.MATERIAL.value:
                raise ValueError(
                    f"Line item {line_item_id} is a '{line.line_type}' line; "
                    "only material lines can be linked"
                )

            material = await fetch_active_material(session, line.quote.org_id, material_id)
            if material is None:
                raise MaterialNotFoundError(material_id)

            line.material_id = material.id
            line.match_confidence = 1.0
            line.matched_at = datetime.now(timezone.utc)
            line.matched_by = assigned_by

            normalized_alias = get_normalizer(self.config.matching.synonyms_path).key(
                line.raw_description
            )
            existing_alias = await session.scalar(
                select(MaterialAliasModel.id).where(
                    MaterialAliasModel.material_id == material.id,
                    MaterialAliasModel.normalized_alias == normalized_alias,
                )
            )
            if existing_alias is None and normalized_alias:
                session.add(
                    MaterialAliasModel(
                        material_id=material.id,
                        alias=line.raw_description,
                        normalized_alias=normalized_alias,
                        source_quote_id=line.quote_id,
                        created_by=assigned_by,
                    )
                )

            await session.commit()

        logger.info(
            "material_assigned",
            line_item_id=str(line_item_id),
            material_id=str(material_id),
            assigned_by=assigned_by,
        )
        return line
