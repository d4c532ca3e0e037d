"""Post-approval normalization of a quote's material lines.

Runs the matcher over the material lines of a verified quote and links
the accepted matches. Reviewer links are never overwritten. Re-running over the same catalog snapshot yields the
same links, so a duplicated or re-enqueued job is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mpintel.db.models import QuoteModel
from mpintel.exceptions import QuoteNotFoundError
from mpintel.matching.catalog import DatabaseCatalogReader
from mpintel.matching.matcher import MaterialMatcher
from mpintel.models import LineType

logger = structlog.get_logger(__name__)


@dataclass
class NormalizationSummary:
    quote_id: UUID
    material_lines: int = 0
    matched: int = 0
    kept_manual: int = 0
    skipped: bool = False

    @property
    def unmatched(self) -> int:
        return self.material_lines - self.matched


class NormalizationOrchestrator:
    """Links a verified quote's material lines to canonical materials."""

    def __init__(self, session: AsyncSession, matcher: MaterialMatcher | None = None):
        self.session = session
        self.matcher = matcher

    async def normalize_quote(self, quote_id: UUID) -> NormalizationSummary:
        """Match every material line and stamp ``normalized_at``.

        Lines a reviewer linked by hand keep their material.

        Unverified quotes are skipped. The caller owns the transaction.

        Raises:
            QuoteNotFoundError: If the quote does not exist
        """
        quote = await self.session.get(
            QuoteModel, quote_id, options=[selectinload(QuoteModel.line_items)]
        )
        if quote is None:
            raise QuoteNotFoundError(quote_id)

        summary = NormalizationSummary(quote_id=quote.id)
        if not quote.verified:
            logger.warning("normalization_skipped_unverified", quote_id=str(quote_id))
            summary.skipped = True
            return summary

        matcher = self.matcher or MaterialMatcher(
            DatabaseCatalogReader(self.session, quote.org_id)
        )
        snapshot = await matcher.catalog.load_snapshot()
        now = datetime.now(timezone.utc)

        for line in quote.line_items:
            if line.line_type != LineType.MATERIAL.value:
                continue
            summary.material_lines += 1
            if line.matched_by is not None:
                summary.matched += 1
                summary.kept_manual += 1
                continue

            match = matcher.match_in_snapshot(snapshot, line.raw_description)
            if match is None:
                line.material_id = None
                line.match_confidence = None
            else:
                line.material_id = match.material_id
                line.match_confidence = match.score
                summary.matched += 1
            line.matched_at = now

        quote.normalized_at = now
        await self.session.flush()

        logger.info(
            "quote_normalized",
            quote_id=str(quote_id),
            material_lines=summary.material_lines,
            matched=summary.matched,
            kept_manual=summary.kept_manual,
            unmatched=summary.unmatched,
        )
        return summary
