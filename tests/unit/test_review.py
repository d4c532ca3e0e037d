"""Unit tests for the review workflow: save, approve and manual mapping."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import delete, select, update

from mpintel.db.models import (
    DocumentModel,
    LineItemModel,
    MaterialAliasModel,
    MaterialModel,
    QuoteModel,
)
from mpintel.exceptions import (
    LineItemNotFoundError,
    MaterialNotFoundError,
    QuoteImmutableError,
    QuoteNotFoundError,
    ReviewNotAllowedError,
)
from mpintel.matching.orchestrator import NormalizationOrchestrator
from mpintel.models import LineItemEdit, LineType, QuoteReviewUpdate
from mpintel.review.repository import (
    fetch_draft_quote,
    fetch_unmatched_line_items,
    get_normalization_status,
)
from mpintel.review.service import NORMALIZE_JOB, ReviewService, normalization_job_id


@pytest_asyncio.fixture()
async def review_quote_id(controller, bad_line_extraction, fake_extractor):
    """Quote of a document routed to review (10 x 5.00 stated as 40.00)."""
    document = await controller.create_document(
        org_id="test-org",
        file_name="quote.pdf",
        content=b"pdf",
        content_type="application/pdf",
    )
    await controller.process_document(document.id, fake_extractor(bad_line_extraction))
    stored = await controller.get_document_status(document.id)
    assert stored.status == "review_needed"
    return stored.quote_id


@pytest.fixture
def service(session_factory, dispatcher, config) -> ReviewService:
    return ReviewService(session_factory, dispatcher, config)


def _edits(view, **overrides_by_index) -> list[LineItemEdit]:
    edits = []
    for i, line in enumerate(view.line_items):
        values = {
            "id": line.id,
            "raw_description": line.raw_description,
            "quantity": line.quantity,
            "unit": line.unit,
            "unit_price": line.unit_price,
            "line_total": line.line_total,
            "line_type": line.line_type,
        }
        values.update(overrides_by_index.get(f"line{i}", {}))
        edits.append(LineItemEdit(**values))
    return edits


def _fixed_review(view) -> QuoteReviewUpdate:
    return QuoteReviewUpdate(
        subtotal=Decimal("80.00"),
        tax_amount=Decimal("5.60"),
        total_amount=Decimal("95.60"),
        line_items=_edits(view, line0={"line_total": Decimal("50.00")}),
    )


async def _view(session_factory, quote_id):
    async with session_factory() as session:
        return await fetch_draft_quote(session, quote_id)


class TestSaveReview:
    async def test_draft_shows_stored_warnings(self, session_factory, review_quote_id):
        view = await _view(session_factory, review_quote_id)

        assert view.document_status == "review_needed"
        assert view.supplier.name == "Acme Lumber"
        assert [line.raw_description for line in view.line_items] == [
            "PT 2x4x8",
            "Galvanized joist hanger",
        ]
        assert [w.check for w in view.blocking_warnings] == ["line_arithmetic"]
        assert view.is_editable

    async def test_fix_clears_warnings(self, service, session_factory, review_quote_id):
        view = await _view(session_factory, review_quote_id)

        saved = await service.save_review(review_quote_id, _fixed_review(view), reviewer="pat")

        assert saved.warnings == []
        assert saved.confidence_score == 0.95
        assert saved.total_amount == Decimal("95.60")
        assert saved.line_items[0].line_total == Decimal("50.00")
        # Review never changes the document status
        assert saved.document_status == "review_needed"

        async with session_factory() as session:
            quote = await session.get(QuoteModel, review_quote_id)
        assert quote.raw_extraction["last_reviewed_by"] == "pat"
        assert quote.raw_extraction["extraction"]["quote_number"] == "Q-1001"

    async def test_partial_update_only_touches_given_fields(
        self, service, session_factory, review_quote_id
    ):
        saved = await service.save_review(
            review_quote_id, QuoteReviewUpdate(project_name="Elm Street"), reviewer="pat"
        )

        assert saved.project_name == "Elm Street"
        assert saved.quote_number == "Q-1001"
        assert len(saved.line_items) == 2
        assert [w.check for w in saved.warnings] == ["line_arithmetic"]

    async def test_retyping_line_clears_effective_price(
        self, service, session_factory, review_quote_id
    ):
        view = await _view(session_factory, review_quote_id)
        assert view.line_items[1].effective_unit_price == Decimal("1.5000")

        changes = QuoteReviewUpdate(
            line_items=_edits(view, line1={"line_type": LineType.FEE, "unit_price": None, "quantity": None})
        )
        saved = await service.save_review(review_quote_id, changes, reviewer="pat")

        assert saved.line_items[1].line_type == "fee"
        assert saved.line_items[1].effective_unit_price is None
        assert saved.line_items[1].material_id is None

    async def test_discount_rederives_effective_price(
        self, service, session_factory, review_quote_id
    ):
        view = await _view(session_factory, review_quote_id)
        changes = QuoteReviewUpdate(
            line_items=_edits(view, line0={"discount_pct": Decimal("20")})
        )

        saved = await service.save_review(review_quote_id, changes, reviewer="pat")

        assert saved.line_items[0].effective_unit_price == Decimal("4.0000")
        assert saved.warnings == []

    async def test_lines_can_be_added_and_removed(
        self, service, session_factory, review_quote_id
    ):
        view = await _view(session_factory, review_quote_id)
        edits = _edits(view)[:1] + [
            LineItemEdit(
                raw_description="Delivery",
                line_total=Decimal("10.00"),
                line_type=LineType.FEE,
            )
        ]

        saved = await service.save_review(
            review_quote_id, QuoteReviewUpdate(line_items=edits), reviewer="pat"
        )

        assert [line.raw_description for line in saved.line_items] == ["PT 2x4x8", "Delivery"]
        async with session_factory() as session:
            count = len(
                list(
                    await session.scalars(
                        select(LineItemModel.id).where(LineItemModel.quote_id == review_quote_id)
                    )
                )
            )
        assert count == 2

    async def test_foreign_line_id_is_rejected(
        self, service, session_factory, review_quote_id
    ):
        edits = [LineItemEdit(id=uuid4(), raw_description="Ghost line")]
        with pytest.raises(LineItemNotFoundError):
            await service.save_review(
                review_quote_id, QuoteReviewUpdate(line_items=edits), reviewer="pat"
            )

        view = await _view(session_factory, review_quote_id)
        assert len(view.line_items) == 2

    async def test_unknown_quote(self, service):
        with pytest.raises(QuoteNotFoundError):
            await service.save_review(uuid4(), QuoteReviewUpdate(), reviewer="pat")


class TestApproval:
    async def test_approve_dispatches_normalization_once(
        self, service, dispatcher, session_factory, review_quote_id
    ):
        outcome = await service.approve_quote(review_quote_id, approved_by="lee")

        assert outcome.already_verified is False
        assert outcome.normalization_enqueued is True
        assert dispatcher.jobs[-1] == (
            NORMALIZE_JOB,
            (str(review_quote_id),),
            normalization_job_id(review_quote_id),
        )

        again = await service.approve_quote(review_quote_id, approved_by="lee")

        assert again.already_verified is True
        assert again.normalization_enqueued is False
        assert len(dispatcher.calls(NORMALIZE_JOB)) == 1

        async with session_factory() as session:
            quote = await session.get(QuoteModel, review_quote_id)
            document = await session.get(DocumentModel, quote.document_id)
        assert quote.verified is True
        assert quote.verified_by == "lee"
        assert document.status == "approved"

    async def test_approved_quote_is_immutable(self, service, session_factory, review_quote_id):
        view = await _view(session_factory, review_quote_id)
        await service.approve_quote(review_quote_id, approved_by="lee")

        with pytest.raises(QuoteImmutableError):
            await service.save_review(review_quote_id, _fixed_review(view), reviewer="pat")

        after = await _view(session_factory, review_quote_id)
        assert after.line_items[0].line_total == Decimal("40.00")

    async def test_dispatch_failure_does_not_undo_approval(
        self, session_factory, failing_dispatcher, config, review_quote_id
    ):
        service = ReviewService(session_factory, failing_dispatcher, config)

        outcome = await service.approve_quote(review_quote_id, approved_by="lee")

        assert outcome.normalization_enqueued is False
        view = await _view(session_factory, review_quote_id)
        assert view.verified is True
        assert view.document_status == "approved"

    async def test_document_must_be_reviewable(self, service, session_factory, review_quote_id):
        async with session_factory() as session:
            quote = await session.get(QuoteModel, review_quote_id)
            await session.execute(
                update(DocumentModel)
                .where(DocumentModel.id == quote.document_id)
                .values(status="failed")
            )
            await session.commit()

        with pytest.raises(ReviewNotAllowedError):
            await service.approve_quote(review_quote_id, approved_by="lee")
        with pytest.raises(ReviewNotAllowedError):
            await service.save_review(review_quote_id, QuoteReviewUpdate(), reviewer="pat")


class TestManualMapping:
    @pytest_asyncio.fixture()
    async def normalized_quote_id(self, service, session_factory, review_quote_id, catalog):
        await service.approve_quote(review_quote_id, approved_by="lee")
        async with session_factory() as session:
            await NormalizationOrchestrator(session).normalize_quote(review_quote_id)
            await session.commit()
        return review_quote_id

    async def test_normalization_status(self, session_factory, normalized_quote_id):
        async with session_factory() as session:
            status = await get_normalization_status(session, normalized_quote_id)

        assert status.verified is True
        assert status.complete is True
        assert status.material_lines == 2
        assert status.matched == 1
        assert status.unmatched == 1

    async def test_unmatched_lines_listed(self, session_factory, normalized_quote_id):
        async with session_factory() as session:
            unmatched = await fetch_unmatched_line_items(session, "test-org")

        assert [u.raw_description for u in unmatched] == ["Galvanized joist hanger"]
        assert unmatched[0].supplier_name == "Acme Lumber"

    async def test_assign_material_records_alias(
        self, service, session_factory, normalized_quote_id, catalog
    ):
        async with session_factory() as session:
            unmatched = await fetch_unmatched_line_items(session, "test-org")
        target = catalog["deck_screws"]

        line = await service.assign_material(
            unmatched[0].line_item_id, target.id, assigned_by="maintainer"
        )

        assert line.material_id == target.id
        assert line.match_confidence == 1.0
        async with session_factory() as session:
            aliases = list(
                await session.scalars(
                    select(MaterialAliasModel).where(MaterialAliasModel.material_id == target.id)
                )
            )
            remaining = await fetch_unmatched_line_items(session, "test-org")
        assert [a.alias for a in aliases] == ["Galvanized joist hanger"]
        assert aliases[0].normalized_alias == "galvanized joist hanger"
        assert aliases[0].created_by == "maintainer"
        assert remaining == []

    async def test_renormalizing_keeps_manual_link(
        self, service, session_factory, normalized_quote_id, catalog
    ):
        async with session_factory() as session:
            unmatched = await fetch_unmatched_line_items(session, "test-org")
        line_id = unmatched[0].line_item_id
        target = catalog["deck_screws"]
        await service.assign_material(line_id, target.id, assigned_by="maintainer")
        async with session_factory() as session:
            # Without the learned alias the matcher has nothing for this line
            await session.execute(delete(MaterialAliasModel))
            await session.commit()

        async with session_factory() as session:
            summary = await NormalizationOrchestrator(session).normalize_quote(normalized_quote_id)
            await session.commit()

        assert summary.kept_manual == 1
        assert summary.matched == 2
        async with session_factory() as session:
            line = await session.get(LineItemModel, line_id)
        assert line.material_id == target.id
        assert line.match_confidence == 1.0
        assert line.matched_by == "maintainer"

        # Assigning again does not duplicate the alias
        await service.assign_material(unmatched[0].line_item_id, target.id, assigned_by="maintainer")
        async with session_factory() as session:
            count = len(
                list(
                    await session.scalars(
                        select(MaterialAliasModel.id).where(
                            MaterialAliasModel.material_id == target.id
                        )
                    )
                )
            )
        assert count == 1

    async def test_inactive_material_is_rejected(
        self, service, session_factory, normalized_quote_id, catalog
    ):
        target = catalog["pt_2x6x8"]
        async with session_factory() as session:
            await session.execute(
                update(MaterialModel)
                .where(MaterialModel.id == target.id)
                .values(is_active=False)
            )
            await session.commit()
            unmatched = await fetch_unmatched_line_items(session, "test-org")

        with pytest.raises(MaterialNotFoundError):
            await service.assign_material(
                unmatched[0].line_item_id, target.id, assigned_by="maintainer"
            )

    async def test_only_material_lines_can_be_linked(
        self, service, session_factory, review_quote_id, catalog
    ):
        view = await _view(session_factory, review_quote_id)
        changes = QuoteReviewUpdate(
            line_items=_edits(view, line1={"line_type": LineType.FEE, "unit_price": None, "quantity": None})
        )
        saved = await service.save_review(review_quote_id, changes, reviewer="pat")

        with pytest.raises(ValueError):
            await service.assign_material(
                saved.line_items[1].id, catalog["deck_screws"].id, assigned_by="maintainer"
            )
