"""Fixtures for route tests: a bare app with the routers and overridden dependencies."""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from mpintel.matching.orchestrator import NormalizationOrchestrator
from mpintel.review.service import ReviewService
from mpintel.web.app import _register_exception_handlers
from mpintel.web.dependencies import (
    get_app_config,
    get_dispatcher,
    get_notifier,
    get_session_maker,
    get_storage,
)
from mpintel.web.routes import documents, health, materials, prices, quotes


@pytest.fixture
def app(session_factory, storage, dispatcher, config):
    """Create test FastAPI app with every router."""
    test_app = FastAPI()
    _register_exception_handlers(test_app)
    for module in (health, documents, quotes, prices, materials):
        test_app.include_router(module.router)

    test_app.dependency_overrides[get_session_maker] = lambda: session_factory
    test_app.dependency_overrides[get_storage] = lambda: storage
    test_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    test_app.dependency_overrides[get_notifier] = lambda: None
    test_app.dependency_overrides[get_app_config] = lambda: config
    return test_app


@pytest_asyncio.fixture()
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client


async def _extracted_quote_id(controller, extractor) -> str:
    document = await controller.create_document(
        org_id="test-org",
        file_name="quote.pdf",
        content=b"pdf",
        content_type="application/pdf",
    )
    await controller.process_document(document.id, extractor)
    return (await controller.get_document_status(document.id)).quote_id


@pytest_asyncio.fixture()
async def review_quote_id(controller, bad_line_extraction, fake_extractor):
    """Quote routed to review: one line total is wrong, one line has no catalog match."""
    return await _extracted_quote_id(controller, fake_extractor(bad_line_extraction))


@pytest_asyncio.fixture()
async def normalized_quote_id(session_factory, dispatcher, config, review_quote_id, catalog):
    """The review quote approved and matched against the catalog."""
    await ReviewService(session_factory, dispatcher, config).approve_quote(
        review_quote_id, approved_by="lee"
    )
    async with session_factory() as session:
        await NormalizationOrchestrator(session).normalize_quote(review_quote_id)
        await session.commit()
    return review_quote_id
