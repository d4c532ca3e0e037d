"""Pytest configuration and fixtures for mpintel tests.

Every test runs against its own file-backed SQLite database under
``tmp_path`` with the local (in-process) queue backend.
"""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mpintel.config import AppConfig, get_config, reset_config
from mpintel.db.connection import build_engine
from mpintel.db.models import Base, MaterialCategoryModel, MaterialModel
from mpintel.exceptions import DispatchError
from mpintel.ingestion.lifecycle import DocumentLifecycleController
from mpintel.ingestion.storage import InMemoryObjectStorage
from mpintel.models import ExtractionResult


@pytest.fixture(autouse=True)
def app_env(monkeypatch, tmp_path):
    """Isolated environment: test org, local queue, per-test database."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'mpintel.db'}")
    monkeypatch.setenv("DEFAULT_ORG_ID", "test-org")
    monkeypatch.setenv("QUEUE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "uploads"))
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("SLACK_NOTIFICATIONS_ENABLED", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def test_org_id() -> str:
    """Test organization ID."""
    return "test-org"


@pytest.fixture
def config() -> AppConfig:
    return get_config()


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """File-backed SQLite engine with the schema created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory) -> AsyncSession:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


class RecordingDispatcher:
    """Dispatcher that records submissions instead of running them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.jobs: list[tuple[str, tuple[Any, ...], str | None]] = []
        self._job_ids: set[str] = set()

    async def enqueue(self, function: str, *args: Any, job_id: str | None = None) -> bool:
        if self.fail:
            raise DispatchError("redis unavailable")
        if job_id is not None:
            if job_id in self._job_ids:
                return False
            self._job_ids.add(job_id)
        self.jobs.append((function, args, job_id))
        return True

    def calls(self, function: str) -> list[tuple[Any, ...]]:
        return [args for name, args, _ in self.jobs if name == function]


class FakeExtractor:
    """Returns a canned result, or raises, and counts calls."""

    def __init__(self, result: ExtractionResult | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = 0

    async def extract(self, content: bytes, file_name: str, content_type: str) -> ExtractionResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher(fail=True)


@pytest.fixture
def controller(session_factory, storage, dispatcher, config) -> DocumentLifecycleController:
    return DocumentLifecycleController(
        session_factory=session_factory,
        storage=storage,
        dispatcher=dispatcher,
        config=config,
    )


@pytest.fixture
def make_extraction():
    """Factory for extraction results; defaults describe a clean quote.

    One material line: PT 2x4x8, 10 x 5.00 = 50.00; subtotal 50.00,
    delivery 0.00, 7% tax 3.50, total 53.50.
    """

    def _make(**overrides: Any) -> ExtractionResult:
        payload: dict[str, Any] = {
            "supplier": {"name": "Acme Lumber", "contact_email": "sales@acme.test"},
            "quote_number": "Q-1001",
            "quote_date": "2026-03-02",
            "project_name": "Oak Street",
            "line_items": [
                {
                    "raw_description": "PT 2x4x8",
                    "quantity": "10",
                    "unit": "ea",
                    "unit_price": "5.00",
                    "line_total": "50.00",
                    "line_type": "material",
                    "confidence": 0.95,
                }
            ],
            "totals": {
                "subtotal": "50.00",
                "delivery_cost": "0.00",
                "tax_amount": "3.50",
                "tax_rate": "0.07",
                "total_amount": "53.50",
            },
            "overall_confidence": 0.95,
        }
        payload.update(overrides)
        return ExtractionResult.model_validate(payload)

    return _make


@pytest.fixture
def bad_line_extraction(make_extraction) -> ExtractionResult:
    """10 x 5.00 stated as 40.00; otherwise consistent."""
    return make_extraction(
        line_items=[
            {
                "raw_description": "PT 2x4x8",
                "quantity": "10",
                "unit": "ea",
                "unit_price": "5.00",
                "line_total": "40.00",
                "confidence": 0.95,
            },
            {
                "raw_description": "Galvanized joist hanger",
                "quantity": "20",
                "unit": "ea",
                "unit_price": "1.50",
                "line_total": "30.00",
                "confidence": 0.95,
            },
        ],
        totals={
            "subtotal": "70.00",
            "delivery_cost": "10.00",
            "tax_amount": "4.90",
            "tax_rate": "0.07",
            "total_amount": "84.90",
        },
    )


@pytest.fixture
def fake_extractor():
    """Build a ``FakeExtractor`` returning ``result`` or raising ``error``."""

    def _make(result: ExtractionResult | None = None, error: Exception | None = None):
        return FakeExtractor(result=result, error=error)

    return _make


@pytest_asyncio.fixture()
async def catalog(session_factory, test_org_id):
    """Lumber and hardware categories with a few active materials."""
    lumber = MaterialCategoryModel(name="lumber", display_name="Lumber", sort_order=1)
    hardware = MaterialCategoryModel(name="hardware", display_name="Hardware", sort_order=2)
    materials = {
        "pt_2x4x8": MaterialModel(
            org_id=test_org_id,
            category=lumber,
            canonical_name="Pressure Treated 2x4x8",
            unit_of_measure="ea",
            synonyms=["PT 2x4 8ft"],
        ),
        "pt_2x6x8": MaterialModel(
            org_id=test_org_id,
            category=lumber,
            canonical_name="Pressure Treated 2x6x8",
            unit_of_measure="ea",
        ),
        "deck_screws": MaterialModel(
            org_id=test_org_id,
            category=hardware,
            canonical_name="Deck Screws 3in 5lb Box",
            unit_of_measure="box",
        ),
    }
    async with session_factory() as session:
        session.add_all([lumber, hardware, *materials.values()])
        await session.commit()
    return materials
