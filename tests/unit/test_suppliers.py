"""Tests for supplier resolution."""

from sqlalchemy import func, select

from mpintel.db.models import SupplierModel
from mpintel.ingestion.suppliers import find_or_create_supplier, normalize_supplier_name
from mpintel.models import ExtractedSupplier


def test_normalize_supplier_name():
    assert normalize_supplier_name("  Acme   LUMBER Co ") == "acme lumber co"


async def test_creates_supplier_with_contact_details(db_session):
    supplier = await find_or_create_supplier(
        db_session,
        "test-org",
        ExtractedSupplier(name="Acme Lumber", contact_email="sales@acme.test"),
    )
    await db_session.commit()

    assert supplier.id is not None
    assert supplier.normalized_name == "acme lumber"
    assert supplier.contact_email == "sales@acme.test"


async def test_reuses_supplier_by_normalized_name(db_session):
    first = await find_or_create_supplier(
        db_session, "test-org", ExtractedSupplier(name="Acme Lumber")
    )
    second = await find_or_create_supplier(
        db_session, "test-org", ExtractedSupplier(name="ACME  lumber")
    )
    await db_session.commit()

    assert second.id == first.id
    assert second.name == "Acme Lumber"
    assert await db_session.scalar(select(func.count(SupplierModel.id))) == 1


async def test_suppliers_are_per_org(db_session):
    ours = await find_or_create_supplier(
        db_session, "test-org", ExtractedSupplier(name="Acme Lumber")
    )
    theirs = await find_or_create_supplier(
        db_session, "other-org", ExtractedSupplier(name="Acme Lumber")
    )

    assert ours.id != theirs.id
