"""Tests for the public names re-exported by mpintel subpackages."""

import importlib

import pytest

from mpintel.ingestion import DocumentLifecycleController, find_or_create_supplier
from mpintel.ingestion.lifecycle import DocumentLifecycleController as LifecycleImpl
from mpintel.reporting import search_verified_prices
from mpintel.reporting.price_queries import search_verified_prices as search_impl
from mpintel.review import ReviewService, fetch_unmatched_line_items
from mpintel.review.service import ReviewService as ReviewImpl


@pytest.mark.parametrize(
    "package", ["mpintel.db", "mpintel.ingestion", "mpintel.reporting", "mpintel.review"]
)
def test_exported_names_resolve(package):
    module = importlib.import_module(package)

    assert module.__all__
    for name in module.__all__:
        assert getattr(module, name) is not None, f"{package}.{name}"


def test_reexports_are_the_implementations():
    assert DocumentLifecycleController is LifecycleImpl
    assert ReviewService is ReviewImpl
    assert search_verified_prices is search_impl
    assert callable(find_or_create_supplier)
    assert callable(fetch_unmatched_line_items)
