"""Test helpers: in-memory repository, scripted provider and data factories."""

from tests.helpers.factories import (
    make_company,
    make_invoice,
    make_item,
    make_manifest,
    make_order,
    make_processing_error,
)
from tests.helpers.fake_provider import FakeProvider
from tests.helpers.fake_repository import InMemoryRepository

__all__ = [
    "FakeProvider",
    "InMemoryRepository",
    "make_company",
    "make_invoice",
    "make_item",
    "make_manifest",
    "make_order",
    "make_processing_error",
]
