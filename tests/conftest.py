"""Shared test fixtures for bookkeeper tests."""
import pytest

from tests.factories import TODAY, FakeRepository


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def fake_repository():
    return FakeRepository()
