"""Shared fixtures."""

import pytest

from tests.fakes import FakeFetcher, FakeRenderer


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()
