"""Pytest configuration and shared fixtures for all tests."""

import pytest

from tests.fixtures.headers import make_headers, make_source


# =============================================================================
# Header chains
# =============================================================================

@pytest.fixture
def headers():
    """Linked synthetic headers for heights 0..1200."""
    return make_headers(1201)


@pytest.fixture
def source(headers):
    """A single header server holding the full synthetic chain."""
    return make_source(headers)


@pytest.fixture
def two_sources(headers):
    """Two independent servers holding the same chain."""
    return {
        "10.0.0.1": make_source(headers),
        "10.0.0.2": make_source(headers),
    }
