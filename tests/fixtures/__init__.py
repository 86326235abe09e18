"""Test fixtures for header sync tests."""

from .headers import (
    RoutingTransport,
    make_client,
    make_headers,
    make_source,
)

__all__ = [
    "RoutingTransport",
    "make_client",
    "make_headers",
    "make_source",
]
