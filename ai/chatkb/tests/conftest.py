"""Shared fixtures for chatkb tests."""

import pytest

from chatkb.tests.fakes import FakeEmbeddingProvider, make_resolver
from chatkb.vector.store import InMemoryKnowledgeStore


@pytest.fixture
def store():
    return InMemoryKnowledgeStore()


@pytest.fixture
def embedder():
    return FakeEmbeddingProvider()


@pytest.fixture
def public_resolver():
    return make_resolver(
        {
            "example.com": ["93.184.216.34", "2606:2800:220:1:248:1893:25c8:1946"],
            "www.example.com": ["93.184.216.34"],
            "cdn.example.net": ["151.101.1.1"],
            "rebind.example.com": ["93.184.216.34", "10.0.0.5"],
            "internal.example.com": ["127.0.0.1"],
            "metadata.example.com": ["169.254.169.254"],
            "mapped.example.com": ["::ffff:192.168.1.10"],
            "v6private.example.com": ["fd12:3456:789a::1"],
            "empty.example.com": [],
        }
    )
