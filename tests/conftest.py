"""Shared fixtures for contact sync tests.

Fixtures wrap the in-memory test doubles from tests/fakes.py:
- contacts: InMemoryContactStore
- mappings: InMemoryMappingStore bound to the same contacts
- link_store: InMemoryLinkStore holding the default spreadsheet link
"""

from __future__ import annotations

import pytest

from tests.fakes import (
    InMemoryContactStore,
    InMemoryLinkStore,
    InMemoryMappingStore,
    make_link,
)


@pytest.fixture
def contacts() -> InMemoryContactStore:
    return InMemoryContactStore()


@pytest.fixture
def mappings(contacts) -> InMemoryMappingStore:
    return InMemoryMappingStore(contacts)


@pytest.fixture
def link_store() -> InMemoryLinkStore:
    return InMemoryLinkStore([make_link()])
