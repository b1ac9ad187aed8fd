"""
Shared pytest fixtures for the credentialing test suite.

Provides a controllable clock and in-memory fakes for the NPI registry,
exclusion sources and document store, plus a ``CredentialingService``
wired to all of them.
"""

from datetime import datetime, timezone

import pytest

from therapyconnect.services.credentialingService import CredentialingService
from therapyconnect.services.exclusionChecker import ExclusionChecker
from therapyconnect.services.npiVerifier import NPIVerifier
from tests.fakes import FakeClock, FakeExclusionSource, FakeRegistry, InMemoryDocumentStore


START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def exclusion_source() -> FakeExclusionSource:
    return FakeExclusionSource()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def service(
    registry: FakeRegistry,
    exclusion_source: FakeExclusionSource,
    document_store: InMemoryDocumentStore,
    clock: FakeClock,
) -> CredentialingService:
    return CredentialingService(
        npi_verifier=NPIVerifier(registry, clock=clock),
        exclusion_checker=ExclusionChecker([exclusion_source], timeout_seconds=5, clock=clock),
        document_store=document_store,
        clock=clock,
    )
