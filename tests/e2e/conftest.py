"""
E2E test fixtures for the credentialing backend.

Provides:
- A file-backed async SQLite database per test with all tables created
- A session factory and a test session bound to it
- An in-process FastAPI app wired via httpx ``ASGITransport``, with the
  database, credentialing service and NPI registry client overridden
- Helpers that walk a provider through document and NPI submission

External services (NPI registry, exclusion lists, document storage) are the
in-memory fakes from ``tests.fakes`` so the full route -> service -> DB flow
is exercised without network access.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import AsyncGenerator, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from therapyconnect.integrations.npiRegistry import NPIRegistryClient
from therapyconnect.models import Base, DocumentType
from therapyconnect.services.credentialingService import CredentialingService, NPISubmission
from therapyconnect.services.documentLifecycle import FileUpload
from tests.fakes import PDF_BYTES, VALID_NPI

# Default document expirations relative to tests.conftest.START (2026-01-05)
LICENSE_EXPIRES = date(2027, 1, 5)
LIABILITY_EXPIRES = date(2026, 7, 5)

SEARCH_RESULT = {
    "number": VALID_NPI,
    "enumeration_type": "NPI-1",
    "basic": {"first_name": "JANE", "last_name": "DOE", "credential": "LCSW", "status": "A"},
    "taxonomies": [{"code": "1041C0700X", "desc": "Social Worker, Clinical", "primary": True}],
    "addresses": [{"address_purpose": "LOCATION", "city": "SPRINGFIELD", "state": "IL"}],
}


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path):
    """One SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'credentialing.db'}")

    # SQLite does not enforce foreign keys by default
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=sqlite_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session whose work is rolled back at the end of the test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _search_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"result_count": 1, "results": [SEARCH_RESULT]})


@pytest.fixture
def registry_client() -> NPIRegistryClient:
    return NPIRegistryClient(
        "https://registry.test/api/",
        "2.1",
        max_retries=1,
        initial_backoff=0,
        transport=httpx.MockTransport(_search_handler),
    )


@pytest_asyncio.fixture
async def client(
    session_factory, service: CredentialingService, registry_client: NPIRegistryClient
) -> AsyncGenerator[AsyncClient, None]:
    from therapyconnect.api.deps import get_credentialing_service, get_db, get_npi_registry_client
    from therapyconnect.main import app

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_credentialing_service] = lambda: service
    app.dependency_overrides[get_npi_registry_client] = lambda: registry_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Workflow helpers
# ---------------------------------------------------------------------------


def pdf_upload(file_name: str = "document.pdf", content: bytes = PDF_BYTES) -> FileUpload:
    return FileUpload(file_name=file_name, mime_type="application/pdf", content=content)


async def submit_required_documents(
    service: CredentialingService,
    db: AsyncSession,
    provider_id: uuid.UUID,
    *,
    license_expires: date = LICENSE_EXPIRES,
    liability_expires: date = LIABILITY_EXPIRES,
) -> None:
    await service.submit_document(
        db, provider_id, DocumentType.LICENSE, pdf_upload("license.pdf"), license_expires
    )
    await service.submit_document(
        db,
        provider_id,
        DocumentType.LIABILITY_INSURANCE,
        pdf_upload("liability.pdf"),
        liability_expires,
    )


async def bring_to_review(
    service: CredentialingService,
    db: AsyncSession,
    provider_id: Optional[uuid.UUID] = None,
    *,
    npi_number: str = VALID_NPI,
    legal_name: str = "Jane Doe",
    liability_expires: date = LIABILITY_EXPIRES,
) -> tuple[uuid.UUID, NPISubmission]:
    """Submit complete documents and an NPI.  The caller registers the NPI
    with the fake registry first."""
    provider_id = provider_id or uuid.uuid4()
    await submit_required_documents(
        service, db, provider_id, liability_expires=liability_expires
    )
    result = await service.submit_npi(db, provider_id, npi_number, legal_name)
    return provider_id, result
