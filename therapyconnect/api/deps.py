"""
Shared FastAPI dependencies for the credentialing API.

Provides the async database session dependency used by all route handlers
and the process-wide ``CredentialingService`` wired to the configured NPI
registry, exclusion sources and document store.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from therapyconnect.core.config import settings
from therapyconnect.integrations.npiRegistry import NPIRegistryClient
from therapyconnect.integrations.oigLeie import OIGLeieSource
from therapyconnect.integrations.samGov import SAMGovSource
from therapyconnect.services.credentialingService import CredentialingService
from therapyconnect.services.documentStore import LocalDocumentStore
from therapyconnect.services.exclusionChecker import ExclusionChecker, ExclusionDataSource
from therapyconnect.services.npiVerifier import NPIVerifier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time.  The session factory
# produces lightweight ``AsyncSession`` instances that are scoped to a single
# request via the ``get_db`` dependency below.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session that commits when the request
    succeeds and rolls back on any error.

    Usage in a route::

        @router.get("/items")
        async def list_items(db: DBSession):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ---------------------------------------------------------------------------
# Credentialing service
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_npi_registry_client() -> NPIRegistryClient:
    return NPIRegistryClient()


@lru_cache(maxsize=1)
def get_credentialing_service() -> CredentialingService:
    """Build the shared service once per process.

    The per-provider lock registry lives on this instance, so it must be a
    singleton within the process.
    """
    sources: list[ExclusionDataSource] = [OIGLeieSource(async_session_factory)]
    if settings.sam_api_key:
        sources.append(SAMGovSource())
    else:
        logger.warning("SAM_API_KEY not set; SAM.gov exclusion screening disabled")

    return CredentialingService(
        npi_verifier=NPIVerifier(get_npi_registry_client()),
        exclusion_checker=ExclusionChecker(sources),
        document_store=LocalDocumentStore(),
    )


# ---------------------------------------------------------------------------
# Annotated type aliases for convenience
# ---------------------------------------------------------------------------
DBSession = Annotated[AsyncSession, Depends(get_db)]
Service = Annotated[CredentialingService, Depends(get_credentialing_service)]
Registry = Annotated[NPIRegistryClient, Depends(get_npi_registry_client)]
