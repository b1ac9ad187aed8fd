"""
Verification Re-check & LEIE Import -- Scheduled Jobs.

``run_exclusion_recheck`` retries outstanding verification for:

- pending_verification profiles whose NPI lookup never got an answer from
  the registry, or whose exclusion result is missing, indeterminate or stale
  (retries after an outage), and
- approved profiles whose clear result has aged past the freshness window.

Each profile is handled in its own transaction.  A failure for one profile is
logged, rolled back and counted; the run continues with the next one.

A new match on an approved profile is logged as critical for the admin
on call; it does not change the profile's status on its own.

``run_leie_import`` downloads the monthly OIG LEIE CSV and replaces the
local exclusion table.

Usage::

    python -m therapyconnect.jobs.exclusionRecheck            # re-check
    python -m therapyconnect.jobs.exclusionRecheck --import-leie
"""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from therapyconnect.integrations.oigLeie import download_leie_csv, import_leie_csv
from therapyconnect.models import CredentialingStatus, CredentialProfile, ExclusionOutcome
from therapyconnect.services.credentialingService import (
    CredentialingService,
    ProfileStatusView,
)
from therapyconnect.services.credentialingStateMachine import ExclusionStanding, NPIStanding

logger = logging.getLogger(__name__)


@dataclass
class ExclusionRecheckResult:
    profiles_considered: int = 0
    rechecked: int = 0
    npi_retried: int = 0
    npi_verified: int = 0
    clear: int = 0
    matches: int = 0
    indeterminate: int = 0
    promoted: int = 0
    failed: int = 0


_RECHECK_STANDINGS = {
    CredentialingStatus.PENDING_VERIFICATION: {
        ExclusionStanding.MISSING,
        ExclusionStanding.INDETERMINATE,
        ExclusionStanding.STALE,
    },
    CredentialingStatus.APPROVED: {ExclusionStanding.STALE},
}


def _needs_recheck(view: ProfileStatusView) -> bool:
    if (
        view.status is CredentialingStatus.PENDING_VERIFICATION
        and view.npi_standing is NPIStanding.PENDING
    ):
        return True
    return view.exclusion_standing in _RECHECK_STANDINGS.get(view.status, set())


async def _recheck_one(
    db: AsyncSession,
    service: CredentialingService,
    provider_id: uuid.UUID,
    result: ExclusionRecheckResult,
) -> None:
    view = await service.get_profile_status(db, provider_id)
    if not _needs_recheck(view):
        return

    recheck = await service.recheck_verification(db, provider_id)
    if view.npi_standing is NPIStanding.PENDING:
        result.npi_retried += 1
        if recheck.verification is not None:
            result.npi_verified += 1
    if not recheck.rechecked:
        return

    result.rechecked += 1

    check = recheck.exclusion
    if check is not None:
        if check.outcome is ExclusionOutcome.MATCH:
            result.matches += 1
        elif check.outcome is ExclusionOutcome.INDETERMINATE:
            result.indeterminate += 1
        else:
            result.clear += 1

    change = recheck.status_change
    if change.status is CredentialingStatus.PENDING_REVIEW and change.changed:
        result.promoted += 1


async def run_exclusion_recheck(
    db: AsyncSession,
    service: Optional[CredentialingService] = None,
) -> ExclusionRecheckResult:
    if service is None:
        from therapyconnect.api.deps import get_credentialing_service

        service = get_credentialing_service()

    stmt = (
        select(CredentialProfile.provider_id)
        .where(CredentialProfile.status.in_(list(_RECHECK_STANDINGS)))
        .order_by(CredentialProfile.provider_id)
    )
    provider_ids = (await db.execute(stmt)).scalars().all()
    result = ExclusionRecheckResult(profiles_considered=len(provider_ids))

    for provider_id in provider_ids:
        try:
            await _recheck_one(db, service, provider_id, result)
        except Exception:
            await db.rollback()
            result.failed += 1
            logger.exception("Verification re-check failed for provider %s", provider_id)

    logger.info(
        "Exclusion re-check completed: considered=%d rechecked=%d npi_retried=%d "
        "npi_verified=%d clear=%d match=%d indeterminate=%d promoted=%d failed=%d",
        result.profiles_considered,
        result.rechecked,
        result.npi_retried,
        result.npi_verified,
        result.clear,
        result.matches,
        result.indeterminate,
        result.promoted,
        result.failed,
    )
    return result


async def run_leie_import(db: AsyncSession, url: Optional[str] = None) -> int:
    csv_text = await download_leie_csv(url)
    return await import_leie_csv(db, csv_text)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

async def _cli_main(import_leie: bool) -> None:
    from therapyconnect.api.deps import async_session_factory

    async with async_session_factory() as session:
        try:
            if import_leie:
                count = await run_leie_import(session)
                print(f"Imported {count} LEIE records")  # noqa: T201
            else:
                result = await run_exclusion_recheck(session)
                print(f"Exclusion re-check completed: {result}")  # noqa: T201
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Exclusion job failed")
            raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main(import_leie="--import-leie" in sys.argv[1:]))
