"""
Credential Document Expiry Checker -- Daily Scheduled Job.

This module provides a daily cron job that:

1. Re-evaluates every non-rejected credential profile against today's date and
   suspends profiles whose current required documents have expired.  Each
   profile commits on its own; one that fails is rolled back, logged and
   skipped.
2. Sends advance warning notifications for documents entering the
   expiring-soon window.

The sweep only ever demotes.  It never promotes a profile; promotions happen
only in response to provider or admin actions.

Usage with a simple cron runner::

    python -m therapyconnect.jobs.expiryChecker
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from therapyconnect.models import CredentialingStatus, CredentialProfile
from therapyconnect.services.credentialingService import CredentialingService, StatusChange
from therapyconnect.services.documentLifecycle import ValidityState
from therapyconnect.services.reviewQueue import list_expiration_alerts

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweepResult:
    profiles_checked: int = 0
    profiles_suspended: int = 0
    profiles_failed: int = 0
    expiring_soon_warnings: int = 0
    expired_documents: int = 0
    suspended: list[StatusChange] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Notification stubs
# ---------------------------------------------------------------------------

async def _send_expiry_warning_notification(
    provider_id: str,
    document_type: str,
    expiry_date: date,
    days_remaining: int,
) -> None:
    """Send an email warning about an upcoming document expiry.

    This is a stub.  In production, this would hand off to the transactional
    email provider.
    """
    logger.info(
        "NOTIFICATION STUB: expiry warning for provider %s -- "
        "'%s' expires on %s (%d days remaining)",
        provider_id,
        document_type,
        expiry_date.isoformat(),
        days_remaining,
    )


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------

async def suspend_expired_profiles(
    db: AsyncSession,
    service: CredentialingService,
    result: ExpirySweepResult,
) -> None:
    stmt = (
        select(CredentialProfile.provider_id)
        .where(CredentialProfile.status != CredentialingStatus.REJECTED)
        .order_by(CredentialProfile.provider_id)
    )
    provider_ids = (await db.execute(stmt)).scalars().all()

    for provider_id in provider_ids:
        try:
            change = await service.reevaluate(db, provider_id, trigger="expiry_sweep")
        except Exception:
            await db.rollback()
            result.profiles_failed += 1
            logger.exception("Expiry re-evaluation failed for provider %s", provider_id)
            continue
        result.profiles_checked += 1
        if change.changed:
            result.profiles_suspended += 1
            result.suspended.append(change)


async def send_expiry_warnings(
    db: AsyncSession,
    service: CredentialingService,
    result: ExpirySweepResult,
    *,
    warning_days: Optional[int] = None,
) -> None:
    alerts = await list_expiration_alerts(db, now=service.now(), warning_days=warning_days)
    for provider in alerts:
        if provider.status is CredentialingStatus.REJECTED:
            continue
        for alert in provider.alerts:
            if alert.state is ValidityState.EXPIRED:
                result.expired_documents += 1
                continue
            await _send_expiry_warning_notification(
                provider_id=str(provider.provider_id),
                document_type=alert.document_type.value,
                expiry_date=alert.declared_expiration,
                days_remaining=alert.days_remaining,
            )
            result.expiring_soon_warnings += 1


async def run_daily_expiry_check(
    db: AsyncSession,
    service: Optional[CredentialingService] = None,
    *,
    warning_days: Optional[int] = None,
) -> ExpirySweepResult:
    """Execute the full daily expiry workflow.

    Args:
        db: Async database session.  Each profile is committed as it is
            re-evaluated.
        service: Credentialing service; its clock is the reference time.
        warning_days: Override of the expiring-soon lead window.
    """
    if service is None:
        from therapyconnect.api.deps import get_credentialing_service

        service = get_credentialing_service()

    logger.info("Starting daily expiry check at %s", service.now().isoformat())

    result = ExpirySweepResult()
    await suspend_expired_profiles(db, service, result)
    await send_expiry_warnings(db, service, result, warning_days=warning_days)

    logger.info(
        "Daily expiry check completed. Checked: %d, suspended: %d, failed: %d, "
        "expired documents: %d, warnings: %d",
        result.profiles_checked,
        result.profiles_suspended,
        result.profiles_failed,
        result.expired_documents,
        result.expiring_soon_warnings,
    )
    return result


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    from therapyconnect.api.deps import async_session_factory

    async with async_session_factory() as session:
        try:
            result = await run_daily_expiry_check(session)
            await session.commit()
            print(f"Expiry check completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Expiry check failed")
            raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
