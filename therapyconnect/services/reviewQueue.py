"""
Admin Review Queue -- TC-CRED-006
==================================

Read-only projections for administrators:

- ``list_review_queue``: profiles in pending_review, oldest entry first.
- ``list_expiration_alerts``: current documents that are expiring soon or
  already expired, grouped by provider.

Both are computed on read from the stored documents and the reference time;
nothing here writes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from therapyconnect.models import (
    AdminDecision,
    CredentialDocument,
    CredentialingStatus,
    CredentialProfile,
    DecisionType,
    DocumentType,
)
from therapyconnect.services.documentLifecycle import (
    ValidityState,
    assess_completeness,
    days_until_expiration,
    evaluate,
)


def awaiting_provider_info(
    decision: Optional[AdminDecision],
    documents: Iterable[CredentialDocument],
    npi_submitted_at: Optional[datetime],
) -> bool:
    """True while a request-more-info decision has not been answered by a
    document or NPI submission made after it."""
    if decision is None or decision.decision is not DecisionType.REQUEST_MORE_INFO:
        return False
    if npi_submitted_at is not None and npi_submitted_at > decision.decided_at:
        return False
    return not any(d.uploaded_at > decision.decided_at for d in documents)


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReviewQueueItem:
    provider_id: uuid.UUID
    legal_name: Optional[str]
    npi_number: Optional[str]
    entered_review_at: datetime
    review_cycle: int
    awaiting_provider_info: bool
    last_decision: Optional[DecisionType] = None


async def list_review_queue(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> list[ReviewQueueItem]:
    """Profiles awaiting an admin decision, ordered by time of entry into
    review (oldest first).

    Profiles whose required documents have expired since they entered review
    are left out; the next status read or expiry sweep demotes them.
    """
    reference = now or datetime.now(timezone.utc)

    stmt = (
        select(CredentialProfile)
        .where(CredentialProfile.status == CredentialingStatus.PENDING_REVIEW)
        .options(
            selectinload(CredentialProfile.documents),
            selectinload(CredentialProfile.decisions),
        )
        .order_by(CredentialProfile.status_changed_at.asc(), CredentialProfile.provider_id)
        .execution_options(populate_existing=True)
    )
    profiles = (await db.execute(stmt)).scalars().all()

    items: list[ReviewQueueItem] = []
    for profile in profiles:
        if assess_completeness(profile.documents, reference).expired_types:
            continue

        cycle_decisions = [d for d in profile.decisions if d.review_cycle == profile.review_cycle]
        latest = cycle_decisions[-1] if cycle_decisions else None

        items.append(
            ReviewQueueItem(
                provider_id=profile.provider_id,
                legal_name=profile.legal_name,
                npi_number=profile.npi_number,
                entered_review_at=profile.status_changed_at,
                review_cycle=profile.review_cycle,
                awaiting_provider_info=awaiting_provider_info(
                    latest, profile.documents, profile.npi_submitted_at
                ),
                last_decision=latest.decision if latest else None,
            )
        )
        if limit is not None and len(items) >= limit:
            break
    return items


# ---------------------------------------------------------------------------
# Expiration alerts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DocumentAlert:
    document_id: uuid.UUID
    document_type: DocumentType
    declared_expiration: date
    state: ValidityState
    days_remaining: int


@dataclass(frozen=True)
class ProviderExpirationAlerts:
    provider_id: uuid.UUID
    legal_name: Optional[str]
    status: CredentialingStatus
    alerts: tuple[DocumentAlert, ...]


async def list_expiration_alerts(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    warning_days: Optional[int] = None,
) -> list[ProviderExpirationAlerts]:
    """Current documents in ``expiring_soon`` or ``expired``, grouped by
    provider, most urgent provider first."""
    reference = now or datetime.now(timezone.utc)

    stmt = (
        select(CredentialDocument, CredentialProfile)
        .join(CredentialProfile, CredentialProfile.provider_id == CredentialDocument.provider_id)
        .where(
            CredentialDocument.superseded_by_id.is_(None),
            CredentialDocument.declared_expiration.is_not(None),
        )
        .order_by(CredentialDocument.declared_expiration.asc(), CredentialDocument.id)
    )
    rows = (await db.execute(stmt)).all()

    grouped: dict[uuid.UUID, tuple[CredentialProfile, list[DocumentAlert]]] = {}
    for document, profile in rows:
        state = evaluate(document, reference, warning_days=warning_days)
        if state not in (ValidityState.EXPIRING_SOON, ValidityState.EXPIRED):
            continue
        _, alerts = grouped.setdefault(profile.provider_id, (profile, []))
        alerts.append(
            DocumentAlert(
                document_id=document.id,
                document_type=document.document_type,
                declared_expiration=document.declared_expiration,
                state=state,
                days_remaining=days_until_expiration(document.declared_expiration, reference),
            )
        )

    # Insertion order follows the earliest expiration per provider
    return [
        ProviderExpirationAlerts(
            provider_id=profile.provider_id,
            legal_name=profile.legal_name,
            status=profile.status,
            alerts=tuple(alerts),
        )
        for profile, alerts in grouped.values()
    ]
