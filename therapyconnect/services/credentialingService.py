"""
Credentialing Service -- TC-CRED-005
=====================================

Orchestrates the provider credentialing workflow: document submission, NPI
and DEA submission, external verification, admin decisions and status reads.

Every state-changing operation for a provider runs under that provider's
lock and re-reads the profile row ``FOR UPDATE`` before acting.  After each
change the service recomputes the derived status from the facts on record
(``credentialingStateMachine.settle``), logs every transition and, when the
profile sits in pending_verification with a missing or outdated result,
runs the NPI and exclusion checks concurrently.

Each provider operation commits before the provider lock is released, so
the next holder of the lock always reads the previous holder's writes.  On
error nothing is committed and the caller's session (``get_db``) rolls back.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import AsyncIterator, Callable, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import (
    CredentialingInputError,
    DocumentNotFound,
    InvalidTransition,
    MissingReason,
    ProfileNotFound,
    VerificationUnavailable,
)
from therapyconnect.models import (
    AdminDecision,
    CredentialDocument,
    CredentialingStatus,
    CredentialProfile,
    DEAValidation,
    DecisionType,
    DocumentType,
    ExclusionCheck,
    ExclusionOutcome,
    NPIVerification,
    StatusTransition,
)
from therapyconnect.services.credentialingStateMachine import (
    NPI_EDITABLE_STATUSES,
    CredentialingFacts,
    ExclusionStanding,
    NPIStanding,
    TransitionStep,
    blocking_reasons,
    settle,
)
from therapyconnect.services.deaValidator import DEAValidationResult, validate_dea_number
from therapyconnect.services.documentLifecycle import (
    FileUpload,
    ValidityState,
    assess_completeness,
    current_documents,
    days_until_expiration,
    evaluate,
    validate_submission,
)
from therapyconnect.services.documentStore import DocumentStore
from therapyconnect.services.exclusionChecker import ExclusionChecker, ExclusionCheckResult
from therapyconnect.services.npiVerifier import (
    NPIVerifier,
    VerificationResult,
    check_npi_candidate,
)
from therapyconnect.services.providerLocks import ProviderLockRegistry
from therapyconnect.services.reviewQueue import awaiting_provider_info

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatusChange:
    provider_id: uuid.UUID
    previous_status: CredentialingStatus
    status: CredentialingStatus
    steps: tuple[TransitionStep, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.steps)


@dataclass(frozen=True)
class DocumentSubmission:
    document: CredentialDocument
    validity: ValidityState
    status_change: StatusChange
    superseded: Optional[CredentialDocument] = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class NPISubmission:
    npi_number: str
    status_change: StatusChange
    verification: Optional[VerificationResult] = None
    exclusion: Optional[ExclusionCheckResult] = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class VerificationRecheck:
    status_change: StatusChange
    verification: Optional[VerificationResult] = None
    exclusion: Optional[ExclusionCheckResult] = None
    warnings: tuple[str, ...] = ()

    @property
    def rechecked(self) -> bool:
        return self.verification is not None or self.exclusion is not None


@dataclass(frozen=True)
class DecisionOutcome:
    decision: AdminDecision
    changed: bool
    status_change: StatusChange


@dataclass(frozen=True)
class DocumentView:
    document_id: uuid.UUID
    document_type: DocumentType
    file_name: str
    mime_type: str
    size_bytes: int
    declared_expiration: Optional[date]
    uploaded_at: datetime
    validity: ValidityState
    days_until_expiration: Optional[int] = None
    superseded_at: Optional[datetime] = None
    superseded_by_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class ProfileStatusView:
    provider_id: uuid.UUID
    status: CredentialingStatus
    status_changed_at: datetime
    review_cycle: int
    legal_name: Optional[str]
    npi_number: Optional[str]
    documents: tuple[DocumentView, ...]
    missing_required_types: tuple[DocumentType, ...]
    expired_required_types: tuple[DocumentType, ...]
    blocking_reasons: tuple[str, ...]
    npi_verification: Optional[VerificationResult] = None
    npi_standing: NPIStanding = NPIStanding.MISSING
    exclusion_check: Optional[ExclusionCheckResult] = None
    exclusion_standing: ExclusionStanding = ExclusionStanding.MISSING
    dea_number: Optional[str] = None
    dea_validation: Optional[DEAValidationResult] = None
    latest_decision: Optional[AdminDecision] = None
    awaiting_provider_info: bool = False

    @property
    def publicly_listable(self) -> bool:
        return self.status is CredentialingStatus.APPROVED


@dataclass(frozen=True)
class ProfileHistory:
    provider_id: uuid.UUID
    documents: tuple[DocumentView, ...]
    transitions: tuple[StatusTransition, ...]
    decisions: tuple[AdminDecision, ...]
    exclusion_checks: tuple[ExclusionCheck, ...]


@dataclass
class _Snapshot:
    """Everything the state machine needs, plus the records it came from."""
    facts: CredentialingFacts
    documents: list[CredentialDocument]
    npi_result: Optional[VerificationResult] = None
    exclusion_result: Optional[ExclusionCheckResult] = None
    cycle_decision: Optional[AdminDecision] = None


@dataclass
class _VerificationRun:
    verification: Optional[VerificationResult] = None
    exclusion: Optional[ExclusionCheckResult] = None
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Notification stubs
# ---------------------------------------------------------------------------

def _notify_status_change(provider_id: uuid.UUID, step: TransitionStep) -> None:
    """Stub.  In production this would email the provider."""
    if step.to_status is CredentialingStatus.SUSPENDED_EXPIRED:
        logger.warning(
            "NOTIFICATION STUB: provider %s suspended (%s) -- was '%s'",
            provider_id,
            step.rule,
            step.from_status.value,
        )
    elif step.to_status in (CredentialingStatus.APPROVED, CredentialingStatus.REJECTED):
        logger.info(
            "NOTIFICATION STUB: provider %s credentialing decision: %s",
            provider_id,
            step.to_status.value,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _document_view(document: CredentialDocument, now: datetime) -> DocumentView:
    return DocumentView(
        document_id=document.id,
        document_type=document.document_type,
        file_name=document.file_name,
        mime_type=document.mime_type,
        size_bytes=document.size_bytes,
        declared_expiration=document.declared_expiration,
        uploaded_at=document.uploaded_at,
        validity=evaluate(document, now),
        days_until_expiration=(
            days_until_expiration(document.declared_expiration, now)
            if document.is_current
            else None
        ),
        superseded_at=document.superseded_at,
        superseded_by_id=document.superseded_by_id,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class CredentialingService:
    """Credentialing workflow engine.

    One instance is shared by the application; all per-request state lives
    in the ``AsyncSession`` passed to each operation.
    """

    def __init__(
        self,
        npi_verifier: NPIVerifier,
        exclusion_checker: ExclusionChecker,
        document_store: DocumentStore,
        *,
        locks: Optional[ProviderLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
        exclusion_freshness_days: Optional[int] = None,
    ) -> None:
        self.npi_verifier = npi_verifier
        self.exclusion_checker = exclusion_checker
        self.document_store = document_store
        self.locks = locks or ProviderLockRegistry()
        self._clock = clock or _utcnow
        self.exclusion_freshness_days = (
            exclusion_freshness_days
            if exclusion_freshness_days is not None
            else settings.exclusion_freshness_days
        )

    def now(self) -> datetime:
        return self._clock()

    # -----------------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------------

    async def _get_profile(
        self, db: AsyncSession, provider_id: uuid.UUID, *, for_update: bool = True
    ) -> Optional[CredentialProfile]:
        stmt = select(CredentialProfile).where(CredentialProfile.provider_id == provider_id)
        if for_update:
            stmt = stmt.with_for_update()
        return (await db.execute(stmt)).scalar_one_or_none()

    async def _require_profile(
        self, db: AsyncSession, provider_id: uuid.UUID, *, for_update: bool = True
    ) -> CredentialProfile:
        profile = await self._get_profile(db, provider_id, for_update=for_update)
        if profile is None:
            raise ProfileNotFound(
                f"No credential profile for provider {provider_id}",
                provider_id=str(provider_id),
            )
        return profile

    async def _get_or_create_profile(
        self, db: AsyncSession, provider_id: uuid.UUID, now: datetime
    ) -> CredentialProfile:
        """Load the profile row for update, inserting a draft one first if
        there is none.

        The insert is ``ON CONFLICT DO NOTHING`` so that a first submission
        racing another process's first submission reads the winner's row
        instead of failing on the primary key.
        """
        profile = await self._get_profile(db, provider_id)
        if profile is not None:
            return profile

        dialect = db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert(CredentialProfile)
            .values(
                provider_id=provider_id,
                status=CredentialingStatus.DRAFT,
                status_changed_at=now,
                review_cycle=0,
            )
            .on_conflict_do_nothing(index_elements=["provider_id"])
            .returning(CredentialProfile.provider_id)
        )
        created = (await db.execute(stmt)).scalar_one_or_none()
        if created is not None:
            logger.info("Created credential profile for provider %s", provider_id)
        return await self._require_profile(db, provider_id)

    @asynccontextmanager
    async def _provider_transaction(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> AsyncIterator[None]:
        """Hold the provider lock and commit before letting go of it."""
        async with self.locks.lock_for(provider_id):
            yield
            await db.commit()

    async def _documents(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> list[CredentialDocument]:
        stmt = (
            select(CredentialDocument)
            .where(CredentialDocument.provider_id == provider_id)
            .order_by(CredentialDocument.uploaded_at, CredentialDocument.id)
        )
        return list((await db.execute(stmt)).scalars().all())

    async def _latest_npi_result(
        self, db: AsyncSession, npi_number: str
    ) -> Optional[VerificationResult]:
        stmt = (
            select(NPIVerification)
            .where(NPIVerification.npi_number == npi_number)
            .order_by(NPIVerification.fetched_at.desc(), NPIVerification.seq.desc())
            .limit(1)
        )
        row = (await db.execute(stmt)).scalar_one_or_none()
        return VerificationResult.from_row(row) if row is not None else None

    async def _latest_exclusion(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> Optional[ExclusionCheckResult]:
        stmt = (
            select(ExclusionCheck)
            .where(ExclusionCheck.provider_id == provider_id)
            .order_by(ExclusionCheck.checked_at.desc(), ExclusionCheck.seq.desc())
            .limit(1)
        )
        row = (await db.execute(stmt)).scalar_one_or_none()
        return ExclusionCheckResult.from_row(row) if row is not None else None

    async def _latest_dea_validation(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> Optional[DEAValidationResult]:
        stmt = (
            select(DEAValidation)
            .where(DEAValidation.provider_id == provider_id)
            .order_by(DEAValidation.validated_at.desc(), DEAValidation.seq.desc())
            .limit(1)
        )
        row = (await db.execute(stmt)).scalar_one_or_none()
        return DEAValidationResult.from_row(row) if row is not None else None

    async def _cycle_decision(
        self, db: AsyncSession, profile: CredentialProfile
    ) -> Optional[AdminDecision]:
        if profile.review_cycle == 0:
            return None
        stmt = (
            select(AdminDecision)
            .where(
                AdminDecision.provider_id == profile.provider_id,
                AdminDecision.review_cycle == profile.review_cycle,
            )
            .order_by(AdminDecision.seq.desc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    # -----------------------------------------------------------------------
    # Fact derivation
    # -----------------------------------------------------------------------

    def _exclusion_standing(
        self,
        profile: CredentialProfile,
        result: Optional[ExclusionCheckResult],
        now: datetime,
    ) -> ExclusionStanding:
        # A check only speaks for the name/NPI it was run against
        if (
            result is None
            or result.name_checked != profile.legal_name
            or result.npi_checked != profile.npi_number
        ):
            return ExclusionStanding.MISSING
        if result.outcome is ExclusionOutcome.MATCH:
            return ExclusionStanding.MATCH
        if result.outcome is ExclusionOutcome.INDETERMINATE:
            return ExclusionStanding.INDETERMINATE
        if not result.is_fresh(now, self.exclusion_freshness_days):
            return ExclusionStanding.STALE
        return ExclusionStanding.CLEAR

    async def _snapshot(
        self, db: AsyncSession, profile: CredentialProfile, now: datetime
    ) -> _Snapshot:
        documents = await self._documents(db, profile.provider_id)
        completeness = assess_completeness(documents, now)

        npi_result = None
        if profile.npi_number is None:
            npi_standing = NPIStanding.MISSING
        else:
            npi_result = await self._latest_npi_result(db, profile.npi_number)
            if npi_result is None:
                npi_standing = NPIStanding.PENDING
            elif npi_result.valid:
                npi_standing = NPIStanding.VALID
            else:
                npi_standing = NPIStanding.INVALID

        exclusion_result = await self._latest_exclusion(db, profile.provider_id)
        cycle_decision = await self._cycle_decision(db, profile)

        facts = CredentialingFacts(
            missing_required_types=completeness.missing_types,
            expired_required_types=completeness.expired_types,
            npi=npi_standing,
            exclusion=self._exclusion_standing(profile, exclusion_result, now),
            cycle_decision=cycle_decision.decision if cycle_decision else None,
        )
        return _Snapshot(
            facts=facts,
            documents=documents,
            npi_result=npi_result,
            exclusion_result=exclusion_result,
            cycle_decision=cycle_decision,
        )

    # -----------------------------------------------------------------------
    # Recompute
    # -----------------------------------------------------------------------

    def _apply_steps(
        self,
        db: AsyncSession,
        profile: CredentialProfile,
        steps: list[TransitionStep],
        trigger: str,
        now: datetime,
    ) -> None:
        for step in steps:
            db.add(
                StatusTransition(
                    provider_id=profile.provider_id,
                    from_status=step.from_status,
                    to_status=step.to_status,
                    rule=step.rule,
                    trigger=trigger,
                    occurred_at=now,
                )
            )
            if step.to_status is CredentialingStatus.PENDING_REVIEW:
                profile.review_cycle += 1
            profile.status = step.to_status
            profile.status_changed_at = now

            logger.info(
                "Provider %s: %s -> %s (rule=%s, trigger=%s)",
                profile.provider_id,
                step.from_status.value,
                step.to_status.value,
                step.rule,
                trigger,
            )
            _notify_status_change(profile.provider_id, step)

    async def _recompute(
        self,
        db: AsyncSession,
        profile: CredentialProfile,
        trigger: str,
        now: datetime,
        *,
        demote_only: bool = False,
    ) -> tuple[_Snapshot, list[TransitionStep]]:
        snapshot = await self._snapshot(db, profile, now)
        steps = settle(profile.status, snapshot.facts, demote_only=demote_only)
        if steps:
            self._apply_steps(db, profile, steps, trigger, now)
            await db.flush()
            # Review cycle may have moved; re-read the decision facts
            snapshot = await self._snapshot(db, profile, now)
        return snapshot, steps

    async def _run_verifications(
        self,
        db: AsyncSession,
        profile: CredentialProfile,
        snapshot: _Snapshot,
        *,
        force_npi: bool = False,
        force_exclusion: bool = False,
    ) -> _VerificationRun:
        """Run the NPI lookup and exclusion check concurrently.

        Only the network calls run concurrently; every database write happens
        afterwards on the caller's session.
        """
        run = _VerificationRun()
        candidate = profile.npi_number
        if candidate is None or not profile.legal_name:
            return run

        npi_needed = force_npi or snapshot.npi_result is None
        exclusion_needed = force_exclusion or snapshot.facts.exclusion in (
            ExclusionStanding.MISSING,
            ExclusionStanding.STALE,
            ExclusionStanding.INDETERMINATE,
        )

        calls = {}
        if npi_needed:
            calls["npi"] = self.npi_verifier.verify(candidate, force=True)
        if exclusion_needed:
            calls["exclusion"] = self.exclusion_checker.check(profile.legal_name, candidate)
        outcomes = dict(
            zip(calls, await asyncio.gather(*calls.values(), return_exceptions=True))
        )
        npi_outcome = outcomes.get("npi")
        exclusion_outcome = outcomes.get("exclusion")

        if isinstance(npi_outcome, VerificationUnavailable):
            logger.warning(
                "NPI registry unavailable for provider %s (npi=%s): %s",
                profile.provider_id,
                candidate,
                npi_outcome.message,
            )
            run.warnings.append("npi_registry_unavailable")
        elif isinstance(npi_outcome, BaseException):
            raise npi_outcome
        elif npi_outcome is not None:
            db.add(npi_outcome.to_row())
            run.verification = npi_outcome

        if isinstance(exclusion_outcome, BaseException):
            raise exclusion_outcome
        if exclusion_outcome is not None:
            db.add(exclusion_outcome.to_row(profile.provider_id))
            run.exclusion = exclusion_outcome
            if exclusion_outcome.outcome is ExclusionOutcome.INDETERMINATE:
                run.warnings.append("exclusion_indeterminate")
            elif (
                exclusion_outcome.outcome is ExclusionOutcome.MATCH
                and profile.status is CredentialingStatus.APPROVED
            ):
                logger.critical(
                    "Approved provider %s now matches exclusion list(s) %s: %s",
                    profile.provider_id,
                    list(exclusion_outcome.matched_sources),
                    list(exclusion_outcome.matched_entry_ids),
                )

        await db.flush()
        return run

    async def _settle(
        self,
        db: AsyncSession,
        profile: CredentialProfile,
        trigger: str,
        now: datetime,
    ) -> tuple[_Snapshot, list[TransitionStep], list[str]]:
        """Recompute, verify if the profile is waiting on verification, and
        recompute again."""
        snapshot, steps = await self._recompute(db, profile, trigger, now)
        warnings: list[str] = []

        if (
            profile.status is CredentialingStatus.PENDING_VERIFICATION
            and snapshot.facts.needs_verification
        ):
            run = await self._run_verifications(db, profile, snapshot)
            warnings.extend(run.warnings)
            snapshot, more = await self._recompute(db, profile, "verification_completed", now)
            steps.extend(more)

        return snapshot, steps, warnings

    # -----------------------------------------------------------------------
    # Provider operations
    # -----------------------------------------------------------------------

    async def submit_document(
        self,
        db: AsyncSession,
        provider_id: uuid.UUID,
        document_type: DocumentType,
        upload: FileUpload,
        declared_expiration: Optional[date] = None,
    ) -> DocumentSubmission:
        """Record a new document and supersede the current one of its type.

        Validation happens before the store is touched; a storage outage
        aborts the submission before any credentialing record is written.

        Raises:
            CredentialingInputError: Invalid expiration or file.
            StorageUnavailable: The document store is unreachable.
        """
        validate_submission(document_type, upload, declared_expiration)

        reference = await self.document_store.put(
            upload.content,
            {
                "provider_id": str(provider_id),
                "document_type": document_type.value,
                "file_name": upload.file_name,
                "mime_type": upload.mime_type,
                "sha256": upload.sha256,
            },
        )

        try:
            async with self._provider_transaction(db, provider_id):
                now = self.now()
                profile = await self._get_or_create_profile(db, provider_id, now)
                previous_status = profile.status

                documents = await self._documents(db, provider_id)
                previous = current_documents(documents).get(document_type)

                document = CredentialDocument(
                    id=uuid.uuid4(),
                    provider_id=provider_id,
                    document_type=document_type,
                    storage_reference=reference,
                    file_name=upload.file_name,
                    mime_type=upload.mime_type,
                    size_bytes=upload.size_bytes,
                    content_sha256=upload.sha256,
                    declared_expiration=declared_expiration,
                    uploaded_at=now,
                )
                db.add(document)
                await db.flush()

                if previous is not None:
                    previous.superseded_by_id = document.id
                    previous.superseded_at = now
                    await db.flush()

                logger.info(
                    "Provider %s submitted %s document %s (expires %s)%s",
                    provider_id,
                    document_type.value,
                    document.id,
                    declared_expiration,
                    f", superseding {previous.id}" if previous is not None else "",
                )
                if profile.status is CredentialingStatus.REJECTED:
                    logger.info(
                        "Provider %s is rejected; document %s recorded for audit only",
                        provider_id,
                        document.id,
                    )

                _, steps, warnings = await self._settle(db, profile, "document_submitted", now)
        except Exception:
            await self._discard_blob(reference)
            raise

        return DocumentSubmission(
            document=document,
            validity=evaluate(document, now),
            status_change=StatusChange(
                provider_id=provider_id,
                previous_status=previous_status,
                status=profile.status,
                steps=tuple(steps),
            ),
            superseded=previous,
            warnings=tuple(warnings),
        )

    async def _discard_blob(self, reference: str) -> None:
        try:
            await self.document_store.delete(reference)
        except Exception:
            logger.exception("Failed to discard orphaned document blob %s", reference)

    async def submit_npi(
        self,
        db: AsyncSession,
        provider_id: uuid.UUID,
        npi_number: str,
        legal_name: Optional[str] = None,
    ) -> NPISubmission:
        """Record the provider's NPI (and legal name) and verify if ready.

        Format and checksum are checked before anything is read or written.

        Raises:
            InvalidFormat / InvalidChecksum: Rejected locally, no network call.
            InvalidTransition: The NPI can no longer change in this status.
        """
        candidate = check_npi_candidate(npi_number)
        name = (legal_name or "").strip() or None

        async with self._provider_transaction(db, provider_id):
            now = self.now()
            profile = await self._get_profile(db, provider_id)

            name = name or (profile.legal_name if profile is not None else None)
            if not name:
                raise CredentialingInputError(
                    "legal_name is required with the first NPI submission",
                    provider_id=str(provider_id),
                )

            if profile is None:
                profile = await self._get_or_create_profile(db, provider_id, now)
            previous_status = profile.status

            identity_changed = (
                profile.npi_number is not None
                and (profile.npi_number != candidate or profile.legal_name != name)
            )
            if identity_changed and profile.status not in NPI_EDITABLE_STATUSES:
                raise InvalidTransition(
                    f"NPI and legal name cannot change while profile is '{profile.status.value}'",
                    status=profile.status.value,
                )
            if profile.status is CredentialingStatus.REJECTED:
                raise InvalidTransition(
                    "Profile is rejected; NPI submissions are closed",
                    status=profile.status.value,
                )

            name_changed = profile.legal_name != name
            profile.npi_number = candidate
            profile.legal_name = name
            profile.npi_submitted_at = now
            await db.flush()
            logger.info("Provider %s submitted NPI %s", provider_id, candidate)
            if name_changed and profile.dea_number is not None:
                self._record_dea_validation(db, profile, profile.dea_number, now)

            snapshot, steps, warnings = await self._settle(db, profile, "npi_submitted", now)

        exclusion = snapshot.exclusion_result
        if snapshot.facts.exclusion is ExclusionStanding.MISSING:
            exclusion = None

        return NPISubmission(
            npi_number=candidate,
            status_change=StatusChange(
                provider_id=provider_id,
                previous_status=previous_status,
                status=profile.status,
                steps=tuple(steps),
            ),
            verification=snapshot.npi_result,
            exclusion=exclusion,
            warnings=tuple(warnings),
        )

    def _record_dea_validation(
        self,
        db: AsyncSession,
        profile: CredentialProfile,
        dea_number: str,
        now: datetime,
    ) -> DEAValidationResult:
        result = validate_dea_number(dea_number, profile.legal_name, now)
        db.add(result.to_row(profile.provider_id))
        if result.valid:
            logger.info(
                "Provider %s DEA %s passed validation (%s)",
                profile.provider_id,
                result.dea_number,
                result.registrant_type_description,
            )
        else:
            logger.warning(
                "Provider %s DEA %s failed validation: %s",
                profile.provider_id,
                result.dea_number,
                "; ".join(result.errors),
            )
        return result

    async def submit_dea(
        self, db: AsyncSession, provider_id: uuid.UUID, dea_number: str
    ) -> DEAValidationResult:
        """Record the provider's DEA number and validate it.

        A failed validation is stored and logged for the reviewer; it never
        blocks credentialing and never changes the profile's status.

        Raises:
            InvalidFormat: Not two letters followed by seven digits.
            ProfileNotFound: Unknown provider.
            InvalidTransition: The profile is rejected.
        """
        async with self._provider_transaction(db, provider_id):
            now = self.now()
            profile = await self._require_profile(db, provider_id)
            if profile.status is CredentialingStatus.REJECTED:
                raise InvalidTransition(
                    "Profile is rejected; DEA submissions are closed",
                    status=profile.status.value,
                )

            result = self._record_dea_validation(db, profile, dea_number, now)
            profile.dea_number = result.dea_number
            await db.flush()

        return result

    async def verify_npi(
        self, db: AsyncSession, candidate: str, *, force: bool = False
    ) -> VerificationResult:
        """Standalone NPI verification, served from the cache unless forced.

        Raises:
            InvalidFormat / InvalidChecksum: Rejected locally.
            VerificationUnavailable: Registry unreachable; nothing is cached.
        """
        npi_number = check_npi_candidate(candidate)
        cached = None if force else await self._latest_npi_result(db, npi_number)
        result = await self.npi_verifier.verify(npi_number, cached=cached, force=force)
        if result is not cached:
            db.add(result.to_row())
            await db.flush()
        return result

    async def reverify(self, db: AsyncSession, provider_id: uuid.UUID) -> NPISubmission:
        """Discard cached verification for the profile and re-run both checks.

        Raises:
            ProfileNotFound: Unknown provider.
            InvalidTransition: No NPI on file, or the profile is rejected.
        """
        async with self._provider_transaction(db, provider_id):
            now = self.now()
            profile = await self._require_profile(db, provider_id)
            previous_status = profile.status
            if profile.npi_number is None or not profile.legal_name:
                raise InvalidTransition("No NPI on file to re-verify", provider_id=str(provider_id))
            if profile.status is CredentialingStatus.REJECTED:
                raise InvalidTransition("Profile is rejected", status=profile.status.value)

            snapshot, steps = await self._recompute(
                db, profile, "reverify", now, demote_only=True
            )
            run = await self._run_verifications(
                db, profile, snapshot, force_npi=True, force_exclusion=True
            )
            snapshot, more = await self._recompute(db, profile, "reverify", now)
            steps.extend(more)

        return NPISubmission(
            npi_number=profile.npi_number,
            status_change=StatusChange(
                provider_id=provider_id,
                previous_status=previous_status,
                status=profile.status,
                steps=tuple(steps),
            ),
            verification=snapshot.npi_result,
            exclusion=run.exclusion,
            warnings=tuple(run.warnings),
        )

    async def recheck_verification(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> VerificationRecheck:
        """Retry whatever verification is outstanding (scheduled re-check job).

        An NPI the registry never answered for is looked up again, and a
        missing, indeterminate or stale exclusion result is re-screened.
        Results already on record are left alone.

        Raises:
            ProfileNotFound: Unknown provider.
        """
        async with self._provider_transaction(db, provider_id):
            now = self.now()
            profile = await self._require_profile(db, provider_id)
            previous_status = profile.status

            snapshot, steps = await self._recompute(
                db, profile, "verification_recheck", now, demote_only=True
            )
            run = _VerificationRun()
            if profile.status is not CredentialingStatus.REJECTED:
                run = await self._run_verifications(db, profile, snapshot)
            _, more = await self._recompute(db, profile, "verification_recheck", now)
            steps.extend(more)

        return VerificationRecheck(
            status_change=StatusChange(
                provider_id=provider_id,
                previous_status=previous_status,
                status=profile.status,
                steps=tuple(steps),
            ),
            verification=run.verification,
            exclusion=run.exclusion,
            warnings=tuple(run.warnings),
        )

    async def reevaluate(
        self,
        db: AsyncSession,
        provider_id: uuid.UUID,
        *,
        trigger: str = "expiry_sweep",
    ) -> StatusChange:
        """Apply time-based demotion only.  Never promotes."""
        async with self._provider_transaction(db, provider_id):
            now = self.now()
            profile = await self._require_profile(db, provider_id)
            previous_status = profile.status
            _, steps = await self._recompute(db, profile, trigger, now, demote_only=True)

        return StatusChange(
            provider_id=provider_id,
            previous_status=previous_status,
            status=profile.status,
            steps=tuple(steps),
        )

    # -----------------------------------------------------------------------
    # Admin operations
    # -----------------------------------------------------------------------

    async def admin_decide(
        self,
        db: AsyncSession,
        provider_id: uuid.UUID,
        reviewer_id: str,
        decision: DecisionType,
        reason: Optional[str] = None,
    ) -> DecisionOutcome:
        """Record an admin decision against the current review cycle.

        A decision that is already in effect (approve on an approved profile,
        reject on a rejected one, a second unanswered request-more-info) is a
        no-op and returns the existing decision with ``changed=False``.

        Raises:
            MissingReason: Reject without a reason.
            ProfileNotFound: Unknown provider.
            InvalidTransition: Profile is not in review, or approval is
                blocked by a non-clear or stale exclusion result.
        """
        decision = DecisionType(decision)
        reason = (reason or "").strip() or None
        reviewer = (reviewer_id or "").strip()

        if not reviewer:
            raise CredentialingInputError("reviewer_id is required")
        if decision is DecisionType.REJECT and not reason:
            raise MissingReason("A reason is required to reject a provider")

        async with self._provider_transaction(db, provider_id):
            now = self.now()
            profile = await self._require_profile(db, provider_id)
            previous_status = profile.status

            # Expired documents demote before any decision is considered
            snapshot, steps = await self._recompute(
                db, profile, "admin_decision", now, demote_only=True
            )
            latest = snapshot.cycle_decision

            def _unchanged(existing: AdminDecision) -> DecisionOutcome:
                logger.info(
                    "Provider %s: %s decision replay by %s ignored",
                    provider_id,
                    decision.value,
                    reviewer,
                )
                return DecisionOutcome(
                    decision=existing,
                    changed=False,
                    status_change=StatusChange(
                        provider_id=provider_id,
                        previous_status=previous_status,
                        status=profile.status,
                        steps=tuple(steps),
                    ),
                )

            if profile.status is not CredentialingStatus.PENDING_REVIEW:
                already_applied = latest is not None and latest.decision is decision and (
                    (decision is DecisionType.APPROVE and profile.status is CredentialingStatus.APPROVED)
                    or (decision is DecisionType.REJECT and profile.status is CredentialingStatus.REJECTED)
                )
                if already_applied:
                    return _unchanged(latest)
                raise InvalidTransition(
                    f"Decisions require status 'pending_review'; profile is '{profile.status.value}'",
                    status=profile.status.value,
                )

            if (
                decision is DecisionType.REQUEST_MORE_INFO
                and awaiting_provider_info(latest, snapshot.documents, profile.npi_submitted_at)
            ):
                return _unchanged(latest)

            if decision is DecisionType.APPROVE and not snapshot.facts.verification_passed:
                raise InvalidTransition(
                    "Cannot approve: NPI and a fresh clear exclusion check are required",
                    npi=snapshot.facts.npi.value,
                    exclusion=snapshot.facts.exclusion.value,
                )

            row = AdminDecision(
                provider_id=provider_id,
                reviewer_id=reviewer,
                decision=decision,
                reason=reason,
                review_cycle=profile.review_cycle,
                decided_at=now,
            )
            db.add(row)
            await db.flush()
            logger.info(
                "Provider %s: %s by %s (cycle %d)",
                provider_id,
                decision.value,
                reviewer,
                profile.review_cycle,
            )
            if decision is DecisionType.REQUEST_MORE_INFO:
                logger.info(
                    "NOTIFICATION STUB: provider %s asked for more information: %s",
                    provider_id,
                    reason,
                )

            _, more = await self._recompute(db, profile, "admin_decision", now)
            steps.extend(more)

        return DecisionOutcome(
            decision=row,
            changed=True,
            status_change=StatusChange(
                provider_id=provider_id,
                previous_status=previous_status,
                status=profile.status,
                steps=tuple(steps),
            ),
        )

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get_profile_status(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> ProfileStatusView:
        """Current derived status.  Pending expiry demotions are applied
        first, so an approved status is never reported past expiry."""
        async with self._provider_transaction(db, provider_id):
            now = self.now()
            profile = await self._require_profile(db, provider_id)
            snapshot, _ = await self._recompute(db, profile, "status_read", now, demote_only=True)
            dea_validation = await self._latest_dea_validation(db, provider_id)

        current = current_documents(snapshot.documents)
        facts = snapshot.facts
        return ProfileStatusView(
            provider_id=profile.provider_id,
            status=profile.status,
            status_changed_at=profile.status_changed_at,
            review_cycle=profile.review_cycle,
            legal_name=profile.legal_name,
            npi_number=profile.npi_number,
            documents=tuple(
                _document_view(doc, now)
                for doc in sorted(current.values(), key=lambda d: d.document_type.value)
            ),
            missing_required_types=tuple(sorted(facts.missing_required_types, key=lambda t: t.value)),
            expired_required_types=tuple(sorted(facts.expired_required_types, key=lambda t: t.value)),
            blocking_reasons=tuple(blocking_reasons(profile.status, facts)),
            npi_verification=snapshot.npi_result,
            npi_standing=facts.npi,
            exclusion_check=snapshot.exclusion_result,
            exclusion_standing=facts.exclusion,
            dea_number=profile.dea_number,
            dea_validation=dea_validation,
            latest_decision=snapshot.cycle_decision,
            awaiting_provider_info=(
                profile.status is CredentialingStatus.PENDING_REVIEW
                and awaiting_provider_info(
                    snapshot.cycle_decision, snapshot.documents, profile.npi_submitted_at
                )
            ),
        )

    async def get_history(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> ProfileHistory:
        """Full audit trail: every document (superseded included), every
        transition, decision and exclusion check, oldest first."""
        await self._require_profile(db, provider_id, for_update=False)
        now = self.now()

        documents = await self._documents(db, provider_id)
        transitions = (
            await db.execute(
                select(StatusTransition)
                .where(StatusTransition.provider_id == provider_id)
                .order_by(StatusTransition.seq)
            )
        ).scalars().all()
        decisions = (
            await db.execute(
                select(AdminDecision)
                .where(AdminDecision.provider_id == provider_id)
                .order_by(AdminDecision.seq)
            )
        ).scalars().all()
        checks = (
            await db.execute(
                select(ExclusionCheck)
                .where(ExclusionCheck.provider_id == provider_id)
                .order_by(ExclusionCheck.seq)
            )
        ).scalars().all()

        return ProfileHistory(
            provider_id=provider_id,
            documents=tuple(_document_view(d, now) for d in documents),
            transitions=tuple(transitions),
            decisions=tuple(decisions),
            exclusion_checks=tuple(checks),
        )

    async def get_document_content(
        self, db: AsyncSession, provider_id: uuid.UUID, document_id: uuid.UUID
    ) -> tuple[CredentialDocument, bytes]:
        document = await db.get(CredentialDocument, document_id)
        if document is None or document.provider_id != provider_id:
            raise DocumentNotFound(
                f"Document {document_id} not found for provider {provider_id}",
                document_id=str(document_id),
            )
        content = await self.document_store.get(document.storage_reference)
        return document, content

