"""
E2E tests for the provider credentialing workflow -- TC-CRED-005.

Drives ``CredentialingService`` against a real (SQLite) database with fake
external services: document submission and supersession, NPI verification,
exclusion screening, admin decisions, expiry suspension and recovery.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import (
    CredentialingInputError,
    FileTooLarge,
    InvalidChecksum,
    InvalidFormat,
    InvalidTransition,
    MissingExpiration,
    MissingReason,
    ProfileNotFound,
    StorageUnavailable,
    UnexpectedExpiration,
)
from therapyconnect.models import (
    CredentialingStatus as S,
)
from therapyconnect.models import (
    CredentialDocument,
    CredentialProfile,
    DecisionType,
    DocumentType,
    ExclusionOutcome,
    NPIFailureReason,
)
from therapyconnect.services.credentialingStateMachine import ExclusionStanding
from therapyconnect.services.documentLifecycle import FileUpload, ValidityState
from therapyconnect.services.reviewQueue import list_review_queue
from tests.conftest import START
from tests.e2e.conftest import bring_to_review, pdf_upload, submit_required_documents
from tests.fakes import BAD_CHECKSUM_NPI, VALID_NPI, VALID_NPI_2, VALID_NPI_3

pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Happy path, expiry and recovery
# ---------------------------------------------------------------------------


class TestCredentialingLifecycle:
    """A provider moves draft -> approved, is suspended on expiry and
    returns through a fresh review."""

    async def test_full_lifecycle(self, service, db_session, registry, exclusion_source, clock):
        provider_id = uuid.uuid4()
        registry.register(VALID_NPI)

        await submit_required_documents(service, db_session, provider_id)
        view = await service.get_profile_status(db_session, provider_id)
        assert view.status is S.DRAFT
        assert view.blocking_reasons == ("npi_missing",)

        npi = await service.submit_npi(db_session, provider_id, VALID_NPI, "Jane Doe")
        assert [step.to_status for step in npi.status_change.steps] == [
            S.PENDING_VERIFICATION,
            S.PENDING_REVIEW,
        ]
        assert npi.verification.valid is True
        assert npi.exclusion.outcome is ExclusionOutcome.CLEAR
        assert npi.warnings == ()

        decision = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.APPROVE
        )
        assert decision.changed is True
        assert decision.status_change.status is S.APPROVED

        view = await service.get_profile_status(db_session, provider_id)
        assert view.status is S.APPROVED
        assert view.publicly_listable is True
        assert view.review_cycle == 1

        # Liability insurance expires on 2026-07-05
        clock.current = datetime(2026, 7, 6, 9, 0, tzinfo=timezone.utc)
        view = await service.get_profile_status(db_session, provider_id)
        assert view.status is S.SUSPENDED_EXPIRED
        assert view.publicly_listable is False
        assert view.expired_required_types == (DocumentType.LIABILITY_INSURANCE,)

        replacement = await service.submit_document(
            db_session,
            provider_id,
            DocumentType.LIABILITY_INSURANCE,
            pdf_upload("liability-2027.pdf"),
            date(2027, 7, 6),
        )
        # The old approval does not carry over; the exclusion result is stale
        assert replacement.status_change.status is S.PENDING_REVIEW
        assert [s.rule for s in replacement.status_change.steps] == [
            "documents_replaced",
            "verification_passed",
        ]
        assert len(exclusion_source.calls) == 2
        assert registry.calls == [VALID_NPI]

        view = await service.get_profile_status(db_session, provider_id)
        assert view.review_cycle == 2
        assert view.latest_decision is None
        assert view.blocking_reasons == ("awaiting_review",)

        await service.admin_decide(db_session, provider_id, "admin-2", DecisionType.APPROVE)

        history = await service.get_history(db_session, provider_id)
        assert [t.to_status for t in history.transitions] == [
            S.PENDING_VERIFICATION,
            S.PENDING_REVIEW,
            S.APPROVED,
            S.SUSPENDED_EXPIRED,
            S.PENDING_VERIFICATION,
            S.PENDING_REVIEW,
            S.APPROVED,
        ]
        assert [d.review_cycle for d in history.decisions] == [1, 2]
        assert len(history.documents) == 3
        assert len(history.exclusion_checks) == 2

    async def test_insurance_lapse_suspends_approved_provider(
        self, service, db_session, registry, clock
    ):
        provider_id = uuid.uuid4()
        registry.register(VALID_NPI_2)
        await submit_required_documents(
            service,
            db_session,
            provider_id,
            license_expires=(START + timedelta(days=400)).date(),
            liability_expires=(START + timedelta(days=10)).date(),
        )

        npi = await service.submit_npi(db_session, provider_id, VALID_NPI_2, "Jane Doe")
        assert [step.to_status for step in npi.status_change.steps] == [
            S.PENDING_VERIFICATION,
            S.PENDING_REVIEW,
        ]

        await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)
        view = await service.get_profile_status(db_session, provider_id)
        assert view.status is S.APPROVED
        assert view.publicly_listable is True

        clock.advance(days=10)
        view = await service.get_profile_status(db_session, provider_id)
        assert view.status is S.SUSPENDED_EXPIRED
        assert view.publicly_listable is False
        assert view.expired_required_types == (DocumentType.LIABILITY_INSURANCE,)

    async def test_replacement_within_freshness_window_reuses_exclusion(
        self, service, db_session, registry, exclusion_source, clock
    ):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(
            service, db_session, liability_expires=date(2026, 1, 15)
        )
        await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)

        clock.advance(days=11)
        assert (await service.get_profile_status(db_session, provider_id)).status is S.SUSPENDED_EXPIRED

        result = await service.submit_document(
            db_session,
            provider_id,
            DocumentType.LIABILITY_INSURANCE,
            pdf_upload(),
            date(2027, 1, 15),
        )

        assert [s.to_status for s in result.status_change.steps] == [
            S.PENDING_VERIFICATION,
            S.PENDING_REVIEW,
        ]
        assert len(exclusion_source.calls) == 1
        assert registry.calls == [VALID_NPI]

    async def test_suspended_without_npi_returns_to_draft(self, service, db_session, clock):
        provider_id = uuid.uuid4()
        await submit_required_documents(
            service, db_session, provider_id, liability_expires=date(2026, 1, 10)
        )
        clock.advance(days=6)
        assert (await service.get_profile_status(db_session, provider_id)).status is S.SUSPENDED_EXPIRED

        result = await service.submit_document(
            db_session, provider_id, DocumentType.LIABILITY_INSURANCE, pdf_upload(), date(2027, 1, 10)
        )
        assert result.status_change.status is S.DRAFT


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocumentSubmission:
    async def test_new_document_supersedes_current(self, service, db_session):
        provider_id = uuid.uuid4()
        first = await service.submit_document(
            db_session, provider_id, DocumentType.LICENSE, pdf_upload("old.pdf"), date(2026, 6, 1)
        )
        second = await service.submit_document(
            db_session, provider_id, DocumentType.LICENSE, pdf_upload("new.pdf"), date(2028, 6, 1)
        )

        assert first.superseded is None
        assert second.superseded.id == first.document.id

        view = await service.get_profile_status(db_session, provider_id)
        assert [d.file_name for d in view.documents] == ["new.pdf"]

        history = await service.get_history(db_session, provider_id)
        by_name = {d.file_name: d for d in history.documents}
        assert by_name["old.pdf"].validity is ValidityState.SUPERSEDED
        assert by_name["old.pdf"].superseded_by_id == second.document.id
        assert by_name["new.pdf"].validity is ValidityState.VALID

    async def test_document_content_served_from_store(self, service, db_session):
        provider_id = uuid.uuid4()
        result = await service.submit_document(
            db_session, provider_id, DocumentType.OTHER, pdf_upload(content=b"%PDF-other"), None
        )
        document, content = await service.get_document_content(
            db_session, provider_id, result.document.id
        )
        assert content == b"%PDF-other"
        assert document.content_sha256 == result.document.content_sha256

    async def test_storage_outage_leaves_no_record(self, service, db_session, document_store):
        provider_id = uuid.uuid4()
        document_store.unavailable = True

        with pytest.raises(StorageUnavailable):
            await service.submit_document(
                db_session, provider_id, DocumentType.LICENSE, pdf_upload(), date(2027, 1, 1)
            )
        with pytest.raises(ProfileNotFound):
            await service.get_profile_status(db_session, provider_id)

    async def test_oversize_file_never_reaches_store(
        self, service, db_session, document_store, monkeypatch
    ):
        monkeypatch.setattr(settings, "max_document_bytes", 16)
        with pytest.raises(FileTooLarge):
            await service.submit_document(
                db_session,
                uuid.uuid4(),
                DocumentType.LICENSE,
                pdf_upload(content=b"x" * 17),
                date(2027, 1, 1),
            )
        assert document_store.put_calls == 0

    async def test_expiration_rules_checked_before_storage(self, service, db_session, document_store):
        with pytest.raises(MissingExpiration):
            await service.submit_document(
                db_session, uuid.uuid4(), DocumentType.LIABILITY_INSURANCE, pdf_upload(), None
            )
        with pytest.raises(UnexpectedExpiration):
            await service.submit_document(
                db_session, uuid.uuid4(), DocumentType.OTHER, pdf_upload(), date(2027, 1, 1)
            )
        assert document_store.put_calls == 0

    async def test_unsupported_type_rejected(self, service, db_session):
        upload = FileUpload("script.sh", "text/x-shellscript", b"#!/bin/sh")
        with pytest.raises(CredentialingInputError):
            await service.submit_document(
                db_session, uuid.uuid4(), DocumentType.OTHER, upload, None
            )


class TestConcurrentSubmissions:
    """Each upload runs in its own session, as concurrent requests do."""

    async def test_first_uploads_for_new_provider_leave_one_current(
        self, service, session_factory
    ):
        provider_id = uuid.uuid4()

        async def upload(n: int):
            async with session_factory() as session:
                result = await service.submit_document(
                    session,
                    provider_id,
                    DocumentType.LICENSE,
                    pdf_upload(f"license-{n}.pdf"),
                    date(2027, 1, n),
                )
                # Let the other uploads run before this request finishes
                await asyncio.sleep(0)
                await session.commit()
                return result

        results = await asyncio.gather(*(upload(n) for n in (1, 2, 3)))

        async with session_factory() as session:
            profiles = await session.scalar(
                select(func.count())
                .select_from(CredentialProfile)
                .where(CredentialProfile.provider_id == provider_id)
            )
            documents = (
                await session.execute(
                    select(CredentialDocument).where(CredentialDocument.provider_id == provider_id)
                )
            ).scalars().all()

        assert profiles == 1
        assert len(documents) == 3
        assert len([d for d in documents if d.superseded_by_id is None]) == 1
        assert sum(r.superseded is None for r in results) == 1

    async def test_profile_created_by_another_writer_is_reused(
        self, service, session_factory, monkeypatch
    ):
        provider_id = uuid.uuid4()
        async with session_factory() as session:
            first = await service.submit_document(
                session, provider_id, DocumentType.LICENSE, pdf_upload("a.pdf"), date(2027, 1, 1)
            )

        # The next read misses the row, as if the other writer committed
        # just after it
        real_get_profile = service._get_profile
        reads = []

        async def late_read(db, pid, **kwargs):
            reads.append(pid)
            if len(reads) == 1:
                return None
            return await real_get_profile(db, pid, **kwargs)

        monkeypatch.setattr(service, "_get_profile", late_read)

        async with session_factory() as session:
            second = await service.submit_document(
                session, provider_id, DocumentType.LICENSE, pdf_upload("b.pdf"), date(2028, 1, 1)
            )

        assert len(reads) == 2
        assert second.superseded.id == first.document.id
        assert second.status_change.previous_status is S.DRAFT
        async with session_factory() as session:
            profiles = await session.scalar(
                select(func.count())
                .select_from(CredentialProfile)
                .where(CredentialProfile.provider_id == provider_id)
            )
        assert profiles == 1


# ---------------------------------------------------------------------------
# NPI verification
# ---------------------------------------------------------------------------


class TestNPIVerification:
    async def test_malformed_npi_rejected_without_network(self, service, db_session, registry):
        provider_id = uuid.uuid4()
        with pytest.raises(InvalidFormat):
            await service.submit_npi(db_session, provider_id, "12345", "Jane Doe")
        with pytest.raises(InvalidChecksum):
            await service.submit_npi(db_session, provider_id, BAD_CHECKSUM_NPI, "Jane Doe")

        assert registry.calls == []
        with pytest.raises(ProfileNotFound):
            await service.get_profile_status(db_session, provider_id)

    async def test_first_submission_requires_legal_name(self, service, db_session):
        with pytest.raises(CredentialingInputError):
            await service.submit_npi(db_session, uuid.uuid4(), VALID_NPI, "  ")

    async def test_npi_before_documents_does_not_verify(self, service, db_session, registry):
        provider_id = uuid.uuid4()
        result = await service.submit_npi(db_session, provider_id, VALID_NPI, "Jane Doe")
        assert result.status_change.status is S.DRAFT
        assert result.verification is None
        assert registry.calls == []

    async def test_unknown_npi_blocks_in_verification(self, service, db_session):
        provider_id, result = await bring_to_review(service, db_session)

        assert result.status_change.status is S.PENDING_VERIFICATION
        assert result.verification.failure_reason is NPIFailureReason.NOT_FOUND
        view = await service.get_profile_status(db_session, provider_id)
        assert view.blocking_reasons == ("npi_invalid",)

        with pytest.raises(InvalidTransition):
            await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)

    async def test_deactivated_npi_then_corrected(self, service, db_session, registry, exclusion_source):
        registry.register(VALID_NPI, status="D")
        registry.register(VALID_NPI_2)
        provider_id, result = await bring_to_review(service, db_session)
        assert result.verification.failure_reason is NPIFailureReason.DEACTIVATED
        assert result.status_change.status is S.PENDING_VERIFICATION

        corrected = await service.submit_npi(db_session, provider_id, VALID_NPI_2)

        assert corrected.status_change.status is S.PENDING_REVIEW
        assert corrected.verification.npi_number == VALID_NPI_2
        # A new NPI needs its own exclusion screening
        assert exclusion_source.calls[-1] == ("jane doe", VALID_NPI_2)

    async def test_registry_outage_then_reverify(self, service, db_session, registry):
        registry.register(VALID_NPI)
        registry.unavailable = True

        provider_id, result = await bring_to_review(service, db_session)
        assert result.status_change.status is S.PENDING_VERIFICATION
        assert "npi_registry_unavailable" in result.warnings
        assert result.verification is None
        # The exclusion result is kept even though the registry was down
        assert result.exclusion.outcome is ExclusionOutcome.CLEAR
        view = await service.get_profile_status(db_session, provider_id)
        assert view.blocking_reasons == ("npi_pending",)

        registry.unavailable = False
        recovered = await service.reverify(db_session, provider_id)

        assert recovered.status_change.status is S.PENDING_REVIEW
        assert recovered.warnings == ()
        assert recovered.verification.valid is True

    async def test_npi_locked_once_in_review(self, service, db_session, registry):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)

        with pytest.raises(InvalidTransition):
            await service.submit_npi(db_session, provider_id, VALID_NPI_2)

    async def test_standalone_verification_is_cached(self, service, db_session, registry):
        registry.register(VALID_NPI_3)

        first = await service.verify_npi(db_session, VALID_NPI_3)
        second = await service.verify_npi(db_session, VALID_NPI_3)
        assert registry.calls == [VALID_NPI_3]
        assert second.fetched_at == first.fetched_at

        await service.verify_npi(db_session, VALID_NPI_3, force=True)
        assert registry.calls == [VALID_NPI_3, VALID_NPI_3]


# ---------------------------------------------------------------------------
# DEA numbers
# ---------------------------------------------------------------------------


class TestDEAValidation:
    async def test_valid_number_recorded_on_profile(self, service, db_session, registry):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)

        result = await service.submit_dea(db_session, provider_id, " cd1234563 ")

        assert result.valid is True
        assert result.dea_number == "CD1234563"
        assert result.registrant_type_description == "Practitioner"
        view = await service.get_profile_status(db_session, provider_id)
        assert view.dea_number == "CD1234563"
        assert view.dea_validation == result

    async def test_failed_validation_does_not_block(self, service, db_session, registry):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)

        # Wrong last-name initial and wrong check digit
        result = await service.submit_dea(db_session, provider_id, "AB1234560")

        assert result.valid is False
        assert len(result.errors) == 2
        view = await service.get_profile_status(db_session, provider_id)
        assert view.status is S.PENDING_REVIEW
        assert view.blocking_reasons == ("awaiting_review",)
        assert view.dea_validation.valid is False

        outcome = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.APPROVE
        )
        assert outcome.status_change.status is S.APPROVED

    async def test_malformed_number_is_an_input_error(self, service, db_session):
        provider_id = uuid.uuid4()
        await submit_required_documents(service, db_session, provider_id)

        with pytest.raises(InvalidFormat):
            await service.submit_dea(db_session, provider_id, "C1234563")

        view = await service.get_profile_status(db_session, provider_id)
        assert view.dea_number is None
        assert view.dea_validation is None

    async def test_unknown_provider(self, service, db_session):
        with pytest.raises(ProfileNotFound):
            await service.submit_dea(db_session, uuid.uuid4(), "CD1234563")

    async def test_rejected_profile_refuses_dea(self, service, db_session, registry):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)
        await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.REJECT, "Unverifiable history"
        )

        with pytest.raises(InvalidTransition):
            await service.submit_dea(db_session, provider_id, "CD1234563")

    async def test_name_change_revalidates_number_on_file(self, service, db_session):
        provider_id = uuid.uuid4()
        await service.submit_npi(db_session, provider_id, VALID_NPI, "Jane Doe")
        first = await service.submit_dea(db_session, provider_id, "CD1234563")
        assert first.valid is True

        await service.submit_npi(db_session, provider_id, VALID_NPI, "Jane Smith")

        view = await service.get_profile_status(db_session, provider_id)
        assert view.dea_validation.valid is False
        assert view.dea_validation.name_checked == "Jane Smith"
        assert "does not match last name initial (S)" in view.dea_validation.errors[0]


# ---------------------------------------------------------------------------
# Exclusion screening
# ---------------------------------------------------------------------------


class TestExclusionScreening:
    async def test_indeterminate_blocks_until_recheck(
        self, service, db_session, registry, exclusion_source
    ):
        registry.register(VALID_NPI)
        exclusion_source.unavailable = True

        provider_id, result = await bring_to_review(service, db_session)
        assert result.status_change.status is S.PENDING_VERIFICATION
        assert result.warnings == ("exclusion_indeterminate",)

        view = await service.get_profile_status(db_session, provider_id)
        assert view.exclusion_standing is ExclusionStanding.INDETERMINATE
        assert view.blocking_reasons == ("exclusion_indeterminate",)

        exclusion_source.unavailable = False
        recheck = await service.recheck_verification(db_session, provider_id)
        assert recheck.exclusion.outcome is ExclusionOutcome.CLEAR
        assert recheck.verification is None
        assert recheck.status_change.status is S.PENDING_REVIEW

    async def test_match_holds_provider_in_verification(
        self, service, db_session, registry, exclusion_source
    ):
        registry.register(VALID_NPI)
        exclusion_source.exclude(name="JANE DOE")

        provider_id, result = await bring_to_review(service, db_session)

        assert result.status_change.status is S.PENDING_VERIFICATION
        assert result.exclusion.matched_entry_ids == ("test_list:1",)
        view = await service.get_profile_status(db_session, provider_id)
        assert view.blocking_reasons == ("exclusion_match",)

    async def test_stale_exclusion_blocks_approval(
        self, service, db_session, registry, exclusion_source, clock
    ):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)

        clock.advance(days=31)
        with pytest.raises(InvalidTransition):
            await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)

        refreshed = await service.reverify(db_session, provider_id)
        assert refreshed.status_change.status is S.PENDING_REVIEW
        assert len(exclusion_source.calls) == 2

        outcome = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.APPROVE
        )
        assert outcome.status_change.status is S.APPROVED


# ---------------------------------------------------------------------------
# Admin decisions
# ---------------------------------------------------------------------------


class TestAdminDecisions:
    async def test_approve_replay_is_a_noop(self, service, db_session, registry):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)

        first = await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)
        replay = await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)

        assert replay.changed is False
        assert replay.decision.seq == first.decision.seq
        assert replay.status_change.status is S.APPROVED
        history = await service.get_history(db_session, provider_id)
        assert len(history.decisions) == 1

    async def test_reject_requires_reason_and_is_terminal(self, service, db_session, registry):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)

        with pytest.raises(MissingReason):
            await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.REJECT, "  ")

        outcome = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.REJECT, "License could not be confirmed"
        )
        assert outcome.status_change.status is S.REJECTED

        # Documents are still recorded, the status never moves again
        upload = await service.submit_document(
            db_session, provider_id, DocumentType.LICENSE, pdf_upload(), date(2029, 1, 1)
        )
        assert upload.status_change.status is S.REJECTED
        assert upload.status_change.changed is False

        with pytest.raises(InvalidTransition):
            await service.submit_npi(db_session, provider_id, VALID_NPI)
        with pytest.raises(InvalidTransition):
            await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)

        replay = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.REJECT, "Again"
        )
        assert replay.changed is False

    async def test_decision_outside_review_is_invalid(self, service, db_session):
        provider_id = uuid.uuid4()
        await submit_required_documents(service, db_session, provider_id)
        with pytest.raises(InvalidTransition):
            await service.admin_decide(db_session, provider_id, "admin-1", DecisionType.APPROVE)

    async def test_unknown_provider(self, service, db_session):
        with pytest.raises(ProfileNotFound):
            await service.admin_decide(db_session, uuid.uuid4(), "admin-1", DecisionType.APPROVE)

    async def test_request_more_info_keeps_review(self, service, db_session, registry, clock):
        registry.register(VALID_NPI)
        provider_id, _ = await bring_to_review(service, db_session)

        clock.advance(hours=1)
        asked = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.REQUEST_MORE_INFO, "Upload board cert"
        )
        assert asked.changed is True
        assert asked.status_change.status is S.PENDING_REVIEW
        view = await service.get_profile_status(db_session, provider_id)
        assert view.awaiting_provider_info is True

        again = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.REQUEST_MORE_INFO, "Still waiting"
        )
        assert again.changed is False

        clock.advance(hours=1)
        await service.submit_document(
            db_session,
            provider_id,
            DocumentType.BOARD_CERTIFICATION,
            pdf_upload("board.pdf"),
            None,
        )
        view = await service.get_profile_status(db_session, provider_id)
        assert view.status is S.PENDING_REVIEW
        assert view.awaiting_provider_info is False

        approved = await service.admin_decide(
            db_session, provider_id, "admin-1", DecisionType.APPROVE
        )
        assert approved.status_change.status is S.APPROVED


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------


class TestReviewQueue:
    async def test_oldest_entry_first(self, service, db_session, registry, clock):
        registry.register(VALID_NPI)
        entered = []
        for _ in range(3):
            provider_id, _ = await bring_to_review(service, db_session)
            entered.append(provider_id)
            clock.advance(hours=1)

        queue = await list_review_queue(db_session, now=clock())
        assert [item.provider_id for item in queue] == entered
        assert all(item.review_cycle == 1 for item in queue)

        limited = await list_review_queue(db_session, now=clock(), limit=2)
        assert [item.provider_id for item in limited] == entered[:2]

    async def test_decided_and_expired_profiles_leave_queue(
        self, service, db_session, registry, clock
    ):
        registry.register(VALID_NPI)
        approved, _ = await bring_to_review(service, db_session)
        expiring, _ = await bring_to_review(
            service, db_session, liability_expires=date(2026, 1, 20)
        )
        waiting, _ = await bring_to_review(service, db_session)

        await service.admin_decide(db_session, approved, "admin-1", DecisionType.APPROVE)
        clock.current = START + timedelta(days=16)

        queue = await list_review_queue(db_session, now=clock())
        assert [item.provider_id for item in queue] == [waiting]
        assert expiring not in {item.provider_id for item in queue}
