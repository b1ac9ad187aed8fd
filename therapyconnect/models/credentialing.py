"""
SQLAlchemy models for the provider credentialing workflow.

Tables: credential_profiles, credential_documents, npi_verifications,
exclusion_checks, dea_validations, admin_decisions,
credential_status_transitions.

Nothing here is ever physically deleted.  Documents are superseded through a
pointer to their replacement; verification results, exclusion checks,
decisions and transitions are append-only logs.  The profile's ``status``
column is a cache of the value derived by the credentialing state machine and
is only written by the service's recompute step.
"""

import enum
import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin


class CredentialingStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_VERIFICATION = "pending_verification"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED_EXPIRED = "suspended_expired"


class DocumentType(str, enum.Enum):
    LICENSE = "license"
    LIABILITY_INSURANCE = "liability_insurance"
    MALPRACTICE_INSURANCE = "malpractice_insurance"
    BOARD_CERTIFICATION = "board_certification"
    OTHER = "other"


class DecisionType(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_MORE_INFO = "request_more_info"


class NPIFailureReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    DEACTIVATED = "deactivated"


class ExclusionOutcome(str, enum.Enum):
    CLEAR = "clear"
    MATCH = "match"
    INDETERMINATE = "indeterminate"


class CredentialProfile(TimestampMixin, Base):
    __tablename__ = "credential_profiles"

    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    legal_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    npi_number: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    npi_submitted_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    dea_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Derived -- written only by the recompute step
    status: Mapped[CredentialingStatus] = mapped_column(
        Enum(CredentialingStatus, name="credentialing_status", native_enum=False, length=40),
        nullable=False,
        default=CredentialingStatus.DRAFT,
    )
    status_changed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    review_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    documents: Mapped[list["CredentialDocument"]] = relationship(
        "CredentialDocument",
        back_populates="profile",
        foreign_keys="CredentialDocument.provider_id",
        order_by="CredentialDocument.uploaded_at",
    )
    decisions: Mapped[list["AdminDecision"]] = relationship(
        "AdminDecision",
        back_populates="profile",
        order_by="AdminDecision.seq",
    )

    def __repr__(self) -> str:
        return (
            f"<CredentialProfile(provider={self.provider_id}, "
            f"status={self.status}, npi={self.npi_number})>"
        )


class CredentialDocument(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "credential_documents"
    __table_args__ = (
        Index("ix_credential_documents_provider_type", "provider_id", "document_type"),
    )

    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("credential_profiles.provider_id", ondelete="RESTRICT"),
        nullable=False,
    )
    document_type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType, name="document_type", native_enum=False, length=40),
        nullable=False,
    )

    # Storage
    storage_reference: Mapped[str] = mapped_column(String(500), nullable=False)
    file_name: Mapped[str] = mapped_column(String(300), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(120), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    content_sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    # Validity
    declared_expiration: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Supersession
    superseded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("credential_documents.id"),
        nullable=True,
    )
    superseded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    profile: Mapped["CredentialProfile"] = relationship(
        "CredentialProfile",
        back_populates="documents",
        foreign_keys=[provider_id],
    )

    @property
    def is_current(self) -> bool:
        return self.superseded_by_id is None

    def __repr__(self) -> str:
        return (
            f"<CredentialDocument(id={self.id}, provider={self.provider_id}, "
            f"type={self.document_type}, current={self.is_current})>"
        )


class NPIVerification(Base):
    """Immutable NPI registry lookup result, cached by candidate number."""

    __tablename__ = "npi_verifications"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    npi_number: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[Optional[NPIFailureReason]] = mapped_column(
        Enum(NPIFailureReason, name="npi_failure_reason", native_enum=False, length=40),
        nullable=True,
    )

    # Registry fields
    name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    credential: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    enumeration_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    specialty_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    specialty_description: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    registry_status: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(400), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    enumeration_date: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_updated: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    fetched_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    raw_response: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<NPIVerification(npi={self.npi_number}, valid={self.valid}, "
            f"reason={self.failure_reason})>"
        )


class ExclusionCheck(Base):
    """Immutable OIG/SAM exclusion check result for one provider."""

    __tablename__ = "exclusion_checks"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("credential_profiles.provider_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    outcome: Mapped[ExclusionOutcome] = mapped_column(
        Enum(ExclusionOutcome, name="exclusion_outcome", native_enum=False, length=40),
        nullable=False,
    )
    name_checked: Mapped[str] = mapped_column(String(300), nullable=False)
    npi_checked: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    matched_sources: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    matched_entry_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    unavailable_sources: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    checked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ExclusionCheck(provider={self.provider_id}, outcome={self.outcome}, "
            f"checked_at={self.checked_at})>"
        )


class DEAValidation(Base):
    """DEA number format and check-digit validation recorded for a provider.

    Format only; this says nothing about whether the registration is active.
    """

    __tablename__ = "dea_validations"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("credential_profiles.provider_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    dea_number: Mapped[str] = mapped_column(String(20), nullable=False)
    valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    registrant_type: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    registrant_type_description: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    check_digit_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    name_checked: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    errors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    validated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<DEAValidation(provider={self.provider_id}, dea={self.dea_number}, "
            f"valid={self.valid})>"
        )


class AdminDecision(Base):
    """
    Append-only admin decision log entry.
    The review cycle ties a decision to one stay in pending_review.
    """

    __tablename__ = "admin_decisions"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("credential_profiles.provider_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    reviewer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    decision: Mapped[DecisionType] = mapped_column(
        Enum(DecisionType, name="decision_type", native_enum=False, length=40),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    review_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    decided_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    profile: Mapped["CredentialProfile"] = relationship(
        "CredentialProfile", back_populates="decisions"
    )

    def __repr__(self) -> str:
        return (
            f"<AdminDecision(provider={self.provider_id}, decision={self.decision}, "
            f"cycle={self.review_cycle})>"
        )


class StatusTransition(Base):
    __tablename__ = "credential_status_transitions"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("credential_profiles.provider_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[CredentialingStatus] = mapped_column(
        Enum(CredentialingStatus, name="credentialing_status", native_enum=False, length=40),
        nullable=False,
    )
    to_status: Mapped[CredentialingStatus] = mapped_column(
        Enum(CredentialingStatus, name="credentialing_status", native_enum=False, length=40),
        nullable=False,
    )
    rule: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StatusTransition(provider={self.provider_id}, "
            f"{self.from_status} -> {self.to_status}, rule={self.rule})>"
        )
