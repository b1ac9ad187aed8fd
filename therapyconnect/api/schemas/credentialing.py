"""
Pydantic v2 schemas for the provider credentialing API.

Covers:
- Document submission and document history
- NPI submission, standalone verification and registry search
- DEA number submission and its validation result
- Admin decisions and the review queue
- Profile status view, audit history and expiration alerts

Response models read straight from service DTOs and ORM rows
(``from_attributes=True``).
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from therapyconnect.models import (
    CredentialingStatus,
    DecisionType,
    DocumentType,
    ExclusionOutcome,
    NPIFailureReason,
)
from therapyconnect.services.credentialingService import StatusChange
from therapyconnect.services.credentialingStateMachine import ExclusionStanding, NPIStanding
from therapyconnect.services.documentLifecycle import ValidityState


class _ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class NPISubmissionRequest(BaseModel):
    """Request body for submitting an NPI.  Format and check digit are
    validated by the service so the error carries the specific reason."""

    npi_number: str = Field(
        min_length=1,
        max_length=20,
        description="10-digit National Provider Identifier",
    )
    legal_name: Optional[str] = Field(
        default=None,
        max_length=300,
        description="Provider legal name; required with the first submission",
    )


class NPIVerifyRequest(BaseModel):
    npi_number: str = Field(min_length=1, max_length=20)
    force: bool = Field(
        default=False,
        description="Bypass the cached result and query the registry again",
    )


class DEASubmissionRequest(BaseModel):
    dea_number: str = Field(
        min_length=1,
        max_length=20,
        description="DEA registration number, two letters and seven digits",
    )


class AdminDecisionRequest(BaseModel):
    """Request body for an admin credentialing decision."""

    reviewer_id: str = Field(
        min_length=1,
        max_length=100,
        description="Identifier of the admin making the decision",
    )
    decision: DecisionType = Field(
        description="approve, reject, or request_more_info",
    )
    reason: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Required when rejecting",
    )


# ---------------------------------------------------------------------------
# Shared response pieces
# ---------------------------------------------------------------------------

class TransitionOut(BaseModel):
    from_status: CredentialingStatus
    to_status: CredentialingStatus
    rule: str


class StatusChangeOut(BaseModel):
    previous_status: CredentialingStatus
    status: CredentialingStatus
    changed: bool
    transitions: list[TransitionOut] = Field(default_factory=list)

    @classmethod
    def from_change(cls, change: StatusChange) -> "StatusChangeOut":
        return cls(
            previous_status=change.previous_status,
            status=change.status,
            changed=change.changed,
            transitions=[
                TransitionOut(from_status=s.from_status, to_status=s.to_status, rule=s.rule)
                for s in change.steps
            ],
        )


class DocumentOut(_ORMModel):
    document_id: uuid.UUID
    document_type: DocumentType
    file_name: str
    mime_type: str
    size_bytes: int
    declared_expiration: Optional[date] = None
    uploaded_at: datetime
    validity: ValidityState
    days_until_expiration: Optional[int] = None
    superseded_at: Optional[datetime] = None
    superseded_by_id: Optional[uuid.UUID] = None


class NPIRecordOut(_ORMModel):
    number: str
    enumeration_type: Optional[str] = None
    provider_type: str
    name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    credential: Optional[str] = None
    status: Optional[str] = None
    taxonomy_code: Optional[str] = None
    taxonomy_description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    enumeration_date: Optional[str] = None
    last_updated: Optional[str] = None


class NPIVerificationOut(_ORMModel):
    npi_number: str
    valid: bool
    failure_reason: Optional[NPIFailureReason] = None
    fetched_at: datetime
    record: Optional[NPIRecordOut] = None


class ExclusionCheckOut(_ORMModel):
    outcome: ExclusionOutcome
    checked_at: datetime
    name_checked: str
    npi_checked: Optional[str] = None
    matched_sources: list[str] = Field(default_factory=list)
    matched_entry_ids: list[str] = Field(default_factory=list)
    unavailable_sources: list[str] = Field(default_factory=list)


class DEAValidationOut(_ORMModel):
    dea_number: str
    valid: bool
    check_digit_valid: bool
    registrant_type: Optional[str] = None
    registrant_type_description: Optional[str] = None
    name_checked: Optional[str] = None
    errors: list[str] = Field(default_factory=list)
    validated_at: datetime


class DecisionOut(_ORMModel):
    reviewer_id: str
    decision: DecisionType
    reason: Optional[str] = None
    review_cycle: int
    decided_at: datetime


# ---------------------------------------------------------------------------
# Operation responses
# ---------------------------------------------------------------------------

class DocumentSubmissionOut(BaseModel):
    provider_id: uuid.UUID
    document: DocumentOut
    superseded_document_id: Optional[uuid.UUID] = None
    status_change: StatusChangeOut
    warnings: list[str] = Field(default_factory=list)


class NPISubmissionOut(BaseModel):
    provider_id: uuid.UUID
    npi_number: str
    status_change: StatusChangeOut
    verification: Optional[NPIVerificationOut] = None
    exclusion: Optional[ExclusionCheckOut] = None
    warnings: list[str] = Field(default_factory=list)


class AdminDecisionOut(BaseModel):
    provider_id: uuid.UUID
    decision: DecisionOut
    changed: bool
    status_change: StatusChangeOut


class NPISearchOut(BaseModel):
    count: int
    results: list[NPIRecordOut]


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class ProfileStatusOut(_ORMModel):
    provider_id: uuid.UUID
    status: CredentialingStatus
    status_changed_at: datetime
    review_cycle: int
    publicly_listable: bool
    legal_name: Optional[str] = None
    npi_number: Optional[str] = None
    documents: list[DocumentOut] = Field(default_factory=list)
    missing_required_types: list[DocumentType] = Field(default_factory=list)
    expired_required_types: list[DocumentType] = Field(default_factory=list)
    blocking_reasons: list[str] = Field(default_factory=list)
    npi_verification: Optional[NPIVerificationOut] = None
    npi_standing: NPIStanding
    exclusion_check: Optional[ExclusionCheckOut] = None
    exclusion_standing: ExclusionStanding
    dea_number: Optional[str] = None
    dea_validation: Optional[DEAValidationOut] = None
    latest_decision: Optional[DecisionOut] = None
    awaiting_provider_info: bool = False


class TransitionLogOut(_ORMModel):
    from_status: CredentialingStatus
    to_status: CredentialingStatus
    rule: str
    trigger: str
    occurred_at: datetime


class ProfileHistoryOut(_ORMModel):
    provider_id: uuid.UUID
    documents: list[DocumentOut]
    transitions: list[TransitionLogOut]
    decisions: list[DecisionOut]
    exclusion_checks: list[ExclusionCheckOut]


class ReviewQueueItemOut(_ORMModel):
    provider_id: uuid.UUID
    legal_name: Optional[str] = None
    npi_number: Optional[str] = None
    entered_review_at: datetime
    review_cycle: int
    awaiting_provider_info: bool
    last_decision: Optional[DecisionType] = None


class ReviewQueueOut(BaseModel):
    total: int
    items: list[ReviewQueueItemOut]


class DocumentAlertOut(_ORMModel):
    document_id: uuid.UUID
    document_type: DocumentType
    declared_expiration: date
    state: ValidityState
    days_remaining: int


class ProviderAlertsOut(_ORMModel):
    provider_id: uuid.UUID
    legal_name: Optional[str] = None
    status: CredentialingStatus
    alerts: list[DocumentAlertOut]
