"""
Document Lifecycle -- TC-CRED-001
==================================

Per-type document policy, upload validation and validity evaluation.

Validity is never stored.  ``evaluate`` is a pure function of a document's
declared expiration (and supersession pointer) and the reference date, so
the same document reads ``valid`` today and ``expired`` once the date passes
without anything having been written.

Policy table::

    license                 expiration required   required for credentialing
    liability_insurance     expiration required   required for credentialing
    malpractice_insurance   expiration required
    board_certification     expiration optional
    other                   expiration forbidden
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional, Protocol

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import (
    FileTooLarge,
    MissingExpiration,
    UnexpectedExpiration,
    UnsupportedFile,
)
from therapyconnect.models import DocumentType


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class ExpirationRule(str, enum.Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class DocumentPolicy:
    label: str
    expiration: ExpirationRule
    required_for_credentialing: bool = False


DOCUMENT_POLICIES: dict[DocumentType, DocumentPolicy] = {
    DocumentType.LICENSE: DocumentPolicy(
        label="Professional license",
        expiration=ExpirationRule.REQUIRED,
        required_for_credentialing=True,
    ),
    DocumentType.LIABILITY_INSURANCE: DocumentPolicy(
        label="Liability insurance",
        expiration=ExpirationRule.REQUIRED,
        required_for_credentialing=True,
    ),
    DocumentType.MALPRACTICE_INSURANCE: DocumentPolicy(
        label="Malpractice insurance",
        expiration=ExpirationRule.REQUIRED,
    ),
    DocumentType.BOARD_CERTIFICATION: DocumentPolicy(
        label="Board certification",
        expiration=ExpirationRule.OPTIONAL,
    ),
    DocumentType.OTHER: DocumentPolicy(
        label="Other supporting document",
        expiration=ExpirationRule.FORBIDDEN,
    ),
}

REQUIRED_DOCUMENT_TYPES: frozenset[DocumentType] = frozenset(
    doc_type
    for doc_type, policy in DOCUMENT_POLICIES.items()
    if policy.required_for_credentialing
)


class ValidityState(str, enum.Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class _DocumentLike(Protocol):
    declared_expiration: Optional[date]
    superseded_by_id: object


# ---------------------------------------------------------------------------
# Upload validation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileUpload:
    """Raw uploaded file as received from the caller."""
    file_name: str
    mime_type: str
    content: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


def validate_expiration(
    document_type: DocumentType,
    declared_expiration: Optional[date],
) -> None:
    """Enforce the per-type expiration rule.

    Raises:
        MissingExpiration: The type requires an expiration and none was given.
        UnexpectedExpiration: The type forbids an expiration and one was given.
    """
    rule = DOCUMENT_POLICIES[document_type].expiration
    if rule is ExpirationRule.REQUIRED and declared_expiration is None:
        raise MissingExpiration(
            f"Documents of type '{document_type.value}' must declare an expiration date",
            document_type=document_type.value,
        )
    if rule is ExpirationRule.FORBIDDEN and declared_expiration is not None:
        raise UnexpectedExpiration(
            f"Documents of type '{document_type.value}' do not carry an expiration date",
            document_type=document_type.value,
        )


def validate_file(
    upload: FileUpload,
    *,
    max_bytes: Optional[int] = None,
    allowed_mime_types: Optional[Iterable[str]] = None,
) -> None:
    """Reject empty, oversized or unsupported uploads before they reach storage."""
    limit = max_bytes if max_bytes is not None else settings.max_document_bytes
    allowed = set(
        allowed_mime_types
        if allowed_mime_types is not None
        else settings.allowed_document_mime_types
    )

    if upload.size_bytes == 0:
        raise UnsupportedFile("Uploaded file is empty", file_name=upload.file_name)

    if upload.size_bytes > limit:
        raise FileTooLarge(
            f"File exceeds the maximum size of {limit} bytes",
            size_bytes=upload.size_bytes,
            max_bytes=limit,
        )

    mime_type = (upload.mime_type or "").split(";")[0].strip().lower()
    if mime_type not in allowed:
        raise UnsupportedFile(
            f"File type '{upload.mime_type}' is not accepted",
            mime_type=upload.mime_type,
            allowed=sorted(allowed),
        )


def validate_submission(
    document_type: DocumentType,
    upload: FileUpload,
    declared_expiration: Optional[date],
) -> None:
    validate_expiration(document_type, declared_expiration)
    validate_file(upload)


# ---------------------------------------------------------------------------
# Validity evaluation
# ---------------------------------------------------------------------------

def _as_date(as_of: date | datetime) -> date:
    if isinstance(as_of, datetime):
        if as_of.tzinfo is not None:
            as_of = as_of.astimezone(timezone.utc)
        return as_of.date()
    return as_of


def evaluate_expiration(
    declared_expiration: Optional[date],
    as_of: date | datetime,
    *,
    warning_days: Optional[int] = None,
) -> ValidityState:
    """Classify an expiration date against a reference date.

    A document expires *on* its expiration date: ``as_of >= expiration`` is
    expired.  A document with no expiration is always valid.
    """
    if declared_expiration is None:
        return ValidityState.VALID

    reference = _as_date(as_of)
    lead = warning_days if warning_days is not None else settings.expiry_warning_days

    if reference >= declared_expiration:
        return ValidityState.EXPIRED
    if declared_expiration - reference <= timedelta(days=lead):
        return ValidityState.EXPIRING_SOON
    return ValidityState.VALID


def evaluate(
    document: _DocumentLike,
    as_of: date | datetime,
    *,
    warning_days: Optional[int] = None,
) -> ValidityState:
    if document.superseded_by_id is not None:
        return ValidityState.SUPERSEDED
    return evaluate_expiration(
        document.declared_expiration, as_of, warning_days=warning_days
    )


def days_until_expiration(
    declared_expiration: Optional[date], as_of: date | datetime
) -> Optional[int]:
    if declared_expiration is None:
        return None
    return (declared_expiration - _as_date(as_of)).days


# ---------------------------------------------------------------------------
# Completeness
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DocumentCompleteness:
    missing_types: frozenset[DocumentType]
    expired_types: frozenset[DocumentType]

    @property
    def complete(self) -> bool:
        return not self.missing_types and not self.expired_types


def current_documents(documents: Iterable[_DocumentLike]) -> dict[DocumentType, _DocumentLike]:
    """Map each document type to its single current (non-superseded) document."""
    current: dict[DocumentType, _DocumentLike] = {}
    for document in documents:
        if document.superseded_by_id is None:
            current[document.document_type] = document  # type: ignore[attr-defined]
    return current


def assess_completeness(
    documents: Iterable[_DocumentLike],
    as_of: date | datetime,
) -> DocumentCompleteness:
    current = current_documents(documents)
    missing = frozenset(t for t in REQUIRED_DOCUMENT_TYPES if t not in current)
    expired = frozenset(
        t
        for t in REQUIRED_DOCUMENT_TYPES
        if t in current
        and evaluate(current[t], as_of) is ValidityState.EXPIRED
    )
    return DocumentCompleteness(missing_types=missing, expired_types=expired)
