"""
TherapyConnect SQLAlchemy Models
================================

Central import point for all ORM models. Import ``Base`` from here so that
``Base.metadata`` is fully populated for ``create_all``.

Usage::

    from therapyconnect.models import Base, CredentialProfile, CredentialDocument
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin

# -- Credentialing workflow --
from .credentialing import (
    AdminDecision,
    CredentialDocument,
    CredentialingStatus,
    CredentialProfile,
    DEAValidation,
    DecisionType,
    DocumentType,
    ExclusionCheck,
    ExclusionOutcome,
    NPIFailureReason,
    NPIVerification,
    StatusTransition,
)

# -- Exclusion list data --
from .exclusion import OIGExclusion

__all__ = [
    "AdminDecision",
    "Base",
    "CredentialDocument",
    "CredentialingStatus",
    "CredentialProfile",
    "DEAValidation",
    "DecisionType",
    "DocumentType",
    "ExclusionCheck",
    "ExclusionOutcome",
    "NPIFailureReason",
    "NPIVerification",
    "OIGExclusion",
    "StatusTransition",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDPrimaryKeyMixin",
]
