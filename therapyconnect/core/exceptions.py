"""
Credentialing error taxonomy.

Every failure in the credentialing workflow is scoped to one provider and is
raised as a subclass of ``CredentialingError`` so the API layer can map it to
a structured response:

- ``CredentialingInputError``  -- rejected synchronously, no state change
- ``ExternalUnavailable``      -- retryable; cached results stay authoritative
- ``ProfileNotFound``          -- unknown provider identifier
- ``DocumentNotFound``         -- unknown document for that provider
- ``InvalidTransition``        -- action is genuinely invalid for the current state

Definitive negative verification outcomes (NPI not found, deactivated NPI,
exclusion match) are *results*, not exceptions.
"""

from __future__ import annotations

from typing import Any


class CredentialingError(Exception):
    """Base class for all credentialing workflow errors."""

    code: str = "credentialing_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------

class CredentialingInputError(CredentialingError):
    code = "invalid_input"


class InvalidFormat(CredentialingInputError):
    code = "invalid_format"


class InvalidChecksum(CredentialingInputError):
    code = "invalid_checksum"


class MissingExpiration(CredentialingInputError):
    code = "missing_expiration"


class UnexpectedExpiration(CredentialingInputError):
    code = "unexpected_expiration"


class UnsupportedFile(CredentialingInputError):
    code = "unsupported_file"


class FileTooLarge(CredentialingInputError):
    code = "file_too_large"


class MissingReason(CredentialingInputError):
    code = "missing_reason"


# ---------------------------------------------------------------------------
# External unavailability (retryable)
# ---------------------------------------------------------------------------

class ExternalUnavailable(CredentialingError):
    code = "external_unavailable"
    retryable = True


class VerificationUnavailable(ExternalUnavailable):
    code = "verification_unavailable"


class StorageUnavailable(ExternalUnavailable):
    code = "storage_unavailable"


class ExclusionSourceUnavailable(ExternalUnavailable):
    code = "exclusion_source_unavailable"


# ---------------------------------------------------------------------------
# Lookup / state errors
# ---------------------------------------------------------------------------

class ProfileNotFound(CredentialingError):
    code = "profile_not_found"


class DocumentNotFound(CredentialingError):
    code = "document_not_found"


class InvalidTransition(CredentialingError):
    code = "invalid_transition"
