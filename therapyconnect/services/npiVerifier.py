"""
NPI Verifier -- TC-CRED-002
============================

Validates a candidate National Provider Identifier locally and confirms it
against the CMS NPI Registry.

Local checks run first and never touch the network:

1. Shape -- exactly ten ASCII digits (``InvalidFormat``).
2. Checksum -- Luhn over the number prefixed with the card issuer
   identifier ``80840`` (``InvalidChecksum``).

A registry answer of "no such record" or "deactivated" is a definitive
*result* with ``valid=False``.  Failing to reach the registry is an
exception (``VerificationUnavailable``) and produces no result at all, so a
previously cached result stays authoritative.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

from therapyconnect.core.exceptions import InvalidChecksum, InvalidFormat
from therapyconnect.integrations.npiRegistry import NPIRegistryRecord
from therapyconnect.models import NPIFailureReason, NPIVerification

logger = logging.getLogger(__name__)

_NPI_PATTERN = re.compile(r"[0-9]{10}")

# Issuer prefix mandated for NPI check digits (ISO 7812 health applications)
_NPI_LUHN_PREFIX = "80840"


# ---------------------------------------------------------------------------
# Local validation
# ---------------------------------------------------------------------------

def is_valid_npi_checksum(npi_number: str) -> bool:
    """Luhn check over ``80840`` + the ten-digit NPI."""
    if not _NPI_PATTERN.fullmatch(npi_number):
        return False

    digits = [int(d) for d in _NPI_LUHN_PREFIX + npi_number]
    total = 0
    # Double every second digit counting from the rightmost (check) digit
    for index, digit in enumerate(reversed(digits)):
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def check_npi_candidate(candidate: str) -> str:
    """Return the candidate if it is a well-formed NPI, else raise an input error.

    Raises:
        InvalidFormat: Not exactly ten digits.
        InvalidChecksum: Ten digits with a bad check digit.
    """
    value = candidate or ""
    if not _NPI_PATTERN.fullmatch(value):
        raise InvalidFormat("NPI must be exactly 10 digits", npi=candidate)
    if not is_valid_npi_checksum(value):
        raise InvalidChecksum("NPI check digit is invalid", npi=value)
    return value


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VerificationResult:
    npi_number: str
    valid: bool
    fetched_at: datetime
    failure_reason: Optional[NPIFailureReason] = None
    record: Optional[NPIRegistryRecord] = field(default=None, compare=False)

    @classmethod
    def from_record(
        cls,
        npi_number: str,
        record: Optional[NPIRegistryRecord],
        fetched_at: datetime,
    ) -> "VerificationResult":
        if record is None:
            return cls(
                npi_number=npi_number,
                valid=False,
                fetched_at=fetched_at,
                failure_reason=NPIFailureReason.NOT_FOUND,
            )
        if record.is_deactivated:
            return cls(
                npi_number=npi_number,
                valid=False,
                fetched_at=fetched_at,
                failure_reason=NPIFailureReason.DEACTIVATED,
                record=record,
            )
        return cls(npi_number=npi_number, valid=True, fetched_at=fetched_at, record=record)

    @classmethod
    def from_row(cls, row: NPIVerification) -> "VerificationResult":
        record = None
        if row.name is not None or row.enumeration_type is not None:
            record = NPIRegistryRecord(
                number=row.npi_number,
                enumeration_type=row.enumeration_type,
                provider_type="Individual" if row.enumeration_type == "NPI-1" else "Organization",
                name=row.name or "",
                first_name=row.first_name,
                last_name=row.last_name,
                credential=row.credential,
                status=row.registry_status,
                taxonomy_code=row.specialty_code,
                taxonomy_description=row.specialty_description,
                address=row.address,
                city=row.city,
                state=row.state,
                postal_code=row.postal_code,
                phone=row.phone,
                enumeration_date=row.enumeration_date,
                last_updated=row.last_updated,
                raw=row.raw_response or {},
            )
        return cls(
            npi_number=row.npi_number,
            valid=row.valid,
            fetched_at=row.fetched_at,
            failure_reason=row.failure_reason,
            record=record,
        )

    def to_row(self) -> NPIVerification:
        record = self.record
        return NPIVerification(
            npi_number=self.npi_number,
            valid=self.valid,
            failure_reason=self.failure_reason,
            name=record.name if record else None,
            first_name=record.first_name if record else None,
            last_name=record.last_name if record else None,
            credential=record.credential if record else None,
            enumeration_type=record.enumeration_type if record else None,
            specialty_code=record.taxonomy_code if record else None,
            specialty_description=record.taxonomy_description if record else None,
            registry_status=record.status if record else None,
            address=record.address if record else None,
            city=record.city if record else None,
            state=record.state if record else None,
            postal_code=record.postal_code if record else None,
            phone=record.phone if record else None,
            enumeration_date=record.enumeration_date if record else None,
            last_updated=record.last_updated if record else None,
            fetched_at=self.fetched_at,
            raw_response=record.raw if record else None,
        )

    def summary(self) -> dict[str, Any]:
        record = self.record
        return {
            "npi_number": self.npi_number,
            "valid": self.valid,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "fetched_at": self.fetched_at,
            "name": record.name if record else None,
            "enumeration_type": record.enumeration_type if record else None,
            "provider_type": record.provider_type if record else None,
            "credential": record.credential if record else None,
            "specialty": record.taxonomy_description if record else None,
            "state": record.state if record else None,
        }


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------

class RegistryLookup(Protocol):
    async def lookup(self, npi_number: str) -> Optional[NPIRegistryRecord]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NPIVerifier:
    """Checks candidates locally, then confirms them with the registry.

    Results are cached by candidate value.  The persistent cache lives in
    ``npi_verifications``; callers hand the latest cached result in as
    ``cached`` and it is returned untouched unless ``force`` is set.
    """

    def __init__(
        self,
        registry: RegistryLookup,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._registry = registry
        self._clock = clock or _utcnow

    async def verify(
        self,
        candidate: str,
        *,
        cached: Optional[VerificationResult] = None,
        force: bool = False,
    ) -> VerificationResult:
        npi_number = check_npi_candidate(candidate)

        if cached is not None and cached.npi_number == npi_number and not force:
            logger.debug("NPI %s served from cache (fetched %s)", npi_number, cached.fetched_at)
            return cached

        record = await self._registry.lookup(npi_number)
        result = VerificationResult.from_record(npi_number, record, self._clock())

        logger.info(
            "NPI %s verified: valid=%s reason=%s",
            npi_number,
            result.valid,
            result.failure_reason.value if result.failure_reason else None,
        )
        return result
