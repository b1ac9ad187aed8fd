"""
DEA Validator -- TC-CRED-006
=============================

Format and check-digit validation of DEA registration numbers.

A DEA number is two letters and seven digits.  The first letter is the
registrant type, the second is the registrant's last-name initial (mid-level
practitioners may carry their supervising physician's initial instead), and
the last digit is a check digit over the first six.

This validates format only.  It does not confirm the registration is active
with the DEA, and a failed validation is recorded for admin attention rather
than blocking credentialing.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from therapyconnect.core.exceptions import InvalidFormat
from therapyconnect.models import DEAValidation

_DEA_PATTERN = re.compile(r"[A-Z]{2}[0-9]{7}")

REGISTRANT_TYPES: dict[str, str] = {
    "A": "Deprecated (replaced by F)",
    "B": "Hospital/Clinic",
    "C": "Practitioner",
    "D": "Teaching Institution",
    "E": "Manufacturer",
    "F": "Distributor",
    "G": "Researcher",
    "H": "Analytical Lab",
    "J": "Importer",
    "K": "Exporter",
    "L": "Reverse Distributor",
    "M": "Mid-Level Practitioner (NP, PA, etc.)",
    "P": "Narcotic Treatment Program",
    "R": "Reverse Distributor",
    "S": "Supplier",
    "T": "Teaching Institution (research)",
    "U": "Narcotic Treatment Program (research)",
    "X": "Suboxone/Buprenorphine Waiver Practitioner",
}

MID_LEVEL_REGISTRANT = "M"


def is_valid_dea_check_digit(digits: str) -> bool:
    """(d1 + d3 + d5) + 2 * (d2 + d4 + d6); the last digit of the total must
    equal d7."""
    if not re.fullmatch(r"[0-9]{7}", digits):
        return False
    values = [int(d) for d in digits]
    total = sum(values[0:6:2]) + 2 * sum(values[1:6:2])
    return total % 10 == values[6]


def check_dea_candidate(candidate: str) -> str:
    """Upper-case the candidate and check its shape.

    Raises:
        InvalidFormat: Not two letters followed by seven digits.
    """
    value = (candidate or "").strip().upper()
    if not _DEA_PATTERN.fullmatch(value):
        raise InvalidFormat(
            "DEA number must be 2 letters followed by 7 digits (e.g., AB1234563)",
            dea_number=candidate,
        )
    return value


def last_name_of(legal_name: Optional[str]) -> Optional[str]:
    parts = (legal_name or "").replace(",", " ").split()
    return parts[-1] if parts else None


@dataclass(frozen=True)
class DEAValidationResult:
    dea_number: str
    valid: bool
    check_digit_valid: bool
    validated_at: datetime
    registrant_type: Optional[str] = None
    registrant_type_description: Optional[str] = None
    name_checked: Optional[str] = None
    errors: tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: DEAValidation) -> "DEAValidationResult":
        return cls(
            dea_number=row.dea_number,
            valid=row.valid,
            check_digit_valid=row.check_digit_valid,
            validated_at=row.validated_at,
            registrant_type=row.registrant_type,
            registrant_type_description=row.registrant_type_description,
            name_checked=row.name_checked,
            errors=tuple(row.errors or ()),
        )

    def to_row(self, provider_id: uuid.UUID) -> DEAValidation:
        return DEAValidation(
            provider_id=provider_id,
            dea_number=self.dea_number,
            valid=self.valid,
            registrant_type=self.registrant_type,
            registrant_type_description=self.registrant_type_description,
            check_digit_valid=self.check_digit_valid,
            name_checked=self.name_checked,
            errors=list(self.errors),
            validated_at=self.validated_at,
        )


def validate_dea_number(
    dea_number: str,
    legal_name: Optional[str],
    validated_at: datetime,
) -> DEAValidationResult:
    """Validate registrant type, last-name initial and check digit.

    Every failed rule adds an error; the number is valid only when none do.
    The last-name rule is skipped when no name is known and for mid-level
    practitioners.

    Raises:
        InvalidFormat: Not two letters followed by seven digits.
    """
    value = check_dea_candidate(dea_number)
    registrant_type, initial, digits = value[0], value[1], value[2:]
    errors: list[str] = []

    description = REGISTRANT_TYPES.get(registrant_type)
    if description is None:
        errors.append(f"Invalid registrant type letter: {registrant_type}")

    last_name = last_name_of(legal_name)
    if last_name and registrant_type != MID_LEVEL_REGISTRANT:
        expected = last_name[0].upper()
        if initial != expected:
            errors.append(
                f"Second letter of DEA ({initial}) does not match last name initial ({expected})"
            )

    check_digit_valid = is_valid_dea_check_digit(digits)
    if not check_digit_valid:
        errors.append("Invalid check digit. DEA number appears to be incorrect.")

    return DEAValidationResult(
        dea_number=value,
        valid=not errors,
        check_digit_valid=check_digit_valid,
        validated_at=validated_at,
        registrant_type=registrant_type,
        registrant_type_description=description,
        name_checked=legal_name,
        errors=tuple(errors),
    )
