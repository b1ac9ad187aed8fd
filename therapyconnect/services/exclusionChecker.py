"""
Exclusion Checker -- TC-CRED-003
=================================

Screens a provider against federal exclusion lists (OIG LEIE, SAM.gov).

Each configured source is queried concurrently.  Aggregation is OR across
sources and fail-closed:

- any source reports a match                -> ``match``
- otherwise any source failed or timed out  -> ``indeterminate``
- otherwise (every source answered, no hit) -> ``clear``

A partial clear is never reported as clear.  Matching is exact on the
normalized name or on the NPI; there is no fuzzy or phonetic matching.
"""

from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Sequence

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import ExclusionSourceUnavailable
from therapyconnect.models import ExclusionCheck, ExclusionOutcome

logger = logging.getLogger(__name__)

# Characters dropped outright ("O'Brien" == "OBrien", "Jr." == "Jr")
_DROPPED = re.compile(r"['’.`]")
# Any other non-alphanumeric run becomes a single space ("Smith-Jones" == "Smith Jones")
_SEPARATORS = re.compile(r"[^0-9a-z]+")


def normalize_name(name: Optional[str]) -> str:
    """Case-fold, strip accents and punctuation, collapse whitespace."""
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    lowered = _DROPPED.sub("", ascii_only.casefold())
    return _SEPARATORS.sub(" ", lowered).strip()


# ---------------------------------------------------------------------------
# Source protocol
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceResponse:
    matched: bool
    entry_ids: tuple[str, ...] = ()


class ExclusionDataSource(Protocol):
    """A single exclusion list.  ``query`` raises ``ExclusionSourceUnavailable``
    when the list cannot be consulted."""

    name: str

    async def query(self, normalized_name: str, npi_number: Optional[str]) -> SourceResponse:
        ...


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExclusionCheckResult:
    outcome: ExclusionOutcome
    checked_at: datetime
    name_checked: str
    npi_checked: Optional[str] = None
    matched_sources: tuple[str, ...] = ()
    matched_entry_ids: tuple[str, ...] = ()
    unavailable_sources: tuple[str, ...] = ()

    @property
    def is_clear(self) -> bool:
        return self.outcome is ExclusionOutcome.CLEAR

    def is_fresh(self, now: datetime, freshness_days: Optional[int] = None) -> bool:
        days = freshness_days if freshness_days is not None else settings.exclusion_freshness_days
        return (now - self.checked_at).total_seconds() < days * 86400

    @classmethod
    def from_row(cls, row: ExclusionCheck) -> "ExclusionCheckResult":
        return cls(
            outcome=row.outcome,
            checked_at=row.checked_at,
            name_checked=row.name_checked,
            npi_checked=row.npi_checked,
            matched_sources=tuple(row.matched_sources or ()),
            matched_entry_ids=tuple(row.matched_entry_ids or ()),
            unavailable_sources=tuple(row.unavailable_sources or ()),
        )

    def to_row(self, provider_id) -> ExclusionCheck:
        return ExclusionCheck(
            provider_id=provider_id,
            outcome=self.outcome,
            checked_at=self.checked_at,
            name_checked=self.name_checked,
            npi_checked=self.npi_checked,
            matched_sources=list(self.matched_sources),
            matched_entry_ids=list(self.matched_entry_ids),
            unavailable_sources=list(self.unavailable_sources),
        )


def aggregate(
    responses: dict[str, SourceResponse | None],
) -> tuple[ExclusionOutcome, list[str], list[str], list[str]]:
    """Fold per-source responses (``None`` = unavailable) into one outcome.

    Returns ``(outcome, matched_sources, matched_entry_ids, unavailable_sources)``.
    """
    matched_sources: list[str] = []
    entry_ids: list[str] = []
    unavailable: list[str] = []

    for source_name, response in responses.items():
        if response is None:
            unavailable.append(source_name)
        elif response.matched:
            matched_sources.append(source_name)
            entry_ids.extend(response.entry_ids)

    if matched_sources:
        outcome = ExclusionOutcome.MATCH
    elif unavailable or not responses:
        outcome = ExclusionOutcome.INDETERMINATE
    else:
        outcome = ExclusionOutcome.CLEAR
    return outcome, matched_sources, entry_ids, unavailable


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExclusionChecker:
    def __init__(
        self,
        sources: Sequence[ExclusionDataSource],
        *,
        timeout_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sources = list(sources)
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.external_request_timeout_seconds
            * max(settings.external_max_retries, 1)
        )
        self._clock = clock or _utcnow

    async def _query_source(
        self,
        source: ExclusionDataSource,
        normalized_name: str,
        npi_number: Optional[str],
    ) -> SourceResponse | None:
        try:
            return await asyncio.wait_for(
                source.query(normalized_name, npi_number), timeout=self._timeout
            )
        except ExclusionSourceUnavailable as exc:
            logger.warning("Exclusion source %s unavailable: %s", source.name, exc.message)
        except asyncio.TimeoutError:
            logger.warning(
                "Exclusion source %s timed out after %.1fs", source.name, self._timeout
            )
        return None

    async def check(
        self, provider_name: str, npi_number: Optional[str] = None
    ) -> ExclusionCheckResult:
        """Screen one provider.  Never raises for source outages; those
        surface as an ``indeterminate`` outcome."""
        normalized = normalize_name(provider_name)

        responses = await asyncio.gather(
            *(self._query_source(s, normalized, npi_number) for s in self._sources)
        )
        outcome, matched_sources, entry_ids, unavailable = aggregate(
            {s.name: r for s, r in zip(self._sources, responses)}
        )

        if outcome is ExclusionOutcome.MATCH:
            logger.warning(
                "Exclusion MATCH for '%s' (npi=%s) in %s: %s",
                provider_name,
                npi_number,
                matched_sources,
                entry_ids,
            )
        else:
            logger.info(
                "Exclusion check for '%s' (npi=%s): %s (unavailable=%s)",
                provider_name,
                npi_number,
                outcome.value,
                unavailable,
            )

        return ExclusionCheckResult(
            outcome=outcome,
            checked_at=self._clock(),
            name_checked=provider_name,
            npi_checked=npi_number,
            matched_sources=tuple(matched_sources),
            matched_entry_ids=tuple(entry_ids),
            unavailable_sources=tuple(unavailable),
        )
