"""
OIG List of Excluded Individuals/Entities (LEIE) -- TC-INT-EXCL-001
====================================================================

The OIG publishes the LEIE as a monthly CSV download rather than a query
API, so the list is imported into the ``oig_exclusions`` table and queried
locally.  An import replaces the table contents in one transaction.

CSV columns used::

    LASTNAME, FIRSTNAME, MIDNAME, BUSNAME, SPECIALTY, NPI,
    STATE, EXCLTYPE, EXCLDATE, REINDATE

Dates are ``YYYYMMDD``; ``00000000`` means "not set".  The LEIE uses NPI
``0000000000`` as a placeholder for "no NPI on file", which never matches.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Optional

import httpx
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import ExclusionSourceUnavailable
from therapyconnect.models import OIGExclusion
from therapyconnect.services.exclusionChecker import SourceResponse, normalize_name

logger = logging.getLogger(__name__)

SOURCE_NAME = "oig_leie"

PLACEHOLDER_NPI = "0000000000"


# ---------------------------------------------------------------------------
# CSV parsing
# ---------------------------------------------------------------------------

def _parse_leie_date(value: Optional[str]) -> Optional[date]:
    value = (value or "").strip()
    if not value or value == "00000000":
        return None
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        logger.debug("Unparseable LEIE date %r", value)
        return None


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def parse_leie_csv(csv_text: str, imported_at: datetime) -> list[OIGExclusion]:
    """Parse the LEIE CSV into unsaved ``OIGExclusion`` rows."""
    reader = csv.DictReader(io.StringIO(csv_text))
    rows: list[OIGExclusion] = []

    for raw in reader:
        last_name = (raw.get("LASTNAME") or "").strip()
        first_name = (raw.get("FIRSTNAME") or "").strip()
        middle_name = _clean(raw.get("MIDNAME"))
        business_name = _clean(raw.get("BUSNAME"))

        if not (last_name or first_name or business_name):
            continue

        npi = _clean(raw.get("NPI"))
        if npi == PLACEHOLDER_NPI:
            npi = None

        individual = " ".join(p for p in (first_name, last_name) if p)
        full = " ".join(p for p in (first_name, middle_name, last_name) if p)

        rows.append(
            OIGExclusion(
                last_name=last_name,
                first_name=first_name,
                middle_name=middle_name,
                business_name=business_name,
                normalized_name=normalize_name(individual) or None,
                normalized_full_name=normalize_name(full) or None,
                normalized_business_name=normalize_name(business_name) or None,
                npi=npi,
                specialty=_clean(raw.get("SPECIALTY")),
                state=_clean(raw.get("STATE")),
                exclusion_type=_clean(raw.get("EXCLTYPE")),
                exclusion_date=_parse_leie_date(raw.get("EXCLDATE")),
                reinstatement_date=_parse_leie_date(raw.get("REINDATE")),
                imported_at=imported_at,
            )
        )
    return rows


async def import_leie_rows(db: AsyncSession, rows: Iterable[OIGExclusion]) -> int:
    """Replace the LEIE table with ``rows``.  The caller owns the commit."""
    await db.execute(delete(OIGExclusion))
    count = 0
    for row in rows:
        db.add(row)
        count += 1
    await db.flush()
    logger.info("Imported %d OIG LEIE exclusion records", count)
    return count


async def import_leie_csv(
    db: AsyncSession, csv_text: str, *, imported_at: Optional[datetime] = None
) -> int:
    stamp = imported_at or datetime.now(timezone.utc)
    return await import_leie_rows(db, parse_leie_csv(csv_text, stamp))


async def download_leie_csv(
    url: Optional[str] = None,
    *,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Download the current LEIE CSV.

    Raises:
        ExclusionSourceUnavailable: The download failed.
    """
    target = url or settings.oig_leie_csv_url
    try:
        async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
            response = await client.get(
                target,
                timeout=timeout or settings.external_request_timeout_seconds * 6,
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("OIG LEIE download from %s failed: %s", target, exc)
        raise ExclusionSourceUnavailable("OIG LEIE download failed", reason=str(exc)) from exc
    return response.text


# ---------------------------------------------------------------------------
# Exclusion data source
# ---------------------------------------------------------------------------

class OIGLeieSource:
    """Queries the locally imported LEIE table.

    Opens its own session from ``session_factory`` so it can run concurrently
    with other sources without sharing the caller's session.
    """

    name = SOURCE_NAME

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def query(self, normalized_name: str, npi_number: Optional[str]) -> SourceResponse:
        conditions: list[Any] = []
        if normalized_name:
            conditions.extend(
                [
                    OIGExclusion.normalized_name == normalized_name,
                    OIGExclusion.normalized_full_name == normalized_name,
                    OIGExclusion.normalized_business_name == normalized_name,
                ]
            )
        if npi_number and npi_number != PLACEHOLDER_NPI:
            conditions.append(OIGExclusion.npi == npi_number)

        today = self._clock().date()

        try:
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(OIGExclusion))
                if not total:
                    raise ExclusionSourceUnavailable("OIG LEIE data has not been imported")
                if not conditions:
                    return SourceResponse(matched=False)

                stmt = (
                    select(OIGExclusion)
                    .where(or_(*conditions))
                    .where(
                        or_(
                            OIGExclusion.reinstatement_date.is_(None),
                            OIGExclusion.reinstatement_date > today,
                        )
                    )
                )
                matches = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise ExclusionSourceUnavailable("OIG LEIE table is unreachable", reason=str(exc)) from exc

        return SourceResponse(
            matched=bool(matches),
            entry_ids=tuple(f"{SOURCE_NAME}:{row.id}" for row in matches),
        )
