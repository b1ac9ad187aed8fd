"""
CMS NPI Registry client -- TC-INT-NPI-001
==========================================

Async wrapper around the public NPPES NPI Registry API
(https://npiregistry.cms.hhs.gov/api/).  Provides single-number lookup for
verification and a filtered search for admin tooling.

No API key is required.  All HTTP calls go through
``request_json_with_retry`` (3 attempts, exponential backoff).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import CredentialingInputError, VerificationUnavailable
from therapyconnect.integrations.httpRetry import request_json_with_retry

logger = logging.getLogger(__name__)

_SERVICE_NAME = "NPI Registry"

MAX_SEARCH_LIMIT = 200

# NPPES enumeration types
INDIVIDUAL = "NPI-1"
ORGANIZATION = "NPI-2"

# NPPES basic.status values
STATUS_ACTIVE = "A"
STATUS_DEACTIVATED = "D"


# ---------------------------------------------------------------------------
# Record DTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NPIRegistryRecord:
    """One provider record as returned by the NPPES registry."""
    number: str
    enumeration_type: Optional[str]
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
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_deactivated(self) -> bool:
        return (self.status or "").upper() == STATUS_DEACTIVATED


def _primary_taxonomy(result: dict[str, Any]) -> dict[str, Any]:
    taxonomies = result.get("taxonomies") or []
    for taxonomy in taxonomies:
        if taxonomy.get("primary"):
            return taxonomy
    return taxonomies[0] if taxonomies else {}


def _practice_address(result: dict[str, Any]) -> dict[str, Any]:
    addresses = result.get("addresses") or []
    for address in addresses:
        if address.get("address_purpose") == "LOCATION":
            return address
    return addresses[0] if addresses else {}


def parse_registry_result(result: dict[str, Any]) -> NPIRegistryRecord:
    """Flatten one NPPES ``results[]`` entry into an ``NPIRegistryRecord``."""
    basic = result.get("basic") or {}
    enumeration_type = result.get("enumeration_type")
    taxonomy = _primary_taxonomy(result)
    address = _practice_address(result)

    if enumeration_type == INDIVIDUAL:
        provider_type = "Individual"
        parts = [basic.get("first_name"), basic.get("middle_name"), basic.get("last_name")]
        name = " ".join(p for p in parts if p)
    else:
        provider_type = "Organization"
        name = basic.get("organization_name") or basic.get("name") or ""

    street = " ".join(
        p for p in (address.get("address_1"), address.get("address_2")) if p
    )

    return NPIRegistryRecord(
        number=str(result.get("number", "")),
        enumeration_type=enumeration_type,
        provider_type=provider_type,
        name=name,
        first_name=basic.get("first_name"),
        last_name=basic.get("last_name"),
        credential=basic.get("credential"),
        status=basic.get("status"),
        taxonomy_code=taxonomy.get("code"),
        taxonomy_description=taxonomy.get("desc"),
        address=street or None,
        city=address.get("city"),
        state=address.get("state"),
        postal_code=address.get("postal_code"),
        phone=address.get("telephone_number"),
        enumeration_date=basic.get("enumeration_date"),
        last_updated=basic.get("last_updated"),
        raw=result,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class NPIRegistryClient:
    """Thin async client for the NPPES registry.

    ``transport`` is passed straight to ``httpx.AsyncClient`` so tests can
    inject an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        version: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url or settings.npi_registry_url
        self.version = version or settings.npi_registry_version
        self.timeout = timeout if timeout is not None else settings.external_request_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.external_max_retries
        self.initial_backoff = (
            initial_backoff
            if initial_backoff is not None
            else settings.external_initial_backoff_seconds
        )
        self._transport = transport

    async def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(transport=self._transport) as client:
            data = await request_json_with_retry(
                client,
                self.base_url,
                params={"version": self.version, **params},
                service_name=_SERVICE_NAME,
                error_cls=VerificationUnavailable,
                max_retries=self.max_retries,
                initial_backoff=self.initial_backoff,
                timeout=self.timeout,
            )

        if not isinstance(data, dict):
            raise VerificationUnavailable(f"{_SERVICE_NAME} returned an unexpected payload")
        if data.get("Errors"):
            # The registry reports request problems in-band with HTTP 200
            logger.warning("%s rejected request %s: %s", _SERVICE_NAME, params, data["Errors"])
            raise VerificationUnavailable(
                f"{_SERVICE_NAME} rejected the request",
                errors=data["Errors"],
            )
        return data

    async def lookup(self, npi_number: str) -> Optional[NPIRegistryRecord]:
        """Fetch a single NPI.  Returns ``None`` when the registry has no record.

        Raises:
            VerificationUnavailable: The registry could not be reached.
        """
        data = await self._get({"number": npi_number})
        results = data.get("results") or []
        if not data.get("result_count") or not results:
            logger.info("NPI %s not found in registry", npi_number)
            return None
        return parse_registry_result(results[0])

    async def search(
        self,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        organization_name: Optional[str] = None,
        state: Optional[str] = None,
        city: Optional[str] = None,
        postal_code: Optional[str] = None,
        taxonomy_description: Optional[str] = None,
        limit: int = 10,
    ) -> list[NPIRegistryRecord]:
        """Search the registry by name/location/taxonomy filters."""
        if limit < 1 or limit > MAX_SEARCH_LIMIT:
            raise CredentialingInputError(
                f"limit must be between 1 and {MAX_SEARCH_LIMIT}", limit=limit
            )

        filters = {
            "first_name": first_name,
            "last_name": last_name,
            "organization_name": organization_name,
            "state": state,
            "city": city,
            "postal_code": postal_code,
            "taxonomy_description": taxonomy_description,
        }
        params: dict[str, Any] = {k: v for k, v in filters.items() if v}
        if not params:
            raise CredentialingInputError("At least one search filter is required")
        params["limit"] = limit

        data = await self._get(params)
        return [parse_registry_result(r) for r in data.get("results") or []]
