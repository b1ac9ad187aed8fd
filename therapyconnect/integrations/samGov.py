"""
SAM.gov exclusions client -- TC-INT-EXCL-002
=============================================

Queries the GSA System for Award Management exclusions API.  The API matches
names loosely, so every returned entity is re-checked here with exact
normalized-name (or NPI) equality before it counts as a match.

Requires ``SAM_API_KEY``.  Without a key the source is not registered at
all; see ``api.deps.get_credentialing_service``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import ExclusionSourceUnavailable
from therapyconnect.integrations.httpRetry import request_json_with_retry
from therapyconnect.services.exclusionChecker import SourceResponse, normalize_name

logger = logging.getLogger(__name__)

SOURCE_NAME = "sam_gov"


def _entity_names(entity: dict[str, Any]) -> list[str]:
    """Candidate display names for one SAM exclusion record."""
    names: list[str] = []
    ident = entity.get("exclusionIdentification") or {}

    for source in (ident, entity):
        first = source.get("firstName")
        middle = source.get("middleName")
        last = source.get("lastName")
        if first or last:
            names.append(" ".join(p for p in (first, last) if p))
            if middle:
                names.append(" ".join(p for p in (first, middle, last) if p))
        for key in ("name", "entityName", "legalBusinessName"):
            if source.get(key):
                names.append(source[key])
    return names


def _entity_id(entity: dict[str, Any], index: int) -> str:
    ident = entity.get("exclusionIdentification") or {}
    for key in ("ueiSAM", "samNumber", "cageCode"):
        value = ident.get(key) or entity.get(key)
        if value:
            return f"{SOURCE_NAME}:{value}"
    return f"{SOURCE_NAME}:record-{index}"


def _entity_npi(entity: dict[str, Any]) -> Optional[str]:
    ident = entity.get("exclusionIdentification") or {}
    other = entity.get("exclusionOtherInformation") or {}
    return ident.get("npi") or other.get("npi") or entity.get("npi")


class SAMGovSource:
    name = SOURCE_NAME

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.sam_api_key
        self.api_url = api_url or settings.sam_api_url
        self.timeout = timeout if timeout is not None else settings.external_request_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.external_max_retries
        self.initial_backoff = (
            initial_backoff
            if initial_backoff is not None
            else settings.external_initial_backoff_seconds
        )
        self._transport = transport

    async def query(self, normalized_name: str, npi_number: Optional[str]) -> SourceResponse:
        if not self.api_key:
            raise ExclusionSourceUnavailable("SAM.gov API key is not configured")

        tokens = normalized_name.split()
        params: dict[str, Any] = {"api_key": self.api_key}
        if len(tokens) >= 2:
            params["firstName"] = tokens[0]
            params["lastName"] = tokens[-1]
        elif tokens:
            params["exclusionName"] = tokens[0]
        elif npi_number:
            params["npi"] = npi_number
        else:
            return SourceResponse(matched=False)

        async with httpx.AsyncClient(transport=self._transport) as client:
            data = await request_json_with_retry(
                client,
                self.api_url,
                params=params,
                service_name="SAM.gov",
                error_cls=ExclusionSourceUnavailable,
                max_retries=self.max_retries,
                initial_backoff=self.initial_backoff,
                timeout=self.timeout,
            )

        if not isinstance(data, dict):
            raise ExclusionSourceUnavailable("SAM.gov returned an unexpected payload")

        entities = data.get("excludedEntity") or data.get("entityData") or []
        matched_ids: list[str] = []
        for index, entity in enumerate(entities):
            names = {normalize_name(n) for n in _entity_names(entity)}
            entity_npi = _entity_npi(entity)
            if (normalized_name and normalized_name in names) or (
                npi_number and entity_npi == npi_number
            ):
                matched_ids.append(_entity_id(entity, index))

        logger.debug(
            "SAM.gov returned %d entities for '%s', %d exact matches",
            len(entities),
            normalized_name,
            len(matched_ids),
        )
        return SourceResponse(matched=bool(matched_ids), entry_ids=tuple(matched_ids))
