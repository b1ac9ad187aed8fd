"""
Unit tests for the CMS NPI Registry client -- TC-INT-NPI-001.

HTTP is served by ``httpx.MockTransport``; no request leaves the process.
"""

import httpx
import pytest

from therapyconnect.core.exceptions import CredentialingInputError, VerificationUnavailable
from therapyconnect.integrations.npiRegistry import NPIRegistryClient, parse_registry_result
from tests.fakes import VALID_NPI

pytestmark = pytest.mark.asyncio


INDIVIDUAL_RESULT = {
    "number": VALID_NPI,
    "enumeration_type": "NPI-1",
    "basic": {
        "first_name": "MARIA",
        "middle_name": "L",
        "last_name": "GARCIA",
        "credential": "PSYD",
        "status": "A",
        "enumeration_date": "2012-06-14",
        "last_updated": "2023-11-02",
    },
    "taxonomies": [
        {"code": "103T00000X", "desc": "Psychologist", "primary": False},
        {"code": "103TC0700X", "desc": "Psychologist, Clinical", "primary": True},
    ],
    "addresses": [
        {"address_purpose": "MAILING", "address_1": "PO BOX 12", "city": "AUSTIN", "state": "TX"},
        {
            "address_purpose": "LOCATION",
            "address_1": "500 CONGRESS AVE",
            "address_2": "STE 200",
            "city": "AUSTIN",
            "state": "TX",
            "postal_code": "78701",
            "telephone_number": "512-555-0101",
        },
    ],
}


def _client(handler, **kwargs) -> NPIRegistryClient:
    return NPIRegistryClient(
        "https://registry.test/api/",
        "2.1",
        timeout=1,
        max_retries=3,
        initial_backoff=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestParseRegistryResult:
    async def test_individual_record(self):
        record = parse_registry_result(INDIVIDUAL_RESULT)
        assert record.provider_type == "Individual"
        assert record.name == "MARIA L GARCIA"
        assert record.taxonomy_description == "Psychologist, Clinical"
        assert record.address == "500 CONGRESS AVE STE 200"
        assert record.postal_code == "78701"
        assert record.is_deactivated is False

    async def test_organization_record(self):
        record = parse_registry_result(
            {
                "number": "1003000126",
                "enumeration_type": "NPI-2",
                "basic": {"organization_name": "CALM MINDS CLINIC", "status": "D"},
            }
        )
        assert record.provider_type == "Organization"
        assert record.name == "CALM MINDS CLINIC"
        assert record.taxonomy_code is None
        assert record.is_deactivated is True


class TestLookup:
    async def test_found(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            return httpx.Response(200, json={"result_count": 1, "results": [INDIVIDUAL_RESULT]})

        record = await _client(handler).lookup(VALID_NPI)

        assert record.number == VALID_NPI
        assert seen == [{"version": "2.1", "number": VALID_NPI}]

    async def test_not_found(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"result_count": 0, "results": []})

        assert await _client(handler).lookup(VALID_NPI) is None

    async def test_retries_server_errors_then_succeeds(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"result_count": 1, "results": [INDIVIDUAL_RESULT]})

        record = await _client(handler).lookup(VALID_NPI)
        assert record is not None
        assert len(attempts) == 3

    async def test_gives_up_after_max_retries(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(500)

        with pytest.raises(VerificationUnavailable):
            await _client(handler).lookup(VALID_NPI)
        assert len(attempts) == 3

    async def test_timeouts_are_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(VerificationUnavailable):
            await _client(handler).lookup(VALID_NPI)
        assert len(attempts) == 3

    async def test_client_error_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(400)

        with pytest.raises(VerificationUnavailable):
            await _client(handler).lookup(VALID_NPI)
        assert len(attempts) == 1

    async def test_in_band_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"Errors": [{"description": "bad request"}]})

        with pytest.raises(VerificationUnavailable):
            await _client(handler).lookup(VALID_NPI)

    async def test_malformed_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>maintenance</html>")

        with pytest.raises(VerificationUnavailable):
            await _client(handler).lookup(VALID_NPI)


class TestSearch:
    async def test_filters_forwarded(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            return httpx.Response(200, json={"result_count": 1, "results": [INDIVIDUAL_RESULT]})

        records = await _client(handler).search(last_name="Garcia", state="TX", limit=5)

        assert [r.number for r in records] == [VALID_NPI]
        assert seen[0]["last_name"] == "Garcia"
        assert seen[0]["state"] == "TX"
        assert seen[0]["limit"] == "5"
        assert "first_name" not in seen[0]

    @pytest.mark.parametrize("limit", [0, 201])
    async def test_limit_bounds(self, limit):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(CredentialingInputError):
            await _client(handler).search(last_name="Garcia", limit=limit)

    async def test_requires_a_filter(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(CredentialingInputError):
            await _client(handler).search()
