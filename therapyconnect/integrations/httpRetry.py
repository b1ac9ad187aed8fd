"""
Shared httpx request helper with exponential-backoff retry.

Retries on transient failures (5xx, timeouts, connection errors) and surfaces
4xx responses immediately.  Callers supply the exception type to raise once
retries are exhausted so each integration keeps its own error contract.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from therapyconnect.core.exceptions import ExternalUnavailable

logger = logging.getLogger(__name__)


async def request_json_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    service_name: str,
    error_cls: type[ExternalUnavailable],
    max_retries: int,
    initial_backoff: float,
    timeout: float,
) -> Any:
    """GET ``url`` and return the parsed JSON body.

    Raises:
        error_cls: After all retries are exhausted, on a 4xx response, or on
            a body that is not valid JSON.
    """
    last_exception: Exception | None = None
    backoff = initial_backoff

    for attempt in range(1, max_retries + 1):
        try:
            response = await client.get(url, params=params, timeout=timeout)

            if 400 <= response.status_code < 500:
                raise error_cls(
                    f"{service_name} client error: HTTP {response.status_code}",
                    status=response.status_code,
                )

            if response.status_code >= 500:
                last_exception = error_cls(
                    f"{service_name} server error: HTTP {response.status_code}",
                    status=response.status_code,
                )
                logger.warning(
                    "%s server error on attempt %d/%d: HTTP %d",
                    service_name,
                    attempt,
                    max_retries,
                    response.status_code,
                )
            else:
                try:
                    return response.json()
                except ValueError as exc:
                    raise error_cls(
                        f"{service_name} returned a malformed response",
                        reason=str(exc),
                    ) from exc

        except httpx.TimeoutException as exc:
            last_exception = exc
            logger.warning(
                "%s timeout on attempt %d/%d: %s",
                service_name,
                attempt,
                max_retries,
                exc,
            )

        except httpx.TransportError as exc:
            last_exception = exc
            logger.warning(
                "%s connection error on attempt %d/%d: %s",
                service_name,
                attempt,
                max_retries,
                exc,
            )

        if attempt < max_retries:
            await asyncio.sleep(backoff)
            backoff *= 2

    raise error_cls(
        f"{service_name} request failed after {max_retries} attempts",
        reason=str(last_exception),
    )
