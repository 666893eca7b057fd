"""
Endpoint checker for Certificate Expiry Exporter.

Each check fetches one endpoint, decodes its reply, computes the days
remaining until the reported DateLimit and publishes exactly one value
into the MetricStore. Failures publish the sentinel and are logged.
"""

import asyncio
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cert_expiry_exporter.config import EndpointConfig
from cert_expiry_exporter.logger import get_logger, log_check_failure, log_check_success
from cert_expiry_exporter.store import CheckStatus, Measurement, MetricStore

DATE_LAYOUT = "%Y-%m-%d %H:%M:%S"
DEFAULT_TIMEOUT = 30.0


class CheckError(Exception):
    """Base class for endpoint check failures."""

    status = CheckStatus.CONTRACT_ERROR

    def __init__(self, message: str, error_type: str) -> None:
        super().__init__(message)
        self.error_type = error_type


class TransportError(CheckError):
    """The request could not be completed."""

    status = CheckStatus.TRANSPORT_ERROR


class ContractError(CheckError):
    """The reply did not carry a usable DateLimit."""

    status = CheckStatus.CONTRACT_ERROR


class ResponseData(BaseModel):
    model_config = ConfigDict(strict=True, populate_by_name=True)

    authorizer_date: Optional[str] = Field(default=None, alias="AuthorizerDate")
    date_limit: Optional[str] = Field(default=None, alias="DateLimit")


class RemoteResponse(BaseModel):
    """Reply body returned by a monitored endpoint."""

    # Wrong JSON types are contract errors, not coerced
    model_config = ConfigDict(strict=True)

    status: Optional[int] = None
    message: Any = None
    data: Optional[ResponseData] = None
    error: Any = None

    @property
    def date_limit(self) -> str:
        if self.data is None or self.data.date_limit is None:
            return ""
        return self.data.date_limit


def parse_date_limit(text: str) -> datetime:
    """Parse a DateLimit string as a naive local time."""
    return datetime.strptime(text, DATE_LAYOUT)


def days_until(expiry: datetime, now: datetime) -> float:
    """
    Signed number of days from now until expiry.

    Naive datetimes are local wall-clock times; comparing their POSIX
    timestamps measures elapsed time across DST changes.
    """
    return (expiry.timestamp() - now.timestamp()) / 3600 / 24


def round_days(value: float, places: int = 2) -> float:
    """Round half away from zero, using the shortest decimal form of value."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class EndpointChecker:
    """Runs the fetch, parse and publish sequence for endpoints."""

    def __init__(
        self,
        store: MetricStore,
        timeout: float = DEFAULT_TIMEOUT,
        method: str = "POST",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.timeout = timeout
        self.method = method
        self.transport = transport
        self.clock = clock
        self.logger = get_logger("checker")

    def create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def check(
        self, endpoint: EndpointConfig, client: Optional[httpx.AsyncClient] = None
    ) -> Measurement:
        """
        Check one endpoint and publish the result.

        Args:
            endpoint: Endpoint to check
            client: Shared HTTP client; a private one is created when omitted

        Returns:
            The measurement published to the store
        """
        key = endpoint.key

        try:
            if client is None:
                async with self.create_client() as own_client:
                    body = await self._fetch(own_client, endpoint)
            else:
                body = await self._fetch(client, endpoint)

            expiry = self._extract_expiry(body)
            days = round_days(days_until(expiry, self.clock()))

        except CheckError as e:
            log_check_failure(self.logger, endpoint.url, endpoint.origin_prometheus, e, e.error_type)
            return self.store.set_failed(key, e.status, str(e))
        except Exception as e:
            self.logger.exception(f"Unexpected error checking {endpoint.url}: {e}")
            return self.store.set_failed(key, CheckStatus.CONTRACT_ERROR, str(e))

        log_check_success(self.logger, endpoint.url, endpoint.origin_prometheus, days)
        return self.store.set(key, days)

    async def check_all(self, endpoints: Iterable[EndpointConfig], workers: int = 8) -> Dict[str, int]:
        """
        Check endpoints concurrently with at most `workers` requests in flight.

        Returns:
            Count of outcomes per check status
        """
        semaphore = asyncio.Semaphore(workers)
        endpoint_list: List[EndpointConfig] = list(endpoints)

        async def bounded(endpoint: EndpointConfig, client: httpx.AsyncClient) -> Measurement:
            async with semaphore:
                return await self.check(endpoint, client)

        counts = {status.value: 0 for status in CheckStatus}
        async with self.create_client() as client:
            results = await asyncio.gather(
                *(bounded(endpoint, client) for endpoint in endpoint_list),
                return_exceptions=True,
            )

        for endpoint, result in zip(endpoint_list, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self.logger.error(f"Check for {endpoint.url} raised unexpectedly: {result}")
                self.store.set_failed(endpoint.key, CheckStatus.CONTRACT_ERROR, str(result))
                counts[CheckStatus.CONTRACT_ERROR.value] += 1
            else:
                counts[result.status.value] += 1

        return counts

    async def _fetch(self, client: httpx.AsyncClient, endpoint: EndpointConfig) -> bytes:
        try:
            response = await client.request(self.method, endpoint.url)
        except httpx.TimeoutException as e:
            raise TransportError(
                f"{self.method} request to {endpoint.url} timed out after {self.timeout}s",
                "transport_error",
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(
                f"Error performing {self.method} request to {endpoint.url}: {e}",
                "transport_error",
            ) from e

        self.logger.debug(f"{endpoint.url} answered with HTTP {response.status_code}")
        return response.content

    def _extract_expiry(self, body: bytes) -> datetime:
        try:
            reply = RemoteResponse.model_validate_json(body)
        except ValidationError as e:
            raise ContractError(
                f"Error decoding JSON response: {e.errors()[0]['msg'] if e.errors() else e}",
                "malformed_response",
            ) from e

        date_limit = reply.date_limit
        if not date_limit:
            raise ContractError("DateLimit is empty", "missing_date_limit")

        try:
            return parse_date_limit(date_limit)
        except ValueError as e:
            raise ContractError(
                f"Error parsing DateLimit {date_limit!r}: {e}", "invalid_date_limit"
            ) from e
