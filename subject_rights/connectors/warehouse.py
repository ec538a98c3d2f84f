"""Warehouse connector infrastructure.

The warehouse connector performs the actual row-level work for one table:
count, extract, or remove the rows that belong to a subject. How a row is
matched inside a table is the warehouse's business; the orchestrator treats
every call as a single opaque operation per request item.

Retry/backoff of transient failures is the connector's responsibility, not
the orchestrator's. HttpWarehouseConnector retries transport errors, 5xx
and 429 responses with exponential backoff via tenacity. Anything else is
raised as WarehouseError and captured on the request item.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from subject_rights.connectors.catalog import CatalogTable
from subject_rights.errors import WarehouseError

log = structlog.get_logger(__name__)


class ConnectorStatus(StrEnum):
    """Health status for connector endpoints."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class RetryConfig:
    """Retry configuration for connector operations."""

    max_attempts: int = 3
    min_wait_seconds: float = 1.0
    max_wait_seconds: float = 10.0
    multiplier: float = 2.0


@dataclass
class ConnectorConfig:
    """Configuration for the warehouse connector."""

    name: str
    endpoint: str
    api_key: str = ""
    api_key_header: str = "X-API-Key"
    timeout_seconds: float = 60.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)

    def validate(self) -> None:
        """Validate configuration and raise ValueError if invalid."""
        if not self.name:
            raise ValueError("Connector name cannot be empty")
        if not self.endpoint:
            raise ValueError("Connector endpoint cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("Timeout must be positive")
        if self.retry_config.max_attempts < 1:
            raise ValueError("Max retry attempts must be at least 1")


class WarehouseConnector(ABC):
    """Row-level subject data operations against the analytical warehouse."""

    @abstractmethod
    async def count_rows(
        self,
        table: CatalogTable,
        columns: list[str],
        subject_type: str,
        subject_value: str,
    ) -> int:
        """Return how many rows of *table* belong to the subject."""

    @abstractmethod
    async def extract_rows(
        self,
        table: CatalogTable,
        columns: list[str],
        subject_type: str,
        subject_value: str,
    ) -> list[dict[str, Any]]:
        """Return the subject's rows from *table*."""

    @abstractmethod
    async def delete_rows(
        self,
        table: CatalogTable,
        columns: list[str],
        subject_type: str,
        subject_value: str,
        *,
        soft_delete: bool = True,
        cascade: bool = False,
        backup: bool = True,
    ) -> int:
        """Remove (or soft-delete) the subject's rows and return the affected count."""

    @abstractmethod
    async def health_check(self) -> ConnectorStatus:
        """Check if the warehouse is reachable and responsive."""


class _TransientWarehouseError(WarehouseError):
    """A failure worth retrying (network, 5xx, rate limit)."""


class HttpWarehouseConnector(WarehouseConnector):
    """WarehouseConnector that talks JSON to the warehouse subject-data service.

    Endpoints (POST, JSON body with table identity, columns and subject):
        /v1/subject-data/count    -> {"count": int}
        /v1/subject-data/extract  -> {"rows": [ {...}, ... ]}
        /v1/subject-data/delete   -> {"deleted_rows": int}

    Usage:
        async with HttpWarehouseConnector(config) as warehouse:
            rows = await warehouse.extract_rows(table, ["email"], "email", value)
    """

    def __init__(
        self,
        config: ConnectorConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._status = ConnectorStatus.UNKNOWN

    async def __aenter__(self) -> HttpWarehouseConnector:
        """Async context manager entry - initialize HTTP client."""
        self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit - cleanup HTTP client."""
        await self.aclose()

    def open(self) -> None:
        if self._http_client is not None:
            return
        headers: dict[str, str] = {}
        if self.config.api_key:
            headers[self.config.api_key_header] = self.config.api_key
        self._http_client = httpx.AsyncClient(
            base_url=self.config.endpoint,
            timeout=self.config.timeout_seconds,
            headers=headers,
            transport=self._transport,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not initialized."""
        if self._http_client is None:
            raise RuntimeError(
                f"{self.config.name} connector not initialized. Use 'async with connector:'"
            )
        return self._http_client

    async def count_rows(
        self,
        table: CatalogTable,
        columns: list[str],
        subject_type: str,
        subject_value: str,
    ) -> int:
        body = await self._post(
            "/v1/subject-data/count",
            _payload(table, columns, subject_type, subject_value),
        )
        return _row_count(body, "count", "count", table)

    async def extract_rows(
        self,
        table: CatalogTable,
        columns: list[str],
        subject_type: str,
        subject_value: str,
    ) -> list[dict[str, Any]]:
        body = await self._post(
            "/v1/subject-data/extract",
            _payload(table, columns, subject_type, subject_value),
        )
        rows = body.get("rows", [])
        if not isinstance(rows, list):
            raise WarehouseError(f"Malformed extract response for {table.qualified_name}")
        return rows

    async def delete_rows(
        self,
        table: CatalogTable,
        columns: list[str],
        subject_type: str,
        subject_value: str,
        *,
        soft_delete: bool = True,
        cascade: bool = False,
        backup: bool = True,
    ) -> int:
        payload = _payload(table, columns, subject_type, subject_value)
        payload.update({"soft_delete": soft_delete, "cascade": cascade, "backup": backup})
        body = await self._post("/v1/subject-data/delete", payload)
        return _row_count(body, "deleted_rows", "delete", table)

    async def health_check(self) -> ConnectorStatus:
        client = self._get_http_client()
        try:
            response = await client.get("/health")
        except httpx.HTTPError as exc:
            log.warning("warehouse.health_check_failed", error=str(exc))
            self._status = ConnectorStatus.UNAVAILABLE
            return self._status

        if response.status_code == 200:
            self._status = ConnectorStatus.HEALTHY
        elif response.status_code >= 500:
            self._status = ConnectorStatus.UNAVAILABLE
        else:
            self._status = ConnectorStatus.DEGRADED
        return self._status

    @property
    def status(self) -> ConnectorStatus:
        """Last observed health status of the warehouse."""
        return self._status

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        retry_cfg = self.config.retry_config
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_TransientWarehouseError),
                stop=stop_after_attempt(retry_cfg.max_attempts),
                wait=wait_exponential(
                    multiplier=retry_cfg.multiplier,
                    min=retry_cfg.min_wait_seconds,
                    max=retry_cfg.max_wait_seconds,
                ),
                reraise=True,
            ):
                with attempt:
                    return await self._post_once(path, payload)
        except RetryError as exc:
            raise WarehouseError(f"Warehouse call {path} failed: {exc}") from exc
        except _TransientWarehouseError as exc:
            log.error(
                "warehouse.retries_exhausted",
                path=path,
                attempts=retry_cfg.max_attempts,
                error=str(exc),
            )
            raise WarehouseError(str(exc)) from exc
        # AsyncRetrying either returns from inside the loop or raises
        raise WarehouseError(f"Warehouse call {path} produced no result")

    async def _post_once(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = self._get_http_client()
        table = payload.get("table")
        try:
            response = await client.post(path, json=payload)
        except httpx.TransportError as exc:
            log.warning("warehouse.transport_error", path=path, table=table, error=str(exc))
            raise _TransientWarehouseError(f"Warehouse unreachable: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            log.warning(
                "warehouse.transient_status",
                path=path,
                table=table,
                status_code=response.status_code,
            )
            raise _TransientWarehouseError(
                f"Warehouse returned HTTP {response.status_code} for {path}"
            )
        if response.status_code >= 400:
            raise WarehouseError(
                f"Warehouse rejected {path} with HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise WarehouseError(f"Warehouse returned non-JSON body for {path}") from exc
        if not isinstance(body, dict):
            raise WarehouseError(f"Warehouse returned unexpected payload for {path}")
        return body


def _payload(
    table: CatalogTable,
    columns: list[str],
    subject_type: str,
    subject_value: str,
) -> dict[str, Any]:
    return {
        "database": table.database_name,
        "schema": table.schema_name,
        "table": table.table_name,
        "columns": list(columns),
        "subject_type": subject_type,
        "subject_value": subject_value,
    }


def _row_count(body: dict[str, Any], key: str, operation: str, table: CatalogTable) -> int:
    value = body.get(key, 0)
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise WarehouseError(f"Malformed {operation} response for {table.qualified_name}")
    return value
