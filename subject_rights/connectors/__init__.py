"""Connectors to the external systems the orchestrator consumes.

- CatalogReader: read-only view over the crawled table/column inventory
- WarehouseConnector: row-level count / extract / delete for one table

Neither connector knows about requests; the orchestrator drives them one
table at a time.
"""

from __future__ import annotations

from subject_rights.connectors.catalog import (
    CatalogColumn,
    CatalogReader,
    CatalogTable,
    SqlCatalogReader,
)
from subject_rights.connectors.warehouse import (
    ConnectorConfig,
    ConnectorStatus,
    HttpWarehouseConnector,
    RetryConfig,
    WarehouseConnector,
)

__all__ = [
    "CatalogColumn",
    "CatalogReader",
    "CatalogTable",
    "ConnectorConfig",
    "ConnectorStatus",
    "HttpWarehouseConnector",
    "RetryConfig",
    "SqlCatalogReader",
    "WarehouseConnector",
]
