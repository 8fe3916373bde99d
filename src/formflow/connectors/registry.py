"""Connector registry keyed by connector ID."""

from __future__ import annotations

import logging

from formflow.exceptions import ConfigurationError

from .base import DomainConnector

logger = logging.getLogger(__name__)

DEFAULT_CONNECTOR = "intellisource"


class ConnectorRegistry:
    """Maps connector IDs (e.g. ``"intellisource"``) to connector instances.

    Example:
        ```python
        registry = ConnectorRegistry()
        registry.register("intellisource", IntellisourceConnector())
        connector = registry.get(instance.connector)
        ```
    """

    def __init__(self) -> None:
        self._connectors: dict[str, DomainConnector] = {}

    def register(self, connector_id: str, connector: DomainConnector) -> None:
        if connector_id in self._connectors:
            logger.info("Replacing connector %s", connector_id)
        self._connectors[connector_id] = connector

    def unregister(self, connector_id: str) -> bool:
        return self._connectors.pop(connector_id, None) is not None

    def get(self, connector_id: str | None = None) -> DomainConnector:
        """Look up a connector.

        Args:
            connector_id: Registry key. Falls back to the default connector.

        Raises:
            ConfigurationError: If no connector is registered under the key.
        """
        key = connector_id or DEFAULT_CONNECTOR
        connector = self._connectors.get(key)
        if connector is None:
            raise ConfigurationError(f"Connector not registered: {key}")
        return connector

    def has(self, connector_id: str) -> bool:
        return connector_id in self._connectors

    @property
    def ids(self) -> list[str]:
        return sorted(self._connectors)


__all__ = ["DEFAULT_CONNECTOR", "ConnectorRegistry"]
