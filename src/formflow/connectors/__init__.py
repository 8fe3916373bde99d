"""Domain API connectors."""

from .base import ConnectorConfig, ConnectorResult, DomainConnector
from .registry import DEFAULT_CONNECTOR, ConnectorRegistry

__all__ = [
    "DEFAULT_CONNECTOR",
    "ConnectorConfig",
    "ConnectorRegistry",
    "ConnectorResult",
    "DomainConnector",
]
