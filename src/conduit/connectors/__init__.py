"""
Connector framework for Conduit.

This package contains all connectors that can be used as sources or targets
for synchronization runs.
"""

from ..exceptions import ConfigurationError
from .base import BaseConnector, ConnectorCapability, SourceObject
from .firestore import FirestoreConnector
from .http import HttpConnector
from .memory import MemoryBackend, MemoryConnector

__all__ = [
    "BaseConnector",
    "ConnectorCapability",
    "SourceObject",
    "FirestoreConnector",
    "HttpConnector",
    "MemoryBackend",
    "MemoryConnector",
    "CONNECTOR_REGISTRY",
    "create_connector",
]

# Connector registry for dynamic loading
CONNECTOR_REGISTRY = {
    "http": HttpConnector,
    "firestore": FirestoreConnector,
    "memory": MemoryConnector,
}

def create_connector(connector_type: str) -> BaseConnector:
    """Create a connector instance by type."""
    if connector_type not in CONNECTOR_REGISTRY:
        raise ConfigurationError(f"Unknown connector type: {connector_type}")
    return CONNECTOR_REGISTRY[connector_type]()
