"""
Base connector class for all source and target systems.
"""

from abc import ABC
from typing import Dict, Iterator, Any, NamedTuple, Optional
from pydantic import BaseModel
import logging

from ..models.definition import SourceConfig

logger = logging.getLogger(__name__)


class ConnectorCapability(BaseModel):
    """Defines what operations a connector supports."""
    can_read: bool = False
    can_write: bool = False
    can_delete: bool = False


class SourceObject(NamedTuple):
    """An object fetched from a source, with the identity it is tracked by."""
    origin_id: Optional[str]
    payload: Dict[str, Any]


class BaseConnector(ABC):
    """
    Abstract base class for connectors.

    Subclasses implement ``_fetch``, ``_write`` and ``_delete`` for the
    operations their capabilities declare.
    """

    def __init__(self):
        logger.debug(f"Initialized {self.__class__.__name__} connector")

    def get_capabilities(self) -> ConnectorCapability:
        """Return what operations this connector supports."""
        return ConnectorCapability()

    def test_connection(self, options: Dict[str, Any], timeout: float = 10) -> bool:
        """Test if the connector can reach the service described by ``options``."""
        return True

    def fetch(self, source_config: SourceConfig, options: Dict[str, Any], timeout: float) -> Iterator[SourceObject]:
        """
        Fetch source objects lazily.

        Args:
            source_config: Source configuration, used for the origin id field
            options: Connector options with credentials resolved
            timeout: Deadline in seconds for each request

        Yields:
            SourceObject per fetched payload
        """
        if not self.get_capabilities().can_read:
            raise NotImplementedError(f"{self.__class__.__name__} does not support reading")

        id_field = source_config.origin_id_field
        for payload in self._fetch(options, timeout):
            origin_id = payload.get(id_field)
            yield SourceObject(
                origin_id=str(origin_id) if origin_id not in (None, "") else None,
                payload=payload
            )

    def write(
        self,
        options: Dict[str, Any],
        payload: Dict[str, Any],
        existing_target_id: Optional[str] = None,
        timeout: float = 30
    ) -> str:
        """
        Create or update a target object.

        Returns:
            Identifier of the target object
        """
        if not self.get_capabilities().can_write:
            raise NotImplementedError(f"{self.__class__.__name__} does not support writing")
        return self._write(options, payload, existing_target_id, timeout)

    def delete(self, options: Dict[str, Any], target_id: str, timeout: float = 30) -> None:
        """Delete a target object. Deleting an object that is already gone is not an error."""
        if not self.get_capabilities().can_delete:
            raise NotImplementedError(f"{self.__class__.__name__} does not support deleting")
        self._delete(options, target_id, timeout)

    def _fetch(self, options: Dict[str, Any], timeout: float) -> Iterator[Dict[str, Any]]:
        """Service-specific read implementation."""
        raise NotImplementedError()

    def _write(
        self,
        options: Dict[str, Any],
        payload: Dict[str, Any],
        existing_target_id: Optional[str],
        timeout: float
    ) -> str:
        """Service-specific write implementation."""
        raise NotImplementedError()

    def _delete(self, options: Dict[str, Any], target_id: str, timeout: float) -> None:
        """Service-specific delete implementation."""
        raise NotImplementedError()

