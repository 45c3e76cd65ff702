"""
In-process connector over named collections, for local runs and tests.
"""

import copy
import logging
import threading
import uuid
from collections import defaultdict
from typing import Dict, Iterator, Any, Optional

from ..exceptions import ConfigurationError
from .base import BaseConnector, ConnectorCapability

logger = logging.getLogger(__name__)


class MemoryBackend:
    """Named collections of objects keyed by id."""

    def __init__(self):
        self._lock = threading.Lock()
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)

    def put(self, collection: str, object_id: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.collections[collection][object_id] = copy.deepcopy(payload)

    def get(self, collection: str, object_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            payload = self.collections[collection].get(object_id)
        return copy.deepcopy(payload) if payload is not None else None

    def remove(self, collection: str, object_id: str) -> bool:
        with self._lock:
            return self.collections[collection].pop(object_id, None) is not None

    def items(self, collection: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(dict(self.collections[collection]))


DEFAULT_BACKEND = MemoryBackend()


class MemoryConnector(BaseConnector):
    """
    Reads and writes the collection named by the ``collection`` option.

    Args:
        backend: Collections to operate on; defaults to the process-wide backend
    """

    def __init__(self, backend: Optional[MemoryBackend] = None):
        super().__init__()
        self.backend = backend or DEFAULT_BACKEND

    def get_capabilities(self) -> ConnectorCapability:
        return ConnectorCapability(can_read=True, can_write=True, can_delete=True)

    @staticmethod
    def _collection(options: Dict[str, Any]) -> str:
        collection = options.get("collection")
        if not collection:
            raise ConfigurationError("Memory connector requires a 'collection' option")
        return collection

    def _fetch(self, options: Dict[str, Any], timeout: float) -> Iterator[Dict[str, Any]]:
        for payload in self.backend.items(self._collection(options)).values():
            yield payload

    def _write(
        self,
        options: Dict[str, Any],
        payload: Dict[str, Any],
        existing_target_id: Optional[str],
        timeout: float
    ) -> str:
        target_id = existing_target_id or str(uuid.uuid4())
        self.backend.put(self._collection(options), target_id, payload)
        return target_id

    def _delete(self, options: Dict[str, Any], target_id: str, timeout: float) -> None:
        if not self.backend.remove(self._collection(options), target_id):
            logger.debug(f"Target {target_id} already absent")
