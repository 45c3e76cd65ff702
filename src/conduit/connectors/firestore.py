"""
Connector that uses a Firestore collection as a source or target.

Options:
    collection: Collection path
    project_id: Google Cloud project; application default credentials otherwise
"""

import logging
from typing import Dict, Iterator, Any, Optional
from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import firestore

from ..exceptions import ConfigurationError, SourceUnavailable, TargetUnavailable
from .base import BaseConnector, ConnectorCapability

logger = logging.getLogger(__name__)


class FirestoreConnector(BaseConnector):
    """
    Reads documents from and writes documents to a Firestore collection.
    Documents are tracked by their document id.
    """

    def __init__(self, client: Optional[firestore.Client] = None):
        super().__init__()
        self._client = client

    def get_capabilities(self) -> ConnectorCapability:
        return ConnectorCapability(can_read=True, can_write=True, can_delete=True)

    def _collection(self, options: Dict[str, Any]):
        path = options.get("collection")
        if not path:
            raise ConfigurationError("Firestore connector requires a 'collection' option")
        if self._client is None:
            self._client = firestore.Client(project=options.get("project_id"))
        return self._client.collection(path)

    def _fetch(self, options: Dict[str, Any], timeout: float) -> Iterator[Dict[str, Any]]:
        collection = self._collection(options)
        try:
            for doc in collection.stream(timeout=timeout):
                payload = doc.to_dict() or {}
                payload.setdefault("id", doc.id)
                yield payload
        except GoogleAPIError as e:
            logger.error(f"Failed to read collection {options.get('collection')}: {e}")
            raise SourceUnavailable(f"Failed to read collection {options.get('collection')}: {e}") from e

    def _write(
        self,
        options: Dict[str, Any],
        payload: Dict[str, Any],
        existing_target_id: Optional[str],
        timeout: float
    ) -> str:
        collection = self._collection(options)
        try:
            if existing_target_id:
                collection.document(existing_target_id).set(payload, timeout=timeout)
                return existing_target_id
            _, doc_ref = collection.add(payload, timeout=timeout)
            return doc_ref.id
        except GoogleAPIError as e:
            logger.error(f"Failed to write to collection {options.get('collection')}: {e}")
            raise TargetUnavailable(f"Failed to write to collection {options.get('collection')}: {e}") from e

    def _delete(self, options: Dict[str, Any], target_id: str, timeout: float) -> None:
        collection = self._collection(options)
        try:
            collection.document(target_id).delete(timeout=timeout)
        except NotFound:
            logger.info(f"Document {target_id} already deleted")
        except GoogleAPIError as e:
            logger.error(f"Failed to delete document {target_id}: {e}")
            raise TargetUnavailable(f"Failed to delete document {target_id}: {e}") from e
