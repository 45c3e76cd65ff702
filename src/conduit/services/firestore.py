"""
Firestore service for storing synchronization definitions, mappings,
contracts and job logs.
"""

import logging
import time
from datetime import datetime
from typing import Dict, List, Any, Optional
from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import firestore
from google.auth import default

from ..exceptions import PersistenceError
from ..models.contract import SynchronizationContract
from ..models.definition import SynchronizationDefinition
from ..models.job_log import JobLog
from ..models.mapping import Mapping, ObjectSchema
from .store import SynchronizationStore, IS_NULL, IS_NOT_NULL

logger = logging.getLogger(__name__)


def apply_filters(query, filters: Optional[Dict[str, Any]]):
    """Translate equality and null/not-null filters into Firestore where clauses."""
    for field, value in (filters or {}).items():
        if value == IS_NULL:
            query = query.where(field, "==", None)
        elif value == IS_NOT_NULL:
            query = query.where(field, "!=", None)
        else:
            query = query.where(field, "==", value)
    return query


class FirestoreService(SynchronizationStore):
    """
    Firestore-backed implementation of SynchronizationStore.
    """

    def __init__(self, project_id: Optional[str] = None):
        """
        Initialize Firestore service.

        Args:
            project_id: Google Cloud project ID. If None, uses default from environment.
        """
        try:
            if project_id:
                self.db = firestore.Client(project=project_id)
            else:
                # Use application default credentials
                credentials, project = default()
                self.db = firestore.Client(project=project, credentials=credentials)

            self.definitions_collection = "synchronizations"
            self.mappings_collection = "mappings"
            self.contracts_collection = "synchronization_contracts"
            self.job_logs_collection = "job_logs"
            self.schemas_collection = "schemas"
            self.counters_collection = "counters"
            self.run_locks_collection = "run_locks"

            logger.info(f"Firestore service initialized for project: {self.db.project}")

        except Exception as e:
            logger.error(f"Failed to initialize Firestore: {e}")
            raise PersistenceError(f"Failed to initialize Firestore: {e}") from e

    def _next_id(self, kind: str) -> int:
        counter_ref = self.db.collection(self.counters_collection).document(kind)

        @firestore.transactional
        def increment(transaction) -> int:
            snapshot = counter_ref.get(transaction=transaction)
            value = (snapshot.to_dict() or {}).get("value", 0) + 1 if snapshot.exists else 1
            transaction.set(counter_ref, {"value": value})
            return value

        try:
            return increment(self.db.transaction())
        except GoogleAPIError as e:
            logger.error(f"Failed to allocate id for {kind}: {e}")
            raise PersistenceError(f"Failed to allocate id for {kind}: {e}") from e

    # Generic document helpers

    def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self.db.collection(collection).document(doc_id).get()
            return doc.to_dict() if doc.exists else None
        except GoogleAPIError as e:
            logger.error(f"Failed to get {collection}/{doc_id}: {e}")
            raise PersistenceError(f"Failed to get {collection}/{doc_id}: {e}") from e

    def _set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            self.db.collection(collection).document(doc_id).set(data)
        except GoogleAPIError as e:
            logger.error(f"Failed to write {collection}/{doc_id}: {e}")
            raise PersistenceError(f"Failed to write {collection}/{doc_id}: {e}") from e

    def _delete(self, collection: str, doc_id: str) -> bool:
        try:
            doc_ref = self.db.collection(collection).document(doc_id)
            if not doc_ref.get().exists:
                return False
            doc_ref.delete()
            logger.info(f"Deleted {collection}/{doc_id}")
            return True
        except GoogleAPIError as e:
            logger.error(f"Failed to delete {collection}/{doc_id}: {e}")
            raise PersistenceError(f"Failed to delete {collection}/{doc_id}: {e}") from e

    def _stream(self, query, description: str):
        try:
            return list(query.stream())
        except GoogleAPIError as e:
            logger.error(f"Failed to list {description}: {e}")
            raise PersistenceError(f"Failed to list {description}: {e}") from e

    # Definitions

    def _put_definition(self, definition: SynchronizationDefinition) -> None:
        self._set(self.definitions_collection, str(definition.id), definition.to_firestore())

    def get_definition(self, definition_id: int) -> Optional[SynchronizationDefinition]:
        data = self._get(self.definitions_collection, str(definition_id))
        if data is None:
            return None
        return SynchronizationDefinition.from_firestore(str(definition_id), data)

    def list_definitions(self, filters: Optional[Dict[str, Any]] = None) -> List[SynchronizationDefinition]:
        query = apply_filters(self.db.collection(self.definitions_collection), filters)
        docs = self._stream(query, "synchronizations")
        return [SynchronizationDefinition.from_firestore(doc.id, doc.to_dict()) for doc in docs]

    def _remove_definition(self, definition_id: int) -> bool:
        return self._delete(self.definitions_collection, str(definition_id))

    def record_last_run(self, definition_id: int, last_run: datetime) -> None:
        try:
            self.db.collection(self.definitions_collection).document(str(definition_id)).update(
                {"lastRun": last_run.isoformat()}
            )
        except NotFound:
            logger.warning(f"Synchronization {definition_id} no longer exists, last run not recorded")
        except GoogleAPIError as e:
            logger.error(f"Failed to record last run of synchronization {definition_id}: {e}")
            raise PersistenceError(f"Failed to record last run of synchronization {definition_id}: {e}") from e

    # Run leases

    def acquire_run_lock(self, definition_id: int, owner: str, lease_seconds: float) -> bool:
        lock_ref = self.db.collection(self.run_locks_collection).document(str(definition_id))

        @firestore.transactional
        def acquire(transaction) -> bool:
            snapshot = lock_ref.get(transaction=transaction)
            now = time.time()
            if snapshot.exists:
                lease = snapshot.to_dict() or {}
                if lease.get("owner") != owner and lease.get("expires", 0) > now:
                    return False
            transaction.set(lock_ref, {"owner": owner, "expires": now + lease_seconds})
            return True

        try:
            return acquire(self.db.transaction())
        except GoogleAPIError as e:
            logger.error(f"Failed to lock synchronization {definition_id}: {e}")
            raise PersistenceError(f"Failed to lock synchronization {definition_id}: {e}") from e

    def release_run_lock(self, definition_id: int, owner: str) -> None:
        lock_ref = self.db.collection(self.run_locks_collection).document(str(definition_id))

        @firestore.transactional
        def release(transaction) -> None:
            snapshot = lock_ref.get(transaction=transaction)
            if snapshot.exists and (snapshot.to_dict() or {}).get("owner") == owner:
                transaction.delete(lock_ref)

        try:
            release(self.db.transaction())
        except GoogleAPIError as e:
            logger.error(f"Failed to unlock synchronization {definition_id}: {e}")
            raise PersistenceError(f"Failed to unlock synchronization {definition_id}: {e}") from e

    # Mappings

    def _put_mapping(self, mapping: Mapping) -> None:
        self._set(self.mappings_collection, str(mapping.id), mapping.to_firestore())

    def get_mapping(self, mapping_id: int) -> Optional[Mapping]:
        data = self._get(self.mappings_collection, str(mapping_id))
        if data is None:
            return None
        return Mapping.from_firestore(str(mapping_id), data)

    def list_mappings(self, filters: Optional[Dict[str, Any]] = None) -> List[Mapping]:
        query = apply_filters(self.db.collection(self.mappings_collection), filters)
        docs = self._stream(query, "mappings")
        return [Mapping.from_firestore(doc.id, doc.to_dict()) for doc in docs]

    def _remove_mapping(self, mapping_id: int) -> bool:
        return self._delete(self.mappings_collection, str(mapping_id))

    # Contracts

    def get_contract(self, contract_id: str) -> Optional[SynchronizationContract]:
        data = self._get(self.contracts_collection, contract_id)
        if data is None:
            return None
        return SynchronizationContract.from_firestore(contract_id, data)

    def save_contract(self, contract: SynchronizationContract) -> SynchronizationContract:
        self._set(self.contracts_collection, contract.id, contract.to_firestore())
        return contract

    def delete_contract(self, contract_id: str) -> bool:
        return self._delete(self.contracts_collection, contract_id)

    def list_contracts(
        self,
        synchronization_id: int,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SynchronizationContract]:
        query = self.db.collection(self.contracts_collection).where(
            "synchronizationId", "==", int(synchronization_id)
        )
        query = apply_filters(query, filters)
        docs = self._stream(query, f"contracts for synchronization {synchronization_id}")
        return [SynchronizationContract.from_firestore(doc.id, doc.to_dict()) for doc in docs]

    # Job logs

    def _put_job_log(self, job_log: JobLog) -> None:
        self._set(self.job_logs_collection, str(job_log.id), job_log.to_firestore())

    def list_job_logs(self, filters: Optional[Dict[str, Any]] = None, limit: int = 100) -> List[JobLog]:
        query = apply_filters(self.db.collection(self.job_logs_collection), filters)
        query = query.order_by("created", direction=firestore.Query.DESCENDING).limit(limit)
        docs = self._stream(query, "job logs")
        return [JobLog.from_firestore(doc.id, doc.to_dict()) for doc in docs]

    # Schemas

    def get_schema(self, schema_id: str) -> Optional[ObjectSchema]:
        data = self._get(self.schemas_collection, schema_id)
        if data is None:
            return None
        data["id"] = schema_id
        return ObjectSchema.model_validate(data)

    def save_schema(self, schema: ObjectSchema) -> ObjectSchema:
        if schema.id is None:
            schema = schema.model_copy(update={"id": str(self._next_id("schemas"))})
        self._set(self.schemas_collection, schema.id, schema.model_dump(mode="json"))
        return schema
