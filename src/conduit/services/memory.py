"""
In-process synchronization store, used for local runs and tests.

Records are kept in their serialized (document) form so that callers never
share mutable state with the store, mirroring a real database round-trip.
"""

import logging
import threading
import time
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Any, Optional, Tuple

from ..models.contract import SynchronizationContract
from ..models.definition import SynchronizationDefinition
from ..models.job_log import JobLog
from ..models.mapping import Mapping, ObjectSchema
from .store import SynchronizationStore, matches_filters

logger = logging.getLogger(__name__)


class InMemoryStore(SynchronizationStore):
    """Dictionary-backed implementation of SynchronizationStore."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._definitions: Dict[int, Dict[str, Any]] = {}
        self._mappings: Dict[int, Dict[str, Any]] = {}
        self._contracts: Dict[str, Dict[str, Any]] = {}
        self._job_logs: Dict[int, Dict[str, Any]] = {}
        self._schemas: Dict[str, Dict[str, Any]] = {}
        # definition id -> (owner, expiry as epoch seconds)
        self._run_leases: Dict[int, Tuple[str, float]] = {}
        logger.info("In-memory synchronization store initialized")

    def _next_id(self, kind: str) -> int:
        with self._lock:
            self._counters[kind] += 1
            return self._counters[kind]

    # Definitions

    def _put_definition(self, definition: SynchronizationDefinition) -> None:
        with self._lock:
            self._definitions[definition.id] = definition.to_firestore()

    def get_definition(self, definition_id: int) -> Optional[SynchronizationDefinition]:
        with self._lock:
            data = self._definitions.get(int(definition_id))
        if data is None:
            return None
        return SynchronizationDefinition.from_firestore(str(definition_id), data)

    def list_definitions(self, filters: Optional[Dict[str, Any]] = None) -> List[SynchronizationDefinition]:
        with self._lock:
            items = list(self._definitions.items())
        return [
            SynchronizationDefinition.from_firestore(str(doc_id), data)
            for doc_id, data in sorted(items)
            if matches_filters(data, filters)
        ]

    def _remove_definition(self, definition_id: int) -> bool:
        with self._lock:
            return self._definitions.pop(int(definition_id), None) is not None

    def record_last_run(self, definition_id: int, last_run: datetime) -> None:
        with self._lock:
            data = self._definitions.get(int(definition_id))
            if data is not None:
                data["lastRun"] = last_run.isoformat()

    def acquire_run_lock(self, definition_id: int, owner: str, lease_seconds: float) -> bool:
        now = time.time()
        with self._lock:
            lease = self._run_leases.get(int(definition_id))
            if lease is not None and lease[0] != owner and lease[1] > now:
                return False
            self._run_leases[int(definition_id)] = (owner, now + lease_seconds)
            return True

    def release_run_lock(self, definition_id: int, owner: str) -> None:
        with self._lock:
            lease = self._run_leases.get(int(definition_id))
            if lease is not None and lease[0] == owner:
                del self._run_leases[int(definition_id)]

    # Mappings

    def _put_mapping(self, mapping: Mapping) -> None:
        with self._lock:
            self._mappings[mapping.id] = mapping.to_firestore()

    def get_mapping(self, mapping_id: int) -> Optional[Mapping]:
        with self._lock:
            data = self._mappings.get(int(mapping_id))
        if data is None:
            return None
        return Mapping.from_firestore(str(mapping_id), data)

    def list_mappings(self, filters: Optional[Dict[str, Any]] = None) -> List[Mapping]:
        with self._lock:
            items = list(self._mappings.items())
        return [
            Mapping.from_firestore(str(doc_id), data)
            for doc_id, data in sorted(items)
            if matches_filters(data, filters)
        ]

    def _remove_mapping(self, mapping_id: int) -> bool:
        with self._lock:
            return self._mappings.pop(int(mapping_id), None) is not None

    # Contracts

    def get_contract(self, contract_id: str) -> Optional[SynchronizationContract]:
        with self._lock:
            data = self._contracts.get(contract_id)
        if data is None:
            return None
        return SynchronizationContract.from_firestore(contract_id, data)

    def save_contract(self, contract: SynchronizationContract) -> SynchronizationContract:
        with self._lock:
            self._contracts[contract.id] = contract.to_firestore()
        return contract

    def delete_contract(self, contract_id: str) -> bool:
        with self._lock:
            return self._contracts.pop(contract_id, None) is not None

    def list_contracts(
        self,
        synchronization_id: int,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SynchronizationContract]:
        with self._lock:
            items = list(self._contracts.items())
        return [
            SynchronizationContract.from_firestore(doc_id, data)
            for doc_id, data in sorted(items)
            if data.get("synchronizationId") == int(synchronization_id) and matches_filters(data, filters)
        ]

    # Job logs

    def _put_job_log(self, job_log: JobLog) -> None:
        with self._lock:
            self._job_logs[job_log.id] = job_log.to_firestore()

    def list_job_logs(self, filters: Optional[Dict[str, Any]] = None, limit: int = 100) -> List[JobLog]:
        with self._lock:
            items = list(self._job_logs.items())
        logs = [
            JobLog.from_firestore(str(doc_id), data)
            for doc_id, data in items
            if matches_filters(data, filters)
        ]
        logs.sort(key=lambda log: (log.created, log.id), reverse=True)
        return logs[:limit]

    # Schemas

    def get_schema(self, schema_id: str) -> Optional[ObjectSchema]:
        with self._lock:
            data = self._schemas.get(schema_id)
        if data is None:
            return None
        return ObjectSchema.model_validate(data)

    def save_schema(self, schema: ObjectSchema) -> ObjectSchema:
        if schema.id is None:
            schema = schema.model_copy(update={"id": str(self._next_id("schemas"))})
        with self._lock:
            self._schemas[schema.id] = schema.model_dump(mode="json")
        return schema
