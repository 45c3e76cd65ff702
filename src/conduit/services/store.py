"""
Repository interface for synchronization definitions, mappings, contracts,
job logs and schemas.

Backends implement the storage primitives (the abstract methods); the
administrative rules shared by every backend live here: identity
assignment, patch-version bumps on update, and refusing to delete records
that are still referenced.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Any, Optional, Type, TypeVar

from pydantic import BaseModel

from ..exceptions import ConfigurationError, NotFoundError
from ..models.contract import SynchronizationContract
from ..models.definition import SynchronizationDefinition
from ..models.job_log import JobLog
from ..models.mapping import Mapping, ObjectSchema

logger = logging.getLogger(__name__)

IS_NULL = "IS NULL"
IS_NOT_NULL = "IS NOT NULL"

# Fields an update may never overwrite
IMMUTABLE_FIELDS = {"id", "uuid", "created", "version"}

ModelT = TypeVar("ModelT", bound=BaseModel)


def matches_filters(record: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """
    Check a stored record against equality and null/not-null filters.

    Filter values ``"IS NULL"`` and ``"IS NOT NULL"`` test for absence or
    presence of a value; anything else must be equal.
    """
    for field, expected in (filters or {}).items():
        actual = record.get(field)
        if expected == IS_NULL:
            if actual is not None:
                return False
        elif expected == IS_NOT_NULL:
            if actual is None:
                return False
        elif actual != expected:
            return False
    return True


def merge_updates(model: ModelT, updates: Dict[str, Any]) -> ModelT:
    """Return a copy of ``model`` with ``updates`` applied and re-validated."""
    model_class: Type[ModelT] = type(model)
    data = model.model_dump(by_alias=True)
    for key, value in updates.items():
        field = model_class.model_fields.get(key)
        name = key
        if field is None:
            # Accept wire names as well as attribute names
            for attribute, info in model_class.model_fields.items():
                if info.alias == key:
                    name, field = attribute, info
                    break
        if name in IMMUTABLE_FIELDS or field is None:
            continue
        data[field.alias or name] = value
    return model_class.model_validate(data)


class SynchronizationStore(ABC):
    """Storage for everything the synchronization engine persists."""

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _next_id(self, kind: str) -> int:
        """Allocate the next integer id for a record kind."""

    @abstractmethod
    def _put_definition(self, definition: SynchronizationDefinition) -> None:
        pass

    @abstractmethod
    def get_definition(self, definition_id: int) -> Optional[SynchronizationDefinition]:
        pass

    @abstractmethod
    def list_definitions(self, filters: Optional[Dict[str, Any]] = None) -> List[SynchronizationDefinition]:
        pass

    @abstractmethod
    def _remove_definition(self, definition_id: int) -> bool:
        pass

    @abstractmethod
    def record_last_run(self, definition_id: int, last_run: datetime) -> None:
        """Stamp the time of the latest run, leaving every other field and the version alone."""

    @abstractmethod
    def acquire_run_lock(self, definition_id: int, owner: str, lease_seconds: float) -> bool:
        """
        Take the run lease of a definition for ``owner``.

        The lease is shared by every process using the same backend. It is
        granted when nobody holds it or the previous lease has expired.

        Returns:
            True if ``owner`` now holds the lease
        """

    @abstractmethod
    def release_run_lock(self, definition_id: int, owner: str) -> None:
        """Give the run lease back if ``owner`` still holds it."""

    @abstractmethod
    def _put_mapping(self, mapping: Mapping) -> None:
        pass

    @abstractmethod
    def get_mapping(self, mapping_id: int) -> Optional[Mapping]:
        pass

    @abstractmethod
    def list_mappings(self, filters: Optional[Dict[str, Any]] = None) -> List[Mapping]:
        pass

    @abstractmethod
    def _remove_mapping(self, mapping_id: int) -> bool:
        pass

    @abstractmethod
    def get_contract(self, contract_id: str) -> Optional[SynchronizationContract]:
        pass

    @abstractmethod
    def save_contract(self, contract: SynchronizationContract) -> SynchronizationContract:
        pass

    @abstractmethod
    def delete_contract(self, contract_id: str) -> bool:
        pass

    @abstractmethod
    def list_contracts(
        self,
        synchronization_id: int,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SynchronizationContract]:
        pass

    @abstractmethod
    def _put_job_log(self, job_log: JobLog) -> None:
        pass

    @abstractmethod
    def list_job_logs(self, filters: Optional[Dict[str, Any]] = None, limit: int = 100) -> List[JobLog]:
        """List job logs, newest first."""

    @abstractmethod
    def get_schema(self, schema_id: str) -> Optional[ObjectSchema]:
        pass

    @abstractmethod
    def save_schema(self, schema: ObjectSchema) -> ObjectSchema:
        pass

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def create_definition(self, definition: SynchronizationDefinition) -> SynchronizationDefinition:
        """Store a new definition, assigning its id and uuid."""
        definition = definition.model_copy(deep=True)
        if definition.id is None:
            definition.id = self._next_id("synchronizations")
        if definition.uuid is None:
            definition.uuid = str(uuid.uuid4())
        definition.created = definition.updated = datetime.utcnow()

        self._put_definition(definition)
        logger.info(f"Created synchronization {definition.id} ({definition.name})")
        return definition

    def update_definition(self, definition_id: int, updates: Dict[str, Any]) -> SynchronizationDefinition:
        """
        Apply updates to a definition and bump its patch version.

        Raises:
            NotFoundError: If the definition does not exist
        """
        existing = self.get_definition(definition_id)
        if existing is None:
            raise NotFoundError(f"Synchronization {definition_id} not found")

        definition = merge_updates(existing, updates)
        definition.bump_patch_version()
        definition.updated = datetime.utcnow()

        self._put_definition(definition)
        logger.info(f"Updated synchronization {definition_id} to version {definition.version}")
        return definition

    def delete_definition(self, definition_id: int) -> bool:
        """
        Delete a definition that no contract references any more.

        Returns:
            True if deleted, False if not found

        Raises:
            ConfigurationError: If contracts still reference the definition
        """
        remaining = len(self.list_contracts(definition_id))
        if remaining:
            raise ConfigurationError(
                f"Synchronization {definition_id} still has {remaining} contracts"
            )
        deleted = self._remove_definition(definition_id)
        if deleted:
            logger.info(f"Deleted synchronization {definition_id}")
        return deleted

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def create_mapping(self, mapping: Mapping) -> Mapping:
        """Store a new mapping, assigning its id and uuid."""
        mapping = mapping.model_copy(deep=True)
        if mapping.id is None:
            mapping.id = self._next_id("mappings")
        if mapping.uuid is None:
            mapping.uuid = str(uuid.uuid4())
        mapping.created = mapping.updated = datetime.utcnow()

        self._put_mapping(mapping)
        logger.info(f"Created mapping {mapping.id}")
        return mapping

    def update_mapping(self, mapping_id: int, updates: Dict[str, Any]) -> Mapping:
        """
        Apply updates to a mapping and bump its patch version.

        Raises:
            NotFoundError: If the mapping does not exist
        """
        existing = self.get_mapping(mapping_id)
        if existing is None:
            raise NotFoundError(f"Mapping {mapping_id} not found")

        mapping = merge_updates(existing, updates)
        major, minor, patch = mapping.version.split(".")
        mapping.version = f"{major}.{minor}.{int(patch) + 1}"
        mapping.updated = datetime.utcnow()

        self._put_mapping(mapping)
        logger.info(f"Updated mapping {mapping_id} to version {mapping.version}")
        return mapping

    def delete_mapping(self, mapping_id: int) -> bool:
        """
        Delete a mapping that no definition references.

        Raises:
            ConfigurationError: If a synchronization still uses the mapping
        """
        users = self.list_definitions({"mappingId": mapping_id})
        if users:
            raise ConfigurationError(
                f"Mapping {mapping_id} is used by synchronizations {[d.id for d in users]}"
            )
        return self._remove_mapping(mapping_id)

    # ------------------------------------------------------------------
    # Job logs
    # ------------------------------------------------------------------

    def create_job_log(self, job_log: JobLog) -> JobLog:
        """Persist a finished job log, assigning its id."""
        job_log = job_log.model_copy(deep=True)
        if job_log.id is None:
            job_log.id = self._next_id("job_logs")
        self._put_job_log(job_log)
        logger.info(f"Stored job log {job_log.id} ({job_log.level.value}: {job_log.message})")
        return job_log
