"""
Synchronization orchestrator that moves source objects into a target.

For every source object the orchestrator computes a fingerprint, reconciles
it against the object's contract, maps and writes it when it is new or
changed, and records the result on the contract. Target objects whose
source disappeared can be removed afterwards with ``delete_old_targets``.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Any, Optional, Set, Tuple

from ..connectors import BaseConnector, SourceObject, create_connector
from ..exceptions import (
    ConduitException, ConfigurationError, ExecutionError, MappingError, NotFoundError,
    PersistenceError, SourceUnavailable, TargetRejected, TargetUnavailable
)
from ..models.contract import ContractStatus, SynchronizationContract
from ..models.definition import ObjectErrorStrategy, SynchronizationDefinition
from ..models.mapping import Mapping
from ..services.secrets import CredentialResolver
from ..services.store import SynchronizationStore
from .contracts import ContractStore, content_fingerprint
from .mapping import MappingEngine
from .validation import SchemaValidator

logger = logging.getLogger(__name__)

UNKNOWN_ORIGIN = "UNKNOWN"

# Failures that only affect the object being processed
OBJECT_ERRORS = (MappingError, TargetRejected, TargetUnavailable)

# Run leases outlive a crashed holder by at most this long
RUN_LEASE_SECONDS = 3600


@dataclass
class SyncOutcome:
    """What one synchronization run did."""
    objects: List[Dict[str, Any]] = field(default_factory=list)
    origin_ids: Set[str] = field(default_factory=set)
    failures: List[Tuple[str, Exception]] = field(default_factory=list)
    skipped: int = 0
    cancelled: bool = False


class SynchronizationService:
    """
    Runs synchronization definitions against their connectors.

    Args:
        store: Store holding mappings, contracts and schemas
        mapping_engine: Engine used to map source objects
        connector_factory: Callable creating a connector for a config ``type``
        credential_resolver: Resolves ``${NAME}`` placeholders in connector options
        run_lease_seconds: Lifetime of the store-wide run lease taken per run
    """

    def __init__(
        self,
        store: SynchronizationStore,
        mapping_engine: Optional[MappingEngine] = None,
        connector_factory: Optional[Callable[[str], BaseConnector]] = None,
        credential_resolver: Optional[CredentialResolver] = None,
        run_lease_seconds: float = RUN_LEASE_SECONDS
    ):
        self.store = store
        self.contracts = ContractStore(store)
        self.mapping_engine = mapping_engine or MappingEngine()
        self.connector_factory = connector_factory or create_connector
        self.credential_resolver = credential_resolver or CredentialResolver()
        self.schema_validator = SchemaValidator(store.get_schema)
        self.run_lease_seconds = run_lease_seconds
        self._running: Set[Optional[int]] = set()
        self._running_guard = threading.Lock()

    def synchronize(
        self,
        definition: SynchronizationDefinition,
        cancel_event: Optional[threading.Event] = None,
        dry_run: bool = False,
        origin_filter: Optional[str] = None
    ) -> SyncOutcome:
        """
        Synchronize every source object of a definition into its target.

        Args:
            definition: Synchronization to run; read-only for the duration of the run
            cancel_event: When set, no further objects are started
            dry_run: Fetch and map only; nothing is written and no contract changes
            origin_filter: Only process the source object with this origin id

        Returns:
            SyncOutcome with the written objects and every origin id seen

        Raises:
            ExecutionError: If the definition is already running, or an object
                fails while the error strategy is ``fail``
            SourceUnavailable: If the source cannot be read
            PersistenceError: If the contract store is unavailable
            ConfigurationError: If connectors or credentials are misconfigured
            MappingError: If the mapping itself is malformed
        """
        with self._running_guard:
            if definition.id in self._running:
                raise ExecutionError(f"Synchronization {definition.id} is already running")
            self._running.add(definition.id)

        try:
            owner = str(uuid.uuid4())
            if not self.store.acquire_run_lock(definition.id, owner, self.run_lease_seconds):
                raise ExecutionError(f"Synchronization {definition.id} is already running in another process")
            try:
                return self._synchronize(definition, cancel_event, dry_run, origin_filter)
            finally:
                self._release_run_lock(definition.id, owner)
        finally:
            with self._running_guard:
                self._running.discard(definition.id)

    def delete_old_targets(self, definition: SynchronizationDefinition, origin_ids: Set[str]) -> int:
        """
        Delete target objects whose source object was not seen in the last run.

        Every contract not in ``origin_ids`` is purged; its target object is
        deleted first when it has one.

        Returns:
            Number of target objects deleted
        """
        target = self._connector(definition.target_config.type)
        if not target.get_capabilities().can_delete:
            raise ConfigurationError(f"Target connector '{definition.target_config.type}' cannot delete objects")

        options = self.credential_resolver.resolve(definition.target_config.options())
        deleted = 0

        def delete_target(contract: SynchronizationContract) -> None:
            nonlocal deleted
            if contract.target_id is None:
                return
            target.delete(options, contract.target_id, timeout=definition.timeout_seconds)
            deleted += 1
            logger.info(f"Deleted target {contract.target_id} of origin {contract.origin_id}")

        purged = self.contracts.purge_missing(definition.id, origin_ids, on_purge=delete_target)
        logger.info(f"Purged {purged} contracts and deleted {deleted} targets for synchronization {definition.id}")
        return deleted

    def resolve_mapping(self, definition: SynchronizationDefinition) -> Mapping:
        """
        The mapping a definition uses: embedded rules win over a stored reference.

        Raises:
            NotFoundError: If the referenced mapping does not exist
            ConfigurationError: If the definition has no mapping at all
        """
        if definition.mapping is not None:
            return definition.mapping
        if definition.mapping_id is not None:
            mapping = self.store.get_mapping(definition.mapping_id)
            if mapping is None:
                raise NotFoundError(f"Mapping {definition.mapping_id} not found")
            return mapping
        raise ConfigurationError(f"Synchronization {definition.id} has no mapping")

    # Internals

    def _release_run_lock(self, definition_id: int, owner: str) -> None:
        try:
            self.store.release_run_lock(definition_id, owner)
        except PersistenceError as e:
            logger.warning(f"Run lease of synchronization {definition_id} not released, it expires on its own: {e}")

    def _connector(self, connector_type: str) -> BaseConnector:
        return self.connector_factory(connector_type)

    def _synchronize(
        self,
        definition: SynchronizationDefinition,
        cancel_event: Optional[threading.Event],
        dry_run: bool,
        origin_filter: Optional[str]
    ) -> SyncOutcome:
        mapping = self.resolve_mapping(definition)
        self.mapping_engine.validate(mapping)

        source = self._connector(definition.source_config.type)
        if not source.get_capabilities().can_read:
            raise ConfigurationError(f"Source connector '{definition.source_config.type}' cannot read objects")
        target = self._connector(definition.target_config.type)
        if not dry_run and not target.get_capabilities().can_write:
            raise ConfigurationError(f"Target connector '{definition.target_config.type}' cannot write objects")

        source_options = self.credential_resolver.resolve(definition.source_config.options())
        target_options = self.credential_resolver.resolve(definition.target_config.options())
        timeout = definition.timeout_seconds

        logger.info(
            f"Starting synchronization {definition.id} ({definition.name})"
            f"{' as dry run' if dry_run else ''}"
        )
        outcome = SyncOutcome()

        for source_object in self._iterate_source(source, definition, source_options):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Synchronization {definition.id} cancelled")
                outcome.cancelled = True
                break

            origin_id = source_object.origin_id
            if origin_id is None:
                error = MappingError(
                    f"Source object has no '{definition.source_config.origin_id_field}' value"
                )
                self._record_failure(definition, outcome, UNKNOWN_ORIGIN, error)
                continue
            if origin_filter is not None and origin_id != origin_filter:
                continue

            outcome.origin_ids.add(origin_id)
            try:
                written = self._synchronize_object(
                    definition, mapping, source_object, target, target_options, timeout, dry_run
                )
            except OBJECT_ERRORS as e:
                self._record_failure(definition, outcome, origin_id, e)
                continue

            if written is None:
                outcome.skipped += 1
            else:
                outcome.objects.append(written)

        logger.info(
            f"Synchronization {definition.id} finished: {len(outcome.objects)} written, "
            f"{outcome.skipped} unchanged, {len(outcome.failures)} failed"
        )
        return outcome

    def _iterate_source(
        self,
        source: BaseConnector,
        definition: SynchronizationDefinition,
        options: Dict[str, Any]
    ) -> Iterator[SourceObject]:
        objects = source.fetch(definition.source_config, options, definition.timeout_seconds)
        while True:
            try:
                source_object = next(objects)
            except StopIteration:
                return
            except ConduitException:
                raise
            except Exception as e:
                logger.error(f"Reading source of synchronization {definition.id} failed: {e}")
                raise SourceUnavailable(f"Failed to read source: {e}") from e
            yield source_object

    def _synchronize_object(
        self,
        definition: SynchronizationDefinition,
        mapping: Mapping,
        source_object: SourceObject,
        target: BaseConnector,
        target_options: Dict[str, Any],
        timeout: float,
        dry_run: bool
    ) -> Optional[Dict[str, Any]]:
        """Returns the written payload, or None when the object was unchanged."""
        if dry_run:
            return self._map(mapping, source_object.payload)

        origin_id = source_object.origin_id
        fingerprint = content_fingerprint(source_object.payload)

        with self.contracts.lock_for(definition.id, origin_id):
            contract, is_new = self.contracts.reconcile(definition.id, origin_id, fingerprint)
            if not is_new and contract.status == ContractStatus.SYNCED:
                logger.debug(f"Origin {origin_id} unchanged, skipping")
                return None

            try:
                payload = self._map(mapping, source_object.payload)
                target_id = target.write(
                    target_options,
                    payload,
                    existing_target_id=contract.target_id,
                    timeout=timeout
                )
            except OBJECT_ERRORS as e:
                self.contracts.mark_failed(contract, e)
                raise

            self.contracts.mark_synced(contract, target_id, fingerprint)
            logger.debug(f"Origin {origin_id} written to target {target_id}")
            return payload

    def _map(self, mapping: Mapping, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self.mapping_engine.map(mapping, payload)
        if mapping.schema_id:
            errors = self.schema_validator.validate(result, mapping.schema_id)
            if errors:
                raise MappingError(f"Mapped object does not match schema '{mapping.schema_id}': {'; '.join(errors)}")
        return result

    @staticmethod
    def _record_failure(
        definition: SynchronizationDefinition,
        outcome: SyncOutcome,
        origin_id: str,
        error: Exception
    ) -> None:
        logger.warning(f"Failed to synchronize object {origin_id} of synchronization {definition.id}: {error}")
        outcome.failures.append((origin_id, error))
        if definition.error_strategy == ObjectErrorStrategy.FAIL:
            raise ExecutionError(f"Failed to synchronize object {origin_id}: {error}") from error
