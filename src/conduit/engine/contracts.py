"""
Contract store that tracks, per synchronization and source object, what was
last written to the target.

A contract only records a fingerprint once the corresponding payload has
been written, so an interrupted or failed write is always retried on the
next run.
"""

import hashlib
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from ..exceptions import PersistenceError
from ..models.contract import ContractStatus, SynchronizationContract, contract_key
from ..services.store import SynchronizationStore

logger = logging.getLogger(__name__)


def content_fingerprint(payload: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of ``payload``."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ContractStore:
    """
    Reconciles source objects against their synchronization contracts.

    Args:
        store: Backend that persists contracts
    """

    def __init__(self, store: SynchronizationStore):
        self.store = store
        # key -> [lock, number of callers holding or waiting for it]
        self._locks: Dict[str, List[Any]] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock_for(self, synchronization_id: int, origin_id: str) -> Iterator[None]:
        """
        Serialize reconcile and write for one source object.

        The lock is dropped once no caller holds or waits for it.
        """
        key = contract_key(synchronization_id, origin_id)
        with self._locks_guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def get(self, contract_id: str) -> Optional[SynchronizationContract]:
        return self._call(self.store.get_contract, contract_id)

    def reconcile(
        self,
        synchronization_id: int,
        origin_id: str,
        fingerprint: str
    ) -> Tuple[SynchronizationContract, bool]:
        """
        Look up or create the contract for a source object.

        A new contract is created ``pending``. An existing contract whose
        fingerprint differs from ``fingerprint`` (or that never reached
        ``synced``) is marked ``pending``. A ``synced`` contract with a
        matching fingerprint is returned unchanged, meaning nothing needs
        to be written.

        Returns:
            Tuple of (contract, is_new)

        Raises:
            PersistenceError: If the store is unavailable
        """
        key = contract_key(synchronization_id, origin_id)
        now = datetime.utcnow()
        contract = self._call(self.store.get_contract, key)

        if contract is None:
            contract = SynchronizationContract(
                id=key,
                uuid=str(uuid.uuid4()),
                synchronization_id=synchronization_id,
                origin_id=origin_id,
                status=ContractStatus.PENDING,
                source_last_checked=now,
                created=now,
                updated=now
            )
            self._call(self.store.save_contract, contract)
            logger.debug(f"Created contract {key}")
            return contract, True

        if contract.status == ContractStatus.SYNCED and contract.source_hash == fingerprint:
            return contract, False

        contract.status = ContractStatus.PENDING
        contract.source_last_checked = now
        contract.updated = now
        self._call(self.store.save_contract, contract)
        logger.debug(f"Contract {key} changed, pending write")
        return contract, False

    def mark_synced(
        self,
        contract: SynchronizationContract,
        target_id: str,
        fingerprint: str
    ) -> SynchronizationContract:
        """Record a successful target write."""
        now = datetime.utcnow()
        contract.target_id = target_id
        contract.source_hash = fingerprint
        contract.status = ContractStatus.SYNCED
        contract.last_error = None
        contract.source_last_synced = now
        contract.target_last_synced = now
        contract.updated = now
        return self._call(self.store.save_contract, contract)

    def mark_failed(self, contract: SynchronizationContract, error: Exception) -> SynchronizationContract:
        """Record a failed mapping or write; the stored fingerprint is kept."""
        contract.status = ContractStatus.FAILED
        contract.last_error = str(error)
        contract.updated = datetime.utcnow()
        return self._call(self.store.save_contract, contract)

    def purge_missing(
        self,
        synchronization_id: int,
        seen_origin_ids: Iterable[str],
        on_purge: Optional[Callable[[SynchronizationContract], None]] = None
    ) -> int:
        """
        Delete every contract of a synchronization whose origin id was not seen.

        ``on_purge`` is called with each contract before it is deleted. If it
        raises, that contract is kept and the error propagates.

        Returns:
            Number of contracts deleted
        """
        seen = set(seen_origin_ids)
        deleted = 0

        for contract in self._call(self.store.list_contracts, synchronization_id):
            if contract.origin_id in seen:
                continue
            if on_purge is not None:
                on_purge(contract)
            if self._call(self.store.delete_contract, contract.id):
                deleted += 1
                logger.info(f"Purged contract {contract.id}")

        return deleted

    @staticmethod
    def _call(operation: Callable, *args):
        try:
            return operation(*args)
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Contract store operation {operation.__name__} failed: {e}")
            raise PersistenceError(f"Contract store unavailable: {e}") from e
