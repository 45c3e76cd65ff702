"""Shared pytest fixtures for Conduit tests."""

from typing import Any, Dict, List, Optional, Set

import pytest

from conduit.connectors import MemoryBackend, MemoryConnector
from conduit.engine.run_action import SynchronizationAction
from conduit.engine.sync import SynchronizationService
from conduit.exceptions import TargetRejected
from conduit.models.definition import SynchronizationDefinition
from conduit.services.memory import InMemoryStore

SOURCE_COLLECTION = "crm_contacts"
TARGET_COLLECTION = "warehouse_people"

DEFAULT_RULES = {
    "fullName": "{{first}} {{last}}",
    "email": "{{email}}",
    "age": "{{age}}",
}


class RecordingConnector(MemoryConnector):
    """Memory connector that records writes and deletes and can reject origins.

    Rejections are keyed on the ``email`` value of the payload.
    """

    def __init__(self, backend: MemoryBackend, reject_emails: Optional[Set[str]] = None) -> None:
        super().__init__(backend=backend)
        self.reject_emails: Set[str] = set(reject_emails or ())
        self.writes: List[Dict[str, Any]] = []
        self.deletes: List[str] = []

    def _write(self, options, payload, existing_target_id, timeout):
        if payload.get("email") in self.reject_emails:
            raise TargetRejected(f"HTTP 422: invalid email {payload.get('email')}")
        self.writes.append(payload)
        return super()._write(options, payload, existing_target_id, timeout)

    def _delete(self, options, target_id, timeout):
        self.deletes.append(target_id)
        super()._delete(options, target_id, timeout)


@pytest.fixture
def store():
    """An empty in-memory synchronization store."""
    return InMemoryStore()


@pytest.fixture
def backend():
    """Isolated memory collections for source and target objects."""
    return MemoryBackend()


@pytest.fixture
def target_connector(backend):
    """The connector every ``memory`` target resolves to."""
    return RecordingConnector(backend)


@pytest.fixture
def connector_factory(backend, target_connector):
    """Every ``memory`` connector resolves to ``target_connector``, which also reads the source."""

    def factory(connector_type: str):
        assert connector_type == "memory"
        return target_connector

    return factory


@pytest.fixture
def service(store, connector_factory):
    return SynchronizationService(store, connector_factory=connector_factory)


@pytest.fixture
def action(store, service):
    return SynchronizationAction(store, service)


@pytest.fixture
def make_definition(store):
    """Store a synchronization from the source to the target collection."""

    def make(rules: Optional[Dict[str, Any]] = None, **overrides: Any) -> SynchronizationDefinition:
        data: Dict[str, Any] = {
            "name": "CRM contacts to warehouse",
            "sourceConfig": {"type": "memory", "collection": SOURCE_COLLECTION},
            "targetConfig": {"type": "memory", "collection": TARGET_COLLECTION},
            "mapping": {"mapping": dict(rules or DEFAULT_RULES)},
        }
        data.update(overrides)
        return store.create_definition(SynchronizationDefinition.model_validate(data))

    return make


@pytest.fixture
def seed_source(backend):
    """Put contacts into the source collection, keyed by their ``id``."""

    def seed(*contacts: Dict[str, Any]) -> None:
        for contact in contacts:
            backend.put(SOURCE_COLLECTION, contact["id"], contact)

    return seed


@pytest.fixture
def contacts() -> List[Dict[str, Any]]:
    return [
        {"id": "c1", "first": "Ada", "last": "Lovelace", "email": "ada@example.com", "age": 36},
        {"id": "c2", "first": "Alan", "last": "Turing", "email": "alan@example.com", "age": 41},
        {"id": "c3", "first": "Grace", "last": "Hopper", "email": "grace@example.com", "age": 85},
    ]
