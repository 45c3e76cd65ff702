"""
Synchronization engine: mapping, contracts, orchestration and the run action.
"""

from .contracts import ContractStore, content_fingerprint
from .mapping import MappingEngine
from .run_action import SynchronizationAction
from .sync import SynchronizationService, SyncOutcome
from .transforms import FieldTransformer
from .validation import SchemaValidator

__all__ = [
    "ContractStore",
    "content_fingerprint",
    "MappingEngine",
    "SynchronizationAction",
    "SynchronizationService",
    "SyncOutcome",
    "FieldTransformer",
    "SchemaValidator",
]
