"""
Models for the Conduit synchronization engine.
"""

from .definition import (
    SynchronizationDefinition, SourceConfig, TargetConfig, ConnectorConfig,
    ObjectErrorStrategy
)
from .mapping import Mapping, ObjectSchema, SchemaField
from .contract import SynchronizationContract, ContractStatus, contract_key
from .job_log import JobLog, LogLevel, ObjectFailure, RunTrace, TraceRecorder

__all__ = [
    # Definitions
    "SynchronizationDefinition",
    "SourceConfig",
    "TargetConfig",
    "ConnectorConfig",
    "ObjectErrorStrategy",

    # Mappings
    "Mapping",
    "ObjectSchema",
    "SchemaField",

    # Contracts
    "SynchronizationContract",
    "ContractStatus",
    "contract_key",

    # Run traces
    "JobLog",
    "LogLevel",
    "ObjectFailure",
    "RunTrace",
    "TraceRecorder",
]
