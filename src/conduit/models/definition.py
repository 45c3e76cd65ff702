"""
Configuration models for synchronization definitions.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .mapping import Mapping


DEFAULT_VERSION = "0.0.1"


class ObjectErrorStrategy(str, Enum):
    """How a run reacts to a single object failing to map or write."""
    CONTINUE = "continue"  # Record the failure and move to the next object
    FAIL = "fail"          # Abort the run on the first failure


class ConnectorConfig(BaseModel):
    """
    Configuration for a source or target connector.

    Only ``type`` is interpreted by the engine; every other option is passed
    through to the connector untouched.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = Field(..., description="Connector type (http, firestore, memory)")

    def options(self) -> Dict[str, Any]:
        """Connector options, i.e. every key the engine does not interpret itself."""
        return dict(self.model_extra or {})


class SourceConfig(ConnectorConfig):
    """Where source objects are fetched from."""
    origin_id_field: str = Field("id", alias="originIdField", description="Payload field holding the origin id")


class TargetConfig(ConnectorConfig):
    """Where mapped objects are written to."""
    delete_old_targets: bool = Field(
        False,
        alias="deleteOldTargets",
        description="Delete target objects whose source object no longer exists"
    )


class SynchronizationDefinition(BaseModel):
    """
    Configuration of one source to target synchronization.
    This is stored by the synchronization store.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    # Identity
    id: Optional[int] = Field(None, description="Store-assigned identifier")
    uuid: Optional[str] = Field(None, description="Stable external identity")
    version: str = Field(DEFAULT_VERSION, description="Semantic version, MAJOR.MINOR.PATCH")
    name: str = Field(..., description="Human-readable name")
    description: Optional[str] = Field(None)

    # Connectors
    source_config: SourceConfig = Field(..., alias="sourceConfig")
    target_config: TargetConfig = Field(..., alias="targetConfig")

    # Mapping, either by reference or embedded
    mapping_id: Optional[int] = Field(None, alias="mappingId")
    mapping: Optional[Mapping] = Field(None)

    # Run options
    error_strategy: ObjectErrorStrategy = Field(ObjectErrorStrategy.CONTINUE, alias="errorStrategy")
    timeout_seconds: int = Field(30, alias="timeoutSeconds", gt=0, description="Deadline for each connector call")

    # Timestamps
    created: datetime = Field(default_factory=datetime.utcnow)
    updated: datetime = Field(default_factory=datetime.utcnow)
    last_run: Optional[datetime] = Field(None, alias="lastRun")

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        parts = v.split(".")
        if len(parts) != 3 or not all(part.isdigit() for part in parts):
            raise ValueError(f"Version must be MAJOR.MINOR.PATCH, got '{v}'")
        return v

    def bump_patch_version(self) -> str:
        """Increment the patch component of the version and return it."""
        major, minor, patch = self.version.split(".")
        self.version = f"{major}.{minor}.{int(patch) + 1}"
        return self.version

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any]) -> "SynchronizationDefinition":
        """Create instance from Firestore document."""
        data = dict(data)
        data["id"] = int(doc_id)
        return cls.model_validate(data)
