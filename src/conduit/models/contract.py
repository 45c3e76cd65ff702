"""
Models for synchronization contracts, the durable link between a source
object and the target object it was written to.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional
from urllib.parse import quote
from pydantic import BaseModel, ConfigDict, Field


class ContractStatus(str, Enum):
    """Synchronization status of a single source object."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


def contract_key(synchronization_id: int, origin_id: str) -> str:
    """
    Document key of the contract for (synchronization_id, origin_id).

    The origin id is percent-encoded so that ids such as ``orders/42`` stay a
    single document id; the raw value is kept in ``origin_id``.
    """
    return f"{synchronization_id}:{quote(origin_id, safe='')}"


class SynchronizationContract(BaseModel):
    """Tracks one source object for one synchronization definition."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(..., description="Deterministic key, see contract_key()")
    uuid: Optional[str] = Field(None)
    synchronization_id: int = Field(..., alias="synchronizationId")
    origin_id: str = Field(..., alias="originId")
    target_id: Optional[str] = Field(None, alias="targetId")

    # Fingerprint of the last payload that was actually written to the target
    source_hash: Optional[str] = Field(None, alias="sourceHash")
    status: ContractStatus = Field(ContractStatus.PENDING)
    last_error: Optional[str] = Field(None, alias="lastError")

    source_last_checked: Optional[datetime] = Field(None, alias="sourceLastChecked")
    source_last_synced: Optional[datetime] = Field(None, alias="sourceLastSynced")
    target_last_synced: Optional[datetime] = Field(None, alias="targetLastSynced")
    created: datetime = Field(default_factory=datetime.utcnow)
    updated: datetime = Field(default_factory=datetime.utcnow)

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any]) -> "SynchronizationContract":
        """Create instance from Firestore document."""
        data = dict(data)
        data["id"] = doc_id
        return cls.model_validate(data)
