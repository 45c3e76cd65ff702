"""
Models for declarative mappings and the schemas mapped output is checked against.
"""

from datetime import datetime
from typing import Dict, List, Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class Mapping(BaseModel):
    """
    A declarative transform from an input object to an output object.

    ``mapping`` holds ordered ``outputKey -> expression`` rules where an
    expression is a string with ``{{path}}`` tokens, a nested dict or list of
    expressions, or a literal.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[int] = Field(None)
    uuid: Optional[str] = Field(None)
    name: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    version: str = Field("0.0.1")

    mapping: Dict[str, Any] = Field(default_factory=dict, description="outputKey -> expression rules")
    unset: List[str] = Field(default_factory=list, description="Output keys removed after mapping")
    cast: Dict[str, str] = Field(default_factory=dict, description="outputKey -> named transform")
    pass_through: bool = Field(False, alias="passThrough", description="Start from a copy of the input")
    required: List[str] = Field(default_factory=list, description="Input paths that must be present")
    schema_id: Optional[str] = Field(None, alias="schema", description="Schema the output is validated against")

    created: datetime = Field(default_factory=datetime.utcnow)
    updated: datetime = Field(default_factory=datetime.utcnow)

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any]) -> "Mapping":
        """Create instance from Firestore document."""
        data = dict(data)
        data["id"] = int(doc_id)
        return cls.model_validate(data)


class SchemaField(BaseModel):
    """Defines a field that mapped output may carry."""
    name: str
    description: str = ""
    data_type: str = "string"  # "string", "integer", "float", "boolean", "object", "array"
    required: bool = False
    example: Optional[Any] = None


class ObjectSchema(BaseModel):
    """Defines the shape a mapped object is validated against."""
    id: Optional[str] = None
    name: Optional[str] = None
    fields: List[SchemaField] = Field(default_factory=list)
