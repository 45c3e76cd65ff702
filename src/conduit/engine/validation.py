"""
Schema validation for mapped objects.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..models.mapping import ObjectSchema

logger = logging.getLogger(__name__)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda value: isinstance(value, str),
    "integer": _is_integer,
    "float": _is_number,
    "number": _is_number,
    "boolean": lambda value: isinstance(value, bool),
    "object": lambda value: isinstance(value, dict),
    "array": lambda value: isinstance(value, list),
}


class SchemaValidator:
    """
    Validates objects against stored schemas.

    Args:
        schema_lookup: Callable returning the schema for an id, or None
    """

    def __init__(self, schema_lookup: Callable[[str], Optional[ObjectSchema]]):
        self.schema_lookup = schema_lookup

    def validate(self, obj: Dict[str, Any], schema_id: str) -> List[str]:
        """
        Validate an object against a schema.

        Returns:
            List of validation errors, empty when the object is valid
        """
        schema = self.schema_lookup(schema_id)
        if schema is None:
            return [f"Schema '{schema_id}' not found"]
        return self.validate_against(obj, schema)

    @staticmethod
    def validate_against(obj: Dict[str, Any], schema: ObjectSchema) -> List[str]:
        errors = []
        for field in schema.fields:
            if field.name not in obj or obj[field.name] in (None, ""):
                if field.required:
                    errors.append(f"Field '{field.name}' is required")
                continue

            check = TYPE_CHECKS.get(field.data_type)
            if check is None:
                logger.warning(f"Unknown data type '{field.data_type}' for field '{field.name}'")
                continue
            if not check(obj[field.name]):
                errors.append(
                    f"Field '{field.name}' must be of type {field.data_type}, "
                    f"got {type(obj[field.name]).__name__}"
                )
        return errors
