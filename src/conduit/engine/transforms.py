"""
Named value transforms usable in mapping expressions and casts.
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

SIMPLE_TRANSFORMS = {
    "round", "round_to_cents", "uppercase", "lowercase", "trim",
    "string", "int", "float", "bool", "json",
}

ARITHMETIC_PREFIXES = ("multiply_by_", "divide_by_", "add_", "subtract_")

TRUTHY_STRINGS = {"true", "1", "yes", "y", "on"}


class FieldTransformer:
    """
    Applies named transforms to values produced by a mapping.
    """

    @staticmethod
    def is_known(transform: str) -> bool:
        """Return True if ``transform`` names a supported transform."""
        if transform in SIMPLE_TRANSFORMS:
            return True
        for prefix in ARITHMETIC_PREFIXES:
            if transform.startswith(prefix):
                try:
                    float(transform[len(prefix):])
                except ValueError:
                    return False
                return True
        return False

    @staticmethod
    def apply_transform(value: Any, transform: Optional[str]) -> Any:
        """
        Apply a transformation to a value.

        Values that cannot be converted are returned unchanged and the
        failure is logged.

        Args:
            value: The value to transform
            transform: The transformation to apply

        Returns:
            Transformed value
        """
        if not transform or value is None:
            return value

        try:
            if transform == "round":
                return round(float(value))
            elif transform == "round_to_cents":
                return round(float(value), 2)
            elif transform == "uppercase":
                return str(value).upper()
            elif transform == "lowercase":
                return str(value).lower()
            elif transform == "trim":
                return str(value).strip()
            elif transform == "string":
                return str(value)
            elif transform == "int":
                return int(float(value))
            elif transform == "float":
                return float(value)
            elif transform == "bool":
                if isinstance(value, str):
                    return value.strip().lower() in TRUTHY_STRINGS
                return bool(value)
            elif transform == "json":
                if isinstance(value, str):
                    return json.loads(value)
                return json.dumps(value, sort_keys=True, separators=(",", ":"))
            elif transform.startswith("multiply_by_"):
                multiplier = float(transform.replace("multiply_by_", ""))
                return float(value) * multiplier
            elif transform.startswith("divide_by_"):
                divisor = float(transform.replace("divide_by_", ""))
                return float(value) / divisor
            elif transform.startswith("add_"):
                addend = float(transform.replace("add_", ""))
                return float(value) + addend
            elif transform.startswith("subtract_"):
                subtrahend = float(transform.replace("subtract_", ""))
                return float(value) - subtrahend
            else:
                logger.warning(f"Unknown transform: {transform}")
                return value

        except (ValueError, TypeError, ZeroDivisionError, OverflowError) as e:
            logger.error(f"Transform '{transform}' failed for value '{value}': {e}")
            return value
