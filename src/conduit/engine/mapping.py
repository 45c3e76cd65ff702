"""
Mapping engine that evaluates declarative mappings against JSON-like objects.

A rule maps an output key to an expression. String expressions may contain
``{{path}}`` tokens that are resolved against the input by dot-path
traversal (``{{address.city}}``, ``{{tags.0}}``) and may pipe the resolved
value through named transforms (``{{age | int}}``).

An expression that consists of a single token keeps the type of the value it
resolves to; any surrounding literal text turns the result into a string.
Paths that do not resolve produce an empty string rather than an error,
unless the mapping lists them as required.
"""

import copy
import json
import logging
import re
from functools import lru_cache
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

from ..exceptions import MappingError
from ..models.mapping import Mapping
from .transforms import FieldTransformer

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)

_MISSING = object()


class Token(NamedTuple):
    """A ``{{path | transform}}`` placeholder."""
    path: Tuple[str, ...]
    transforms: Tuple[str, ...]
    raw: str


class ParsedExpression(NamedTuple):
    """A string expression split into literal text and tokens."""
    parts: Tuple[Union[str, Token], ...]

    @property
    def single_token(self) -> Optional[Token]:
        if len(self.parts) == 1 and isinstance(self.parts[0], Token):
            return self.parts[0]
        return None


def _check_literal(literal: str, expression: str) -> None:
    if "{{" in literal or "}}" in literal:
        raise MappingError(f"Unbalanced braces in expression '{expression}'")


def _parse_token(body: str, expression: str) -> Token:
    pieces = [piece.strip() for piece in body.split("|")]
    path_text, transforms = pieces[0], tuple(pieces[1:])

    if not path_text:
        raise MappingError(f"Empty placeholder in expression '{expression}'")

    path = tuple(path_text.split("."))
    if any(not segment for segment in path):
        raise MappingError(f"Invalid path '{path_text}' in expression '{expression}'")

    for transform in transforms:
        if not FieldTransformer.is_known(transform):
            raise MappingError(f"Unknown transform '{transform}' in expression '{expression}'")

    return Token(path=path, transforms=transforms, raw=body)


@lru_cache(maxsize=1024)
def parse_expression(expression: str) -> ParsedExpression:
    """
    Split an expression into literal text and tokens.

    Raises:
        MappingError: If the expression is malformed
    """
    parts: List[Union[str, Token]] = []
    position = 0

    for match in TOKEN_PATTERN.finditer(expression):
        literal = expression[position:match.start()]
        _check_literal(literal, expression)
        if literal:
            parts.append(literal)
        parts.append(_parse_token(match.group(1), expression))
        position = match.end()

    tail = expression[position:]
    _check_literal(tail, expression)
    if tail:
        parts.append(tail)

    return ParsedExpression(parts=tuple(parts))


def resolve_path(data: Any, path: Tuple[str, ...]) -> Any:
    """Walk ``path`` through nested dicts and lists; returns _MISSING if absent."""
    current = data
    for segment in path:
        if isinstance(current, dict):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, list) and segment.lstrip("-").isdigit():
            try:
                current = current[int(segment)]
            except IndexError:
                return _MISSING
        else:
            return _MISSING
    return current


def run_transform(value: Any, transform: str) -> Any:
    """Apply a named transform; a failure the transform does not absorb is a MappingError."""
    try:
        return FieldTransformer.apply_transform(value, transform)
    except Exception as e:
        raise MappingError(f"Transform '{transform}' failed: {e}") from e


def stringify(value: Any) -> str:
    """Render a resolved value for interpolation into surrounding text."""
    if value is None or value is _MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


class MappingEngine:
    """
    Evaluates mappings. Evaluation is a pure function of (mapping, input).
    """

    def map(self, mapping: Union[Mapping, Dict[str, Any]], input_object: Any) -> Dict[str, Any]:
        """
        Apply a mapping to an input object.

        Args:
            mapping: Mapping definition, or a bare dict of outputKey -> expression rules
            input_object: JSON-like object to read values from

        Returns:
            A new object holding the declared output keys

        Raises:
            MappingError: If the mapping is malformed, the input is not an
                object, or a required input path is absent
        """
        mapping = self._coerce(mapping)

        if not isinstance(input_object, dict):
            raise MappingError(f"Mapping input must be an object, got {type(input_object).__name__}")

        for required_path in mapping.required:
            if resolve_path(input_object, tuple(required_path.split("."))) is _MISSING:
                raise MappingError(f"Required field '{required_path}' not found in input")

        output: Dict[str, Any] = copy.deepcopy(input_object) if mapping.pass_through else {}

        for output_key, expression in mapping.mapping.items():
            output[output_key] = self._evaluate(expression, input_object)

        for output_key in mapping.unset:
            output.pop(output_key, None)

        for output_key, transform in mapping.cast.items():
            if not FieldTransformer.is_known(transform):
                raise MappingError(f"Unknown cast '{transform}' for key '{output_key}'")
            if output_key in output:
                output[output_key] = run_transform(output[output_key], transform)

        return output

    def validate(self, mapping: Union[Mapping, Dict[str, Any]]) -> None:
        """
        Parse every expression of a mapping without evaluating it.

        Raises:
            MappingError: On the first malformed expression or unknown cast
        """
        mapping = self._coerce(mapping)
        for expression in mapping.mapping.values():
            self._parse_all(expression)
        for output_key, transform in mapping.cast.items():
            if not FieldTransformer.is_known(transform):
                raise MappingError(f"Unknown cast '{transform}' for key '{output_key}'")

    @staticmethod
    def _coerce(mapping: Union[Mapping, Dict[str, Any]]) -> Mapping:
        if isinstance(mapping, Mapping):
            return mapping
        if isinstance(mapping, dict):
            if not all(isinstance(key, str) for key in mapping):
                raise MappingError("Mapping keys must be strings")
            return Mapping(mapping=mapping)
        raise MappingError(f"Mapping must be an object, got {type(mapping).__name__}")

    def _parse_all(self, expression: Any) -> None:
        if isinstance(expression, str):
            parse_expression(expression)
        elif isinstance(expression, dict):
            for nested in expression.values():
                self._parse_all(nested)
        elif isinstance(expression, list):
            for nested in expression:
                self._parse_all(nested)

    def _evaluate(self, expression: Any, input_object: Dict[str, Any]) -> Any:
        if isinstance(expression, str):
            return self._evaluate_string(expression, input_object)
        if isinstance(expression, dict):
            return {key: self._evaluate(nested, input_object) for key, nested in expression.items()}
        if isinstance(expression, list):
            return [self._evaluate(nested, input_object) for nested in expression]
        # Literal
        return copy.deepcopy(expression)

    def _evaluate_string(self, expression: str, input_object: Dict[str, Any]) -> Any:
        parsed = parse_expression(expression)

        token = parsed.single_token
        if token is not None:
            value = self._resolve(token, input_object)
            return "" if value is _MISSING else value

        rendered = []
        for part in parsed.parts:
            if isinstance(part, Token):
                rendered.append(stringify(self._resolve(part, input_object)))
            else:
                rendered.append(part)
        return "".join(rendered)

    @staticmethod
    def _resolve(token: Token, input_object: Dict[str, Any]) -> Any:
        value = resolve_path(input_object, token.path)
        if value is _MISSING:
            logger.debug(f"Path '{'.'.join(token.path)}' not found in input")
            return _MISSING
        value = copy.deepcopy(value)
        for transform in token.transforms:
            value = run_transform(value, transform)
        return value
