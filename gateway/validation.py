"""Argument validation against a tool's JSON parameter schema.

Only the subset of JSON schema that tool descriptors actually use is
checked: top-level property types, required fields, enums and defaults.
Types are matched strictly, with no coercion of strings to numbers or
booleans, since the arguments are forwarded unchanged.
Nested objects and array items are accepted as-is. The schema is compiled
into a pydantic model so pydantic does the checking.
"""
import json
import logging
from functools import lru_cache
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

logger = logging.getLogger(__name__)

JSON_TYPES: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": Union[int, float],
    "boolean": bool,
    "array": list,
    "object": dict,
    "null": type(None),
}


class ArgumentValidationError(ValueError):
    """Arguments do not satisfy the tool's parameter schema."""


def _annotation_for(prop: dict) -> Any:
    """Translate one property schema into a type annotation."""

    if "enum" in prop and prop["enum"]:
        return Literal[tuple(prop["enum"])]

    declared = prop.get("type")
    if isinstance(declared, list):
        members = tuple(JSON_TYPES.get(t, Any) for t in declared)
        return Union[members] if len(members) > 1 else members[0]
    if isinstance(declared, str):
        return JSON_TYPES.get(declared, Any)
    return Any


@lru_cache(maxsize=256)
def _compile(schema_json: str) -> type[BaseModel]:
    schema = json.loads(schema_json)
    properties: dict = schema.get("properties") or {}
    required = set(schema.get("required") or [])

    fields: dict[str, Any] = {}
    for position, (prop_name, prop) in enumerate(properties.items()):
        prop = prop if isinstance(prop, dict) else {}
        annotation = _annotation_for(prop)
        if prop_name in required:
            field = Field(..., alias=prop_name)
        else:
            annotation = Optional[annotation]
            field = Field(default=prop.get("default"), alias=prop_name)
        # positional field names avoid clashes with BaseModel attributes
        fields[f"field_{position}"] = (annotation, field)

    extra = "forbid" if schema.get("additionalProperties") is False else "allow"
    return create_model(
        "ToolArguments",
        # strict: "5" is not an integer and "true" is not a boolean
        __config__=ConfigDict(strict=True, extra=extra),
        **fields,
    )


def describe_errors(error: ValidationError) -> str:
    """Condense pydantic errors into one readable line."""

    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


def validate_arguments(schema: Optional[dict], arguments: Any) -> dict:
    """
    Check arguments against a tool's parameter schema.

    Args:
        schema: JSON schema object from the tool descriptor
        arguments: Arguments supplied by the caller

    Returns:
        The arguments with schema defaults filled in for missing optional
        properties. Provided values are returned unchanged.

    Raises:
        ArgumentValidationError: If the arguments violate the schema
    """
    if not isinstance(arguments, dict):
        raise ArgumentValidationError(
            f"arguments: expected an object, got {type(arguments).__name__}"
        )
    if not schema or not isinstance(schema, dict):
        return dict(arguments)

    try:
        model = _compile(json.dumps(schema, sort_keys=True, default=str))
    except Exception as e:
        # An unusable schema must not block the call
        logger.warning(f"Could not compile parameter schema, skipping validation: {e}")
        return dict(arguments)

    try:
        model.model_validate(arguments)
    except ValidationError as e:
        raise ArgumentValidationError(describe_errors(e)) from e

    defaults = {
        name: prop["default"]
        for name, prop in (schema.get("properties") or {}).items()
        if isinstance(prop, dict) and "default" in prop and name not in arguments
    }
    return {**defaults, **arguments}
