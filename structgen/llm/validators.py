"""Schema validation for LLM outputs.

A Schema is either a pydantic model class or a JSON-Schema dict. Both are
validated the same way from the caller's point of view:

  result = validate(BookOutput, parsed)
  if not result.valid:
      print(result.summary())   # "$.title: Field required"

validate() never raises: a broken schema, an unsupported schema type, or
any surprise inside a validator comes back as valid=False with an issue
describing it.
"""

import copy
from typing import Any, Union

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for
from pydantic import BaseModel, ValidationError

from structgen.schemas.messages import ValidationIssue, ValidationResult
from structgen.utils.logging import log, get_logger

MODULE = "llm.validators"
logger = get_logger()

Schema = Union[type[BaseModel], dict]


def is_model_schema(schema: Any) -> bool:
    """True when schema is a pydantic model class."""
    return isinstance(schema, type) and issubclass(schema, BaseModel)


def to_json_schema(schema: Schema) -> dict:
    """JSON Schema for a Schema. Dicts are deep-copied so callers can't mutate ours."""
    if is_model_schema(schema):
        return schema.model_json_schema()
    if isinstance(schema, dict):
        return copy.deepcopy(schema)
    raise TypeError(f"Unsupported schema type: {type(schema).__name__}")


def schema_name(schema: Schema) -> str:
    if is_model_schema(schema):
        return schema.__name__
    if isinstance(schema, dict):
        return str(schema.get("title", "json_schema"))
    return type(schema).__name__


def validate(schema: Schema, value: Any) -> ValidationResult:
    """Validate an already-parsed value against a schema."""
    try:
        if is_model_schema(schema):
            return _validate_model(schema, value)
        if isinstance(schema, dict):
            return _validate_json_schema(schema, value)
        return ValidationResult(
            valid=False,
            errors=[ValidationIssue(
                path="<schema>",
                message=f"Unsupported schema type: {type(schema).__name__}",
            )],
        )
    except Exception as e:
        log.warning(logger, MODULE, "validator_error",
                    "Unexpected error while validating",
                    error=str(e), error_type=type(e).__name__,
                    schema=schema_name(schema))
        return ValidationResult(
            valid=False,
            errors=[ValidationIssue(path="$", message=f"Validator error: {e}")],
        )


def _validate_model(schema: type[BaseModel], value: Any) -> ValidationResult:
    try:
        instance = schema.model_validate(value)
    except ValidationError as e:
        issues = [
            ValidationIssue(path=format_path(err.get("loc", ())), message=err.get("msg", ""))
            for err in e.errors()
        ]
        log.debug(logger, MODULE, "validation_failed",
                  f"Value does not match {schema.__name__}",
                  issues=len(issues))
        return ValidationResult(valid=False, errors=issues)
    return ValidationResult(valid=True, value=instance)


def _validate_json_schema(schema: dict, value: Any) -> ValidationResult:
    validator_cls = validator_for(schema, default=Draft202012Validator)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as e:
        return ValidationResult(
            valid=False,
            errors=[ValidationIssue(path="<schema>", message=f"Invalid schema: {e.message}")],
        )

    validator = validator_cls(schema)
    errors = sorted(validator.iter_errors(value), key=lambda err: list(map(str, err.absolute_path)))
    if errors:
        issues = [
            ValidationIssue(path=format_path(err.absolute_path), message=err.message)
            for err in errors
        ]
        log.debug(logger, MODULE, "validation_failed",
                  f"Value does not match {schema_name(schema)}",
                  issues=len(issues))
        return ValidationResult(valid=False, errors=issues)
    return ValidationResult(valid=True, value=value)


def format_path(parts) -> str:
    """('genres', 0, 'name') → '$.genres[0].name'"""
    path = "$"
    for part in parts:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}"
    return path


# =============================================================================
# THINKING WRAPPER
# =============================================================================

def wrap_with_thinking(schema: Schema, thinking_schema: Schema) -> dict:
    """Build the {thinking, result} schema sent to the model.

    Nested $defs are hoisted to the top level so '#/$defs/...' references
    inside either part still resolve after wrapping.

    Raises:
        ValueError: if both parts define the same name differently
    """
    thinking_json = to_json_schema(thinking_schema)
    result_json = to_json_schema(schema)

    defs: dict = {}
    for part in (thinking_json, result_json):
        for name, definition in part.pop("$defs", {}).items():
            if name in defs and defs[name] != definition:
                raise ValueError(
                    f"Conflicting schema definition '{name}' in thinking and result schemas"
                )
            defs[name] = definition

    wrapped = {
        "type": "object",
        "properties": {
            "thinking": thinking_json,
            "result": result_json,
        },
        "required": ["thinking", "result"],
        "additionalProperties": False,
    }
    if defs:
        wrapped["$defs"] = defs
    return wrapped
