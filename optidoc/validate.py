"""
Document validation for optidoc.

This module provides validation utilities:
- Whole-document JSON Schema validation (jsonschema, Draft 7)
- Helpful error messages that name the offending property path
- Field-name suggestions for unknown fields

Invariants:
    - Validation errors are deterministic (sorted by path, then message)
    - Validation never mutates the document it checks
    - Every violated constraint is reported, not just the first
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import TYPE_CHECKING, Any, Dict, List, Mapping

from jsonschema import Draft7Validator

from .errors import ValidationError

if TYPE_CHECKING:
    from .schema import Schema


def compile_validator(json_schema: Mapping[str, Any]) -> Draft7Validator:
    """Compile a whole-document JSON Schema.

    Raises:
        jsonschema.exceptions.SchemaError: If a field fragment is not valid JSON Schema
    """
    Draft7Validator.check_schema(json_schema)
    return Draft7Validator(json_schema)


def _format_error(error: Any) -> str:
    location = "/" + "/".join(str(part) for part in error.absolute_path)
    return f"{location}: {error.message}"


def collect_errors(validator: Draft7Validator, document: Mapping[str, Any]) -> List[str]:
    """Return every violation of ``document``, formatted as ``/path: message``."""
    errors = sorted(
        validator.iter_errors(document),
        key=lambda e: ([str(p) for p in e.absolute_path], e.message),
    )
    return [_format_error(e) for e in errors]


def validate_document(
    schema: Schema,
    document: Dict[str, Any],
) -> tuple[bool, List[str]]:
    """Validate a serialized document against a schema.

    Args:
        schema: Collection schema
        document: Document in its stored (serialized) representation

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = collect_errors(schema.validator, document)
    return len(errors) == 0, errors


def validate_or_raise(
    schema: Schema,
    document: Dict[str, Any],
) -> None:
    """Validate a document and raise if invalid.

    Raises:
        ValidationError: Listing every violated constraint
    """
    is_valid, errors = validate_document(schema, document)
    if not is_valid:
        raise ValidationError(
            f"Validation failed for {schema.container_id}: {'; '.join(errors)}",
            errors=errors,
        )


def suggest_fields(
    partial: str,
    schema: Schema,
    limit: int = 3,
) -> List[str]:
    """Suggest field names based on partial input.

    Args:
        partial: Partial or misspelled field name
        schema: Schema to suggest from
        limit: Maximum suggestions

    Returns:
        List of suggested field names
    """
    known = schema.field_names()
    matches = get_close_matches(partial, known, n=limit)

    prefix_matches = [n for n in known if n.lower().startswith(partial.lower())]

    all_matches = list(dict.fromkeys(matches + prefix_matches))
    return all_matches[:limit]
