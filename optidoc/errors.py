"""
Error types for optidoc.

This module defines all exception types raised by the mapping layer:
- OptidocError: Base exception
- ValidationError: Whole-document JSON Schema validation failures
- NotFoundError: Missing document or container
- ConflictError: Duplicate id or failed If-Match precondition
- PreconditionMissingError: Guarded write attempted without an etag
- RetriesExhaustedError: Atomic retry budget consumed
- CodecError: A field transform could not decode stored data
- SchemaPathError: Index/unique/partition path inconsistent with the schema
- UnknownFieldError: Access to a field the schema does not declare
- EntityDeletedError: Operation on an entity that was deleted
- StoreNotConfiguredError: No document store available for a collection

Invariants:
    - All errors inherit from OptidocError
    - Errors carry a stable code plus details for programmatic handling
    - Validation and usage errors are raised before any store call
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class OptidocError(Exception):
    """Base exception for all optidoc errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "OPTIDOC_ERROR"
        self.details = details or {}


class ValidationError(OptidocError):
    """Document validation failed.

    Raised when:
    - Required field is missing
    - Field value violates its JSON Schema fragment

    Never sent to the store, never retried.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"errors": errors or []},
        )
        self.errors = errors or []


class NotFoundError(OptidocError):
    """Document or container not found."""

    def __init__(
        self,
        message: str,
        container_id: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"container_id": container_id, "item_id": item_id},
        )
        self.container_id = container_id
        self.item_id = item_id

    @property
    def status_code(self) -> int:
        return 404


class ConflictReason(Enum):
    """Why the store refused a write."""

    ALREADY_EXISTS = "already_exists"
    PRECONDITION_FAILED = "precondition_failed"


class ConflictError(OptidocError):
    """The store refused a write because of a concurrent writer.

    Raised when:
    - An insert collided with an existing id (ALREADY_EXISTS)
    - A conditional write's If-Match etag is stale (PRECONDITION_FAILED)
    """

    def __init__(
        self,
        message: str,
        reason: ConflictReason,
        item_id: Optional[str] = None,
        code: str = "CONFLICT",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"reason": reason.value, "item_id": item_id},
        )
        self.reason = reason
        self.item_id = item_id

    @property
    def status_code(self) -> int:
        """HTTP status the store uses for this conflict."""
        if self.reason is ConflictReason.ALREADY_EXISTS:
            return 409
        return 412


class PreconditionMissingError(OptidocError):
    """Client-side usage error: a guarded operation needs an etag.

    Raised when deleting an entity that was never read from or written to
    the store, without force=True.
    """

    def __init__(self, message: str, item_id: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="PRECONDITION_MISSING",
            details={"item_id": item_id},
        )
        self.item_id = item_id


class RetriesExhaustedError(ConflictError):
    """The atomic retry loop ran out of attempts.

    Attributes:
        last_error: The final ConflictError reported by the store
        attempts: Number of write attempts made
    """

    def __init__(self, last_error: ConflictError, attempts: int) -> None:
        super().__init__(
            f"Gave up after {attempts} conflicting write attempt(s) "
            f"on '{last_error.item_id}': {last_error.message}",
            reason=last_error.reason,
            item_id=last_error.item_id,
            code="RETRIES_EXHAUSTED",
        )
        self.details["attempts"] = attempts
        self.last_error = last_error
        self.attempts = attempts


class CodecError(OptidocError):
    """Stored data could not be decoded by a field transform.

    This signals corrupt or foreign data in the store; the transform
    itself never reports it.
    """

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(
            f"Could not decode field '{field_name}': {message}",
            code="CODEC_ERROR",
            details={"field_name": field_name},
        )
        self.field_name = field_name


class SchemaPathError(OptidocError):
    """A property path does not match the declared field shapes."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Invalid path '{path}': {reason}",
            code="SCHEMA_PATH_ERROR",
            details={"path": path, "reason": reason},
        )
        self.path = path
        self.reason = reason


class UnknownFieldError(OptidocError):
    """Unknown field accessed on an entity.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        container_id: The collection being accessed
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        container_id: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' in collection '{container_id}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            details={
                "field_name": field_name,
                "container_id": container_id,
                "suggestions": suggestions,
            },
        )
        self.field_name = field_name
        self.container_id = container_id
        self.suggestions = suggestions


class EntityDeletedError(OptidocError):
    """The entity was deleted; it accepts no further operations."""

    def __init__(self, item_id: Optional[str] = None) -> None:
        super().__init__(
            f"Entity '{item_id}' has been deleted",
            code="ENTITY_DELETED",
            details={"item_id": item_id},
        )
        self.item_id = item_id


class StoreNotConfiguredError(OptidocError):
    """No document store was passed or bound for a collection."""

    def __init__(self, container_id: str) -> None:
        super().__init__(
            f"No document store is available for '{container_id}'. "
            "Pass store=... to the call, or bind one with connect_models().",
            code="STORE_NOT_CONFIGURED",
            details={"container_id": container_id},
        )
        self.container_id = container_id
