"""Shared domain error messages and error types.

Every error carries a stable machine-readable ``code`` so callers can branch
on it instead of on message text. Row-level problems use the same codes when
they are reported as ``ValidationIssue`` values instead of being raised.
"""

from typing import Any, Optional


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """

    code = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""

    code = "VALIDATION_ERROR"


class FormatError(ValidationError):
    """The input file has the wrong type, size or no data."""

    code = "FORMAT_ERROR"


class FileTooLargeError(FormatError):
    """The input file exceeds the configured byte limit."""

    code = "FILE_TOO_LARGE"


class TooManyRowsError(FormatError):
    """The input file exceeds the configured row limit."""

    code = "TOO_MANY_ROWS"


class EmptyFileError(FormatError):
    """The input file has no data rows."""

    code = "EMPTY_FILE"


class UnsupportedFileError(FormatError):
    """The input file type is not readable."""

    code = "UNSUPPORTED_FILE"


class InvalidEncodingError(FormatError):
    """The input file is not UTF-8 text."""

    code = "INVALID_ENCODING"


class SchemaError(ValidationError):
    """Required canonical columns are missing from the header row."""

    code = "MISSING_COLUMNS"


class NothingApprovedError(ValidationError):
    """No classified change was approved for commit."""

    code = "NOTHING_APPROVED"


class SnapshotError(DomainError):
    """The pre-processing backup could not be written."""

    code = "SNAPSHOT_ERROR"


class PersistenceError(DomainError):
    """A chunk write failed while applying a batch."""

    code = "PERSISTENCE_ERROR"


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""

    code = "NOT_FOUND"


class ConflictError(DomainError):
    """Domain conflict, such as a terminal batch or a locked key."""

    code = "CONFLICT"


def file_too_large(size: int, limit: int) -> str:
    """Return message for an oversized input file."""
    return f"File is {size} bytes, the maximum allowed is {limit} bytes"


def too_many_rows(count: int, limit: int) -> str:
    """Return message for an input file with too many rows."""
    return f"File has {count} data rows, the maximum allowed is {limit}"


def empty_file(filename: str) -> str:
    """Return message for an input file without data rows."""
    return f"File '{filename}' has no data rows"


def unsupported_file(filename: str, allowed: tuple[str, ...]) -> str:
    """Return message for an unreadable input file type."""
    return f"File '{filename}' is not supported. Use: {', '.join(allowed)}"


def invalid_encoding(filename: str) -> str:
    """Return message for an input file that is not UTF-8 text."""
    return f"File '{filename}' is not UTF-8 encoded. Re-export it as UTF-8 CSV"


def missing_columns(columns: list[str]) -> str:
    """Return message for required canonical columns absent from the header."""
    return f"File is missing required columns: {', '.join(columns)}"


def unmapped_column(header: str) -> str:
    """Return message for a header that resolves to no canonical field."""
    return f"Column '{header}' does not match any known field and was ignored"


def duplicate_column(header: str, field: str, first_header: str) -> str:
    """Return message for a second header resolving to an already claimed field."""
    return f"Column '{header}' also maps to '{field}', already taken by '{first_header}'; ignored"


def invalid_value(row_number: int, field: str, value: Any, reason: str) -> str:
    """Return message for a cell value that could not be coerced."""
    return f"Row {row_number}: invalid value {value!r} for '{field}': {reason}"


def invalid_tax_id(row_number: int, value: Any) -> str:
    """Return message for a missing or malformed organization key."""
    if value is None:
        return f"Row {row_number}: missing tax id"
    return f"Row {row_number}: invalid tax id {value!r}"


def duplicate_key(row_number: int, entity_type: str, key: Any, first_row: int) -> str:
    """Return message for a natural key repeated within one file."""
    return (
        f"Row {row_number}: duplicate {entity_type} key '{key}' "
        f"(first seen on row {first_row}); row dropped"
    )


def missing_field(row_number: int, entity_type: str, key: Any, field: str) -> str:
    """Return message for a required field substituted with the NOT_FOUND sentinel."""
    return f"Row {row_number}: {entity_type} '{key}' has no '{field}', stored as NOT_FOUND"


def dangling_reference(item_code: str, tax_id: Any) -> str:
    """Return message for an item whose organization cannot be resolved."""
    if tax_id is None:
        return f"Item '{item_code}' has no valid organization tax id; excluded"
    return f"Item '{item_code}' references unknown organization '{tax_id}'; excluded"


def unapproved_reference(item_code: str, tax_id: Any) -> str:
    """Return message for an approved item whose new organization was rejected."""
    return (
        f"Item '{item_code}' references new organization '{tax_id}' "
        "which was not approved; excluded"
    )


def field_changed(entity_type: str, key: Any, fields: list[str]) -> str:
    """Return message describing a changed entity."""
    return f"{entity_type.capitalize()} '{key}' has changes in: {', '.join(fields)}"


def batch_not_found(batch_id: str) -> str:
    """Return message for a missing batch."""
    return f"Batch {batch_id} not found"


def batch_terminal(batch_id: str, status: str) -> str:
    """Return message for a mutation attempted on a finished batch."""
    return f"Batch {batch_id} is already {status}"


def snapshot_not_found(snapshot_id: str) -> str:
    """Return message for a missing backup snapshot."""
    return f"Backup snapshot {snapshot_id} not found"


def keys_locked(keys: list[str]) -> str:
    """Return message when another batch holds a lock on some keys."""
    shown = ", ".join(keys[:5])
    more = f" and {len(keys) - 5} more" if len(keys) > 5 else ""
    return f"Keys are locked by another batch: {shown}{more}"


def unwritten_organization(tax_ids: list[Any]) -> str:
    """Return message for items excluded because their new organization failed to insert."""
    return f"Organizations {', '.join(str(tax_id) for tax_id in tax_ids)} were not written; their items were excluded"


def batch_exists(batch_id: str) -> str:
    """Return message for a batch id that was already committed."""
    return f"Batch {batch_id} already exists; a preview can only be committed once"
