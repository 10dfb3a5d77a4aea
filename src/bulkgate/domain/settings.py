"""Import configuration.

The pipeline computes nothing from these tables; they are configuration
inputs (header synonyms, comparable fields, protected fields and limits).
"""

import json
import os
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import Optional

from bulkgate.domain import fields
from bulkgate.domain.errors import ValidationError
from bulkgate.domain.fields import EntityType


class DuplicatePolicy(StrEnum):
    """What happens to a later row repeating a natural key already seen in the file."""

    FIRST_WINS = "first_wins"
    MERGE_MISSING = "merge_missing"


@dataclass(frozen=True)
class ImportSettings:
    synonyms: dict[str, list[str]] = field(default_factory=lambda: dict(fields.DEFAULT_SYNONYMS))
    field_kinds: dict[str, fields.FieldKind] = field(default_factory=lambda: dict(fields.FIELD_KINDS))
    required_columns: tuple[str, ...] = fields.REQUIRED_COLUMNS
    organization_required_fields: tuple[str, ...] = fields.ORGANIZATION_REQUIRED_FIELDS
    item_required_fields: tuple[str, ...] = fields.ITEM_REQUIRED_FIELDS
    organization_comparable_fields: tuple[str, ...] = fields.ORGANIZATION_COMPARABLE_FIELDS
    item_comparable_fields: tuple[str, ...] = fields.ITEM_COMPARABLE_FIELDS
    protected_fields: tuple[str, ...] = fields.ITEM_PROTECTED_FIELDS
    max_file_bytes: int = 10 * 1024 * 1024
    max_rows: int = 10_000
    insert_chunk_size: int = 100
    update_chunk_size: int = 50
    lookup_chunk_size: int = 500
    max_concurrent_chunks: int = 1
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.FIRST_WINS
    lock_timeout: float = 5.0
    actor: str = "bulkgate"

    def comparable_fields(self, entity_type: EntityType) -> tuple[str, ...]:
        if entity_type == EntityType.ORGANIZATION:
            return self.organization_comparable_fields
        return self.item_comparable_fields

    def required_fields(self, entity_type: EntityType) -> tuple[str, ...]:
        if entity_type == EntityType.ORGANIZATION:
            return self.organization_required_fields
        return self.item_required_fields

    def fillable_fields(self, entity_type: EntityType) -> tuple[str, ...]:
        """Fields a fill-only update may populate: every canonical non-key field."""
        key = fields.entity_key_field(entity_type)
        excluded = {key, fields.ITEM_REFERENCE, *self.protected_fields}
        return tuple(f for f in fields.entity_fields(entity_type) if f not in excluded)

    def with_synonyms(self, synonyms: dict[str, list[str]]) -> "ImportSettings":
        return replace(self, synonyms=synonyms)

    @classmethod
    def from_env(cls, base: Optional["ImportSettings"] = None) -> "ImportSettings":
        """Override numeric limits from BULKGATE_* environment variables.

        Recognised variables: BULKGATE_MAX_FILE_BYTES, BULKGATE_MAX_ROWS,
        BULKGATE_INSERT_CHUNK_SIZE, BULKGATE_UPDATE_CHUNK_SIZE,
        BULKGATE_LOOKUP_CHUNK_SIZE, BULKGATE_MAX_CONCURRENT_CHUNKS.

        Raises:
            ValidationError: If a variable is set but is not a positive integer
        """
        settings = base or cls()
        overrides = {}
        for name in (
            "max_file_bytes",
            "max_rows",
            "insert_chunk_size",
            "update_chunk_size",
            "lookup_chunk_size",
            "max_concurrent_chunks",
        ):
            env_name = f"BULKGATE_{name.upper()}"
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                value = int(raw)
            except ValueError:
                raise ValidationError(f"{env_name} must be an integer, got '{raw}'")
            if value < 1:
                raise ValidationError(f"{env_name} must be positive, got {value}")
            overrides[name] = value
        if "BULKGATE_ACTOR" in os.environ:
            overrides["actor"] = os.environ["BULKGATE_ACTOR"]
        return replace(settings, **overrides)


def load_synonyms(path: str | Path) -> dict[str, list[str]]:
    """Load a header synonym table from a JSON file.

    The file must hold an object mapping canonical field names to lists of
    header variants. Unknown canonical fields are rejected.

    Raises:
        ValidationError: If the file is not a valid synonym table
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Could not read synonym table '{path}': {e}")

    if not isinstance(data, dict):
        raise ValidationError("Synonym table must be a JSON object")

    known = set(fields.ORGANIZATION_FIELDS) | set(fields.ITEM_FIELDS)
    synonyms: dict[str, list[str]] = {}
    for canonical, variants in data.items():
        if canonical not in known:
            raise ValidationError(f"Synonym table names unknown field '{canonical}'")
        if not isinstance(variants, list) or not all(isinstance(v, str) for v in variants):
            raise ValidationError(f"Synonyms for '{canonical}' must be a list of strings")
        synonyms[canonical] = variants
    return synonyms
