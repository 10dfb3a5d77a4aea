"""Reconciliation of incoming entities against the persistent store."""

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Iterator, Optional

from bulkgate.domain import errors
from bulkgate.domain.entities import (
    CanonicalEntity,
    ChangeDetail,
    FieldChange,
    IssueCategory,
    IssueSeverity,
    Item,
    MappingResult,
    Organization,
    ReconciliationResult,
    StoredRecord,
    UpdateMode,
    ValidationIssue,
)
from bulkgate.domain.fields import ITEM_REFERENCE, EntityType, is_absent, is_empty
from bulkgate.domain.settings import ImportSettings

if TYPE_CHECKING:
    from bulkgate.database.base import Database

log = logging.getLogger(__name__)


def chunked(values: list[Any], size: int) -> Iterator[list[Any]]:
    """Yield consecutive slices of at most ``size`` values."""
    for start in range(0, len(values), size):
        yield values[start : start + size]


def comparable_value(value: Any) -> Any:
    """Reduce a value to a form that compares equal across storage types.

    Dates compare by calendar day, numbers by their decimal text and strings
    without surrounding whitespace.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


def diff_fields(existing: StoredRecord, incoming: CanonicalEntity, field_names: tuple[str, ...]) -> list[FieldChange]:
    """Return the comparable fields whose incoming value differs from the stored one.

    An absent incoming value never produces a change.
    """
    changes = []
    for name in field_names:
        new = incoming.get(name)
        if is_absent(new):
            continue
        old = getattr(existing, name, None)
        if comparable_value(old) != comparable_value(new):
            changes.append(FieldChange(field=name, old=old, new=new))
    return changes


def fillable_changes(
    existing: StoredRecord, incoming: CanonicalEntity, field_names: tuple[str, ...]
) -> list[FieldChange]:
    """Return the fields empty in the store that the incoming entity can fill."""
    changes = []
    for name in field_names:
        new = incoming.get(name)
        if is_absent(new) or is_empty(new):
            continue
        old = getattr(existing, name, None)
        if is_empty(old):
            changes.append(FieldChange(field=name, old=old, new=new))
    return changes


class ReconciliationEngine:
    """Classify incoming entities as new, changed or unchanged."""

    def __init__(self, db: "Database", settings: Optional[ImportSettings] = None):
        """Initialize reconciliation engine.

        Args:
            db: Database instance
            settings: Import settings (defaults used when omitted)
        """
        self.db = db
        self.settings = settings or ImportSettings()

    def load_organizations(self, tax_ids: list[int]) -> dict[int, Organization]:
        """Fetch existing organizations with batched keys-in-list queries."""
        found: dict[int, Organization] = {}
        for chunk in chunked(sorted(set(tax_ids)), self.settings.lookup_chunk_size):
            for organization in self.db.get_organizations_by_tax_ids(chunk):
                found[organization.tax_id] = organization
        return found

    def load_items(self, item_codes: list[str]) -> dict[str, Item]:
        """Fetch existing items with batched keys-in-list queries."""
        found: dict[str, Item] = {}
        for chunk in chunked(sorted(set(item_codes)), self.settings.lookup_chunk_size):
            for item in self.db.get_items_by_codes(chunk):
                found[item.item_code] = item
        return found

    def reconcile(self, mapping: MappingResult, mode: UpdateMode = UpdateMode.MERGE) -> ReconciliationResult:
        """Classify every extracted entity against the store.

        Args:
            mapping: Output of the entity mapper
            mode: MERGE diffs comparable fields; FILL_ONLY looks for empty
                stored fields the file can populate

        Returns:
            ReconciliationResult with the four classified sets, unchanged keys
            and the issues raised by classification
        """
        references = [
            entity.get(ITEM_REFERENCE)
            for entity in mapping.items.values()
            if entity.get(ITEM_REFERENCE) is not None
        ]
        existing_organizations = self.load_organizations(list(mapping.organizations) + references)
        existing_items = self.load_items(list(mapping.items))

        issues: list[ValidationIssue] = []
        new_organizations, changed_organizations, unchanged_organizations = self._classify(
            EntityType.ORGANIZATION,
            list(mapping.organizations.values()),
            existing_organizations,
            mode,
            issues,
        )

        resolvable_items = []
        for entity in mapping.items.values():
            existing = existing_items.get(entity.key)
            reference = entity.get(ITEM_REFERENCE)
            if reference is None and existing is not None:
                reference = existing.tax_id
            if reference is None or (
                reference not in existing_organizations and reference not in mapping.organizations
            ):
                issues.append(
                    ValidationIssue(
                        category=IssueCategory.REFERENCE,
                        severity=IssueSeverity.ERROR,
                        code="REFERENCE_ERROR",
                        message=errors.dangling_reference(entity.key, reference),
                        entity_type=EntityType.ITEM,
                        key=entity.key,
                        field=ITEM_REFERENCE,
                        row_number=entity.row_number,
                    )
                )
                continue
            resolvable_items.append(entity)

        new_items, changed_items, unchanged_items = self._classify(
            EntityType.ITEM, resolvable_items, existing_items, mode, issues
        )

        log.info(
            "Reconciled organizations: %d new, %d changed, %d unchanged; "
            "items: %d new, %d changed, %d unchanged",
            len(new_organizations),
            len(changed_organizations),
            len(unchanged_organizations),
            len(new_items),
            len(changed_items),
            len(unchanged_items),
        )
        return ReconciliationResult(
            new_organizations=new_organizations,
            changed_organizations=changed_organizations,
            new_items=new_items,
            changed_items=changed_items,
            unchanged_organizations=unchanged_organizations,
            unchanged_items=unchanged_items,
            issues=issues,
            mode=mode,
        )

    def _classify(
        self,
        entity_type: EntityType,
        entities: list[CanonicalEntity],
        existing: dict[Any, StoredRecord],
        mode: UpdateMode,
        issues: list[ValidationIssue],
    ) -> tuple[list[CanonicalEntity], list[ChangeDetail], list[Any]]:
        new: list[CanonicalEntity] = []
        changed: list[ChangeDetail] = []
        unchanged: list[Any] = []

        for entity in entities:
            record = existing.get(entity.key)
            if record is None:
                new.append(entity)
                continue

            if mode == UpdateMode.FILL_ONLY:
                changes = fillable_changes(record, entity, self.settings.fillable_fields(entity_type))
            else:
                changes = diff_fields(record, entity, self.settings.comparable_fields(entity_type))

            if not changes:
                unchanged.append(entity.key)
                continue

            detail = ChangeDetail(existing=record, incoming=entity, field_changes=tuple(changes))
            changed.append(detail)
            issues.append(
                ValidationIssue(
                    category=IssueCategory.CHANGE,
                    severity=IssueSeverity.INFO,
                    code="FIELD_CHANGED",
                    message=errors.field_changed(entity_type.value, entity.key, detail.changes),
                    entity_type=entity_type,
                    key=entity.key,
                    row_number=entity.row_number,
                )
            )

        return new, changed, unchanged
