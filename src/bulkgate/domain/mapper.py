"""Split normalized rows into keyed organization and item entity sets."""

import logging
from typing import Any, Optional

from bulkgate.domain import errors
from bulkgate.domain.entities import (
    CanonicalEntity,
    IssueCategory,
    IssueSeverity,
    MappingResult,
    NormalizationResult,
    SourceRecord,
    ValidationIssue,
)
from bulkgate.domain.fields import (
    ITEM_FIELDS,
    ITEM_KEY,
    ITEM_REFERENCE,
    NOT_FOUND,
    ORGANIZATION_FIELDS,
    ORGANIZATION_KEY,
    TAX_ID_LENGTH,
    EntityType,
    is_absent,
)
from bulkgate.domain.settings import DuplicatePolicy, ImportSettings
from bulkgate.utils.number_parser import strip_key_separators

log = logging.getLogger(__name__)


def parse_tax_id(value: Any) -> Optional[int]:
    """Validate an organization key.

    Returns the tax id as an int, or None when the value is not an
    11-digit number once separators are removed.
    """
    if value is None or isinstance(value, bool):
        return None
    text = strip_key_separators(value)
    if len(text) != TAX_ID_LENGTH or not text.isdigit():
        return None
    return int(text)


def parse_item_code(value: Any) -> Optional[str]:
    """Return the trimmed item code, or None when it is blank."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


class _Collected:
    """Fields gathered for one key while rows are scanned."""

    def __init__(self, row_number: int, fields: dict[str, Any]):
        self.row_number = row_number
        self.fields = fields


class EntityMapper:
    """Derive one organization and one item from each normalized row."""

    def __init__(self, settings: Optional[ImportSettings] = None):
        """Initialize entity mapper.

        Args:
            settings: Import settings (defaults used when omitted)
        """
        self.settings = settings or ImportSettings()

    def map(self, normalized: NormalizationResult) -> MappingResult:
        """Extract deduplicated organization and item maps.

        A bad organization key fails only that row's organization; its item
        is still extracted, without a reference. Missing required fields are
        filled with the NOT_FOUND sentinel and reported as warnings.

        Args:
            normalized: Output of the normalizer

        Returns:
            MappingResult with entity maps in first-seen order, the issues found
            and the unmapped headers carried over from normalization
        """
        issues: list[ValidationIssue] = []
        organizations: dict[int, _Collected] = {}
        items: dict[str, _Collected] = {}
        has_item_column = ITEM_KEY in normalized.header_mapping.values()

        for record in normalized.records:
            tax_id = self._extract_organization(record, organizations, issues)
            if has_item_column:
                self._extract_item(record, tax_id, items, issues)

        result = MappingResult(
            organizations={
                key: self._finish(EntityType.ORGANIZATION, key, collected, issues)
                for key, collected in organizations.items()
            },
            items={
                key: self._finish(EntityType.ITEM, key, collected, issues)
                for key, collected in items.items()
            },
            issues=issues,
            unmapped_headers=list(normalized.unmapped_headers),
        )
        log.info(
            "Mapped %d organizations and %d items (%d issues)",
            len(result.organizations),
            len(result.items),
            len(issues),
        )
        return result

    def _extract_organization(
        self,
        record: SourceRecord,
        organizations: dict[int, _Collected],
        issues: list[ValidationIssue],
    ) -> Optional[int]:
        raw_key = record.values.get(ORGANIZATION_KEY)
        tax_id = parse_tax_id(raw_key)
        if tax_id is None:
            issues.append(
                ValidationIssue(
                    category=IssueCategory.ROW,
                    severity=IssueSeverity.ERROR,
                    code="INVALID_KEY",
                    message=errors.invalid_tax_id(record.row_number, raw_key),
                    entity_type=EntityType.ORGANIZATION,
                    key=raw_key,
                    field=ORGANIZATION_KEY,
                    row_number=record.row_number,
                )
            )
            return None

        fields = {name: record.values[name] for name in ORGANIZATION_FIELDS if name in record.values}
        fields[ORGANIZATION_KEY] = tax_id
        if "legal_name" not in fields and "holder" in record.values:
            fields["legal_name"] = record.values["holder"]

        self._collect(EntityType.ORGANIZATION, tax_id, record.row_number, fields, organizations, issues)
        return tax_id

    def _extract_item(
        self,
        record: SourceRecord,
        tax_id: Optional[int],
        items: dict[str, _Collected],
        issues: list[ValidationIssue],
    ) -> None:
        raw_key = record.values.get(ITEM_KEY)
        item_code = parse_item_code(raw_key)
        if item_code is None:
            issues.append(
                ValidationIssue(
                    category=IssueCategory.ROW,
                    severity=IssueSeverity.ERROR,
                    code="INVALID_KEY",
                    message=f"Row {record.row_number}: missing item code",
                    entity_type=EntityType.ITEM,
                    field=ITEM_KEY,
                    row_number=record.row_number,
                )
            )
            return

        fields = {
            name: record.values[name]
            for name in ITEM_FIELDS
            if name in record.values and name != ITEM_REFERENCE
        }
        fields[ITEM_KEY] = item_code
        if tax_id is not None:
            fields[ITEM_REFERENCE] = tax_id

        self._collect(EntityType.ITEM, item_code, record.row_number, fields, items, issues)

    def _collect(
        self,
        entity_type: EntityType,
        key: Any,
        row_number: int,
        fields: dict[str, Any],
        collected: dict[Any, _Collected],
        issues: list[ValidationIssue],
    ) -> None:
        first = collected.get(key)
        if first is None:
            collected[key] = _Collected(row_number, fields)
            return

        issues.append(
            ValidationIssue(
                category=IssueCategory.ROW,
                severity=IssueSeverity.ERROR,
                code="DUPLICATE_KEY",
                message=errors.duplicate_key(row_number, entity_type.value, key, first.row_number),
                entity_type=entity_type,
                key=key,
                row_number=row_number,
            )
        )
        if self.settings.duplicate_policy == DuplicatePolicy.MERGE_MISSING:
            for name, value in fields.items():
                if is_absent(first.fields.get(name)):
                    first.fields[name] = value
        log.debug("Dropped duplicate %s %s on row %d", entity_type, key, row_number)

    def _finish(
        self,
        entity_type: EntityType,
        key: Any,
        collected: _Collected,
        issues: list[ValidationIssue],
    ) -> CanonicalEntity:
        fields = dict(collected.fields)
        for name in self.settings.required_fields(entity_type):
            if is_absent(fields.get(name)):
                fields[name] = NOT_FOUND
                issues.append(
                    ValidationIssue(
                        category=IssueCategory.ROW,
                        severity=IssueSeverity.WARNING,
                        code="MISSING_FIELD",
                        message=errors.missing_field(collected.row_number, entity_type.value, key, name),
                        entity_type=entity_type,
                        key=key,
                        field=name,
                        row_number=collected.row_number,
                    )
                )
        return CanonicalEntity(
            entity_type=entity_type,
            key=key,
            fields=fields,
            row_number=collected.row_number,
        )
