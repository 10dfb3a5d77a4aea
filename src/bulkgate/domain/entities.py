"""Domain model entities for bulkgate.

These are pure data classes representing business concepts, independent of
database schema. Stored records mirror persisted rows; canonical entities and
the result values describe one import as it flows through the pipeline.
"""

from dataclasses import dataclass, field, fields as dataclass_fields
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Optional

from bulkgate.domain.fields import EntityType


class IssueSeverity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(StrEnum):
    FORMAT = "format"
    SCHEMA = "schema"
    ROW = "row"
    REFERENCE = "reference"
    CHANGE = "change"


class BatchStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self != BatchStatus.PROCESSING


class AuditOperation(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    RESTORE = "restore"


class UpdateMode(StrEnum):
    """How approved updates are written.

    MERGE overwrites comparable fields but always keeps protected fields.
    FILL_ONLY only populates fields that are currently empty in the store.
    """

    MERGE = "merge"
    FILL_ONLY = "fill_only"


class ApprovalCategory(StrEnum):
    NEW_ORGANIZATIONS = "new_organizations"
    CHANGED_ORGANIZATIONS = "changed_organizations"
    NEW_ITEMS = "new_items"
    CHANGED_ITEMS = "changed_items"


class ProgressStage(StrEnum):
    PARSING = "parsing"
    MAPPING = "mapping"
    VALIDATING = "validating"
    BACKING_UP = "backing_up"
    APPLYING = "applying"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStage.COMPLETED, ProgressStage.ERROR)


@dataclass(frozen=True)
class ValidationIssue:
    """A problem or notice found while preparing an import."""

    category: IssueCategory
    severity: IssueSeverity
    code: str
    message: str
    entity_type: Optional[EntityType] = None
    key: Optional[Any] = None
    field: Optional[str] = None
    row_number: Optional[int] = None


@dataclass(frozen=True)
class TabularFile:
    """Header row plus data rows of one uploaded file."""

    filename: str
    size: int
    headers: list[str]
    rows: list[list[Any]]


@dataclass(frozen=True)
class SourceRecord:
    """One input row reduced to the canonical fields that had a value."""

    row_number: int
    values: dict[str, Any]
    header_mapping: dict[str, str]


@dataclass(frozen=True)
class NormalizationResult:
    records: list[SourceRecord]
    header_mapping: dict[str, str]
    unmapped_headers: list[str]
    issues: list[ValidationIssue]


@dataclass(frozen=True)
class CanonicalEntity:
    """An organization or item extracted from the file, keyed by natural key."""

    entity_type: EntityType
    key: Any
    fields: dict[str, Any]
    row_number: int

    def get(self, name: str) -> Any:
        return self.fields.get(name)


@dataclass(frozen=True)
class MappingResult:
    organizations: dict[Any, CanonicalEntity]
    items: dict[str, CanonicalEntity]
    issues: list[ValidationIssue]
    unmapped_headers: list[str]


@dataclass(frozen=True)
class Organization:
    """Persisted organization domain entity."""

    id: int
    tax_id: int
    legal_name: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contact: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> int:
        return self.tax_id


@dataclass(frozen=True)
class Item:
    """Persisted item domain entity."""

    id: int
    item_code: str
    tax_id: int
    holder: Optional[str] = None
    certification_type: Optional[str] = None
    status: Optional[str] = None
    manufacturer: Optional[str] = None
    plant: Optional[str] = None
    origin: Optional[str] = None
    product: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    technical_specs: Optional[str] = None
    standards: Optional[str] = None
    test_report_number: Optional[str] = None
    laboratory: Optional[str] = None
    foreign_body: Optional[str] = None
    foreign_certificate_number: Optional[str] = None
    foreign_certificate_issued_on: Optional[date] = None
    agreement: Optional[str] = None
    category_code: Optional[int] = None
    subcategory_code: Optional[int] = None
    subcategory_name: Optional[str] = None
    issued_on: Optional[date] = None
    expires_on: Optional[date] = None
    cancelled_on: Optional[date] = None
    cancellation_reason: Optional[str] = None
    days_to_expiry: Optional[int] = None
    certification_body: Optional[str] = None
    certification_scheme: Optional[str] = None
    public_id: Optional[str] = None
    qr_path: Optional[str] = None
    qr_link: Optional[str] = None
    qr_status: Optional[str] = None
    qr_generated_at: Optional[datetime] = None
    certificate_path: Optional[str] = None
    certificate_status: Optional[str] = None
    declaration_path: Optional[str] = None
    declaration_status: Optional[str] = None
    sent_to_client: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return self.item_code


StoredRecord = Organization | Item


def record_values(record: StoredRecord) -> dict[str, Any]:
    """Return a stored record's persisted fields as a plain dict."""
    return {f.name: getattr(record, f.name) for f in dataclass_fields(record)}


@dataclass(frozen=True)
class FieldChange:
    field: str
    old: Any
    new: Any


@dataclass(frozen=True)
class ChangeDetail:
    """An existing record, the incoming entity, and the fields that differ."""

    existing: StoredRecord
    incoming: CanonicalEntity
    field_changes: tuple[FieldChange, ...]

    @property
    def key(self) -> Any:
        return self.incoming.key

    @property
    def changes(self) -> list[str]:
        return [change.field for change in self.field_changes]


@dataclass(frozen=True)
class ReconciliationResult:
    new_organizations: list[CanonicalEntity]
    changed_organizations: list[ChangeDetail]
    new_items: list[CanonicalEntity]
    changed_items: list[ChangeDetail]
    unchanged_organizations: list[Any]
    unchanged_items: list[str]
    issues: list[ValidationIssue]
    mode: UpdateMode = UpdateMode.MERGE

    def keys(self, category: ApprovalCategory) -> list[Any]:
        """Return the natural keys classified under an approval category."""
        if category == ApprovalCategory.NEW_ORGANIZATIONS:
            return [entity.key for entity in self.new_organizations]
        if category == ApprovalCategory.CHANGED_ORGANIZATIONS:
            return [detail.key for detail in self.changed_organizations]
        if category == ApprovalCategory.NEW_ITEMS:
            return [entity.key for entity in self.new_items]
        return [detail.key for detail in self.changed_items]


@dataclass(frozen=True)
class ApprovalState:
    """Operator decisions per category, keyed by natural key.

    Keys missing from a category map count as not approved.
    """

    new_organizations: dict[Any, bool] = field(default_factory=dict)
    changed_organizations: dict[Any, bool] = field(default_factory=dict)
    new_items: dict[str, bool] = field(default_factory=dict)
    changed_items: dict[str, bool] = field(default_factory=dict)

    def decisions(self, category: ApprovalCategory) -> dict[Any, bool]:
        return getattr(self, category.value)

    def is_approved(self, category: ApprovalCategory, key: Any) -> bool:
        return self.decisions(category).get(key, False) is True


@dataclass(frozen=True)
class ApprovedChanges:
    new_organizations: list[CanonicalEntity]
    changed_organizations: list[ChangeDetail]
    new_items: list[CanonicalEntity]
    changed_items: list[ChangeDetail]
    issues: list[ValidationIssue] = field(default_factory=list)
    mode: UpdateMode = UpdateMode.MERGE

    @property
    def total(self) -> int:
        return (
            len(self.new_organizations)
            + len(self.changed_organizations)
            + len(self.new_items)
            + len(self.changed_items)
        )

    def locked_keys(self) -> list[str]:
        """Return the namespaced keys this set of changes will touch."""
        keys = [f"organization:{e.key}" for e in self.new_organizations]
        keys += [f"organization:{d.key}" for d in self.changed_organizations]
        keys += [f"item:{e.key}" for e in self.new_items]
        keys += [f"item:{d.key}" for d in self.changed_items]
        return keys


@dataclass(frozen=True)
class Batch:
    """Import batch domain entity."""

    id: str
    filename: str
    file_size: int
    total_records: int
    status: BatchStatus
    uploaded_by: str
    created_at: datetime
    processed_records: int = 0
    new_records: int = 0
    updated_records: int = 0
    error_records: int = 0
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    error_summary: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class BackupSnapshot:
    """Pre-processing backup of records a batch is about to update."""

    id: str
    batch_id: str
    snapshot_type: str
    created_by: str
    created_at: datetime
    organizations_backed_up: int
    items_backed_up: int


@dataclass(frozen=True)
class SnapshotRecord:
    snapshot_id: str
    entity_type: EntityType
    entity_key: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class AuditLogEntry:
    """One mutation in the append-only audit ledger."""

    id: int
    entity_type: EntityType
    entity_key: str
    operation: AuditOperation
    new_values: dict[str, Any]
    actor: str
    performed_at: datetime
    batch_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    changed_fields: Optional[list[str]] = None
    previous_values: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class Mutation:
    """A single row write plus the values its audit entry records."""

    operation: AuditOperation
    key: Any
    values: dict[str, Any]
    previous_values: Optional[dict[str, Any]] = None

    @property
    def changed_fields(self) -> Optional[list[str]]:
        if self.operation == AuditOperation.INSERT:
            return None
        return sorted(self.values)


@dataclass(frozen=True)
class ChunkResult:
    """Tagged outcome of writing one chunk."""

    entity_type: EntityType
    operation: AuditOperation
    index: int
    keys: tuple[Any, ...]
    success: bool
    applied: int = 0
    skipped: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ApplyReport:
    chunks: list[ChunkResult]

    def applied(self, entity_type: EntityType, operation: AuditOperation) -> int:
        return sum(
            chunk.applied
            for chunk in self.chunks
            if chunk.entity_type == entity_type and chunk.operation == operation
        )

    @property
    def inserted(self) -> int:
        return sum(c.applied for c in self.chunks if c.operation == AuditOperation.INSERT)

    @property
    def updated(self) -> int:
        return sum(c.applied for c in self.chunks if c.operation == AuditOperation.UPDATE)

    @property
    def failed_chunks(self) -> list[ChunkResult]:
        return [chunk for chunk in self.chunks if not chunk.success]

    @property
    def failed_records(self) -> int:
        return sum(len(chunk.keys) for chunk in self.failed_chunks)


@dataclass(frozen=True)
class RestoreResult:
    snapshot_id: str
    status: str
    organizations_restored: int = 0
    items_restored: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ProgressEvent:
    batch_id: str
    stage: ProgressStage
    message: str
    percentage: int


@dataclass(frozen=True)
class ImportPreview:
    """Everything the operator needs to decide what to approve."""

    batch_id: str
    filename: str
    file_size: int
    total_rows: int
    reconciliation: ReconciliationResult
    unmapped_headers: list[str]
    issues: list[ValidationIssue]

    @property
    def mode(self) -> UpdateMode:
        return self.reconciliation.mode

    def issues_by_severity(self, severity: IssueSeverity) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == severity]


@dataclass(frozen=True)
class CommitResult:
    batch_id: str
    status: BatchStatus
    snapshot_id: Optional[str]
    batch: Optional[Batch]
    report: ApplyReport
    errors: list[str]
    error_codes: list[str] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == BatchStatus.COMPLETED
