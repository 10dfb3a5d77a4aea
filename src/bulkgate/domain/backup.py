"""Pre-processing backup snapshots and restore."""

import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional

from bulkgate.domain import errors
from bulkgate.domain.entities import (
    ApprovedChanges,
    AuditOperation,
    BackupSnapshot,
    Mutation,
    RestoreResult,
    SnapshotRecord,
    record_values,
)
from bulkgate.domain.errors import DomainError, NotFoundError, SnapshotError
from bulkgate.domain.fields import EntityType
from bulkgate.domain.reconciliation import chunked, comparable_value
from bulkgate.domain.settings import ImportSettings

if TYPE_CHECKING:
    from bulkgate.database.base import Database

log = logging.getLogger(__name__)

RESTORE_COMPLETED = "completed"
RESTORE_PARTIAL = "partial"
RESTORE_FAILED = "failed"

# Store-managed columns a restore never writes back.
_UNRESTORED_FIELDS = ("id", "created_at", "updated_at")


class BackupService:
    """Service for snapshotting records before they are updated."""

    def __init__(self, db: "Database", settings: Optional[ImportSettings] = None):
        """Initialize backup service.

        Args:
            db: Database instance
            settings: Import settings (defaults used when omitted)
        """
        self.db = db
        self.settings = settings or ImportSettings()

    def create_snapshot(self, batch_id: str, approved: ApprovedChanges, actor: str) -> BackupSnapshot:
        """Copy every record the batch will update into one snapshot.

        Records that will be inserted have no prior state and are not copied.
        A snapshot is written even when nothing will be updated.

        Args:
            batch_id: Batch the snapshot belongs to
            approved: Approved changes of the batch
            actor: Who triggered the commit

        Returns:
            The stored snapshot

        Raises:
            SnapshotError: If the snapshot could not be written
        """
        snapshot_id = str(uuid.uuid4())
        tax_ids = [detail.key for detail in approved.changed_organizations]
        item_codes = [detail.key for detail in approved.changed_items]
        try:
            snapshot = self.db.create_snapshot(
                snapshot_id=snapshot_id,
                batch_id=batch_id,
                created_by=actor,
                organization_tax_ids=tax_ids,
                item_codes=item_codes,
            )
        except SnapshotError:
            log.error("Snapshot for batch %s failed", batch_id)
            raise
        except DomainError as e:
            log.error("Snapshot for batch %s failed: %s", batch_id, e)
            raise SnapshotError(f"Could not write backup snapshot for batch {batch_id}: {e}")

        log.info(
            "Snapshot %s for batch %s: %d organizations, %d items",
            snapshot.id,
            batch_id,
            snapshot.organizations_backed_up,
            snapshot.items_backed_up,
        )
        return snapshot

    def get_snapshot(self, snapshot_id: str) -> Optional[BackupSnapshot]:
        """Get snapshot by ID.

        Args:
            snapshot_id: Snapshot ID

        Returns:
            BackupSnapshot or None if not found
        """
        return self.db.get_snapshot(snapshot_id)

    def get_snapshot_for_batch(self, batch_id: str) -> Optional[BackupSnapshot]:
        """Get the snapshot taken for a batch."""
        return self.db.get_snapshot_for_batch(batch_id)

    def list_snapshot_records(self, snapshot_id: str) -> list[SnapshotRecord]:
        """List the payloads stored in a snapshot."""
        return self.db.list_snapshot_records(snapshot_id)

    def restore_snapshot(self, snapshot_id: str, actor: str) -> RestoreResult:
        """Write every payload of a snapshot back over the current records.

        Only fields that differ from the current record are written. Each
        restored record gets one restore audit entry tied to the snapshot.
        A chunk that fails is reported and the remaining chunks still run.

        Args:
            snapshot_id: Snapshot to restore
            actor: Who triggered the restore

        Returns:
            RestoreResult with per-type counts, errors and status
            completed, partial or failed

        Raises:
            NotFoundError: If the snapshot doesn't exist
        """
        if self.db.get_snapshot(snapshot_id) is None:
            raise NotFoundError(errors.snapshot_not_found(snapshot_id))

        records = self.db.list_snapshot_records(snapshot_id)
        error_messages: list[str] = []
        restored = {}
        for entity_type in (EntityType.ORGANIZATION, EntityType.ITEM):
            payloads = [record for record in records if record.entity_type == entity_type]
            restored[entity_type] = self._restore_type(
                snapshot_id, entity_type, payloads, actor, error_messages
            )

        total = restored[EntityType.ORGANIZATION] + restored[EntityType.ITEM]
        if not error_messages:
            status = RESTORE_COMPLETED
        elif total:
            status = RESTORE_PARTIAL
        else:
            status = RESTORE_FAILED

        self.db.record_restore(
            snapshot_id=snapshot_id,
            restored_by=actor,
            organizations_restored=restored[EntityType.ORGANIZATION],
            items_restored=restored[EntityType.ITEM],
            status=status,
            error_messages=error_messages,
        )
        log.info("Restore of snapshot %s %s: %d records written", snapshot_id, status, total)
        return RestoreResult(
            snapshot_id=snapshot_id,
            status=status,
            organizations_restored=restored[EntityType.ORGANIZATION],
            items_restored=restored[EntityType.ITEM],
            errors=error_messages,
        )

    def _restore_type(
        self,
        snapshot_id: str,
        entity_type: EntityType,
        records: list[SnapshotRecord],
        actor: str,
        error_messages: list[str],
    ) -> int:
        written = 0
        for chunk in chunked(records, self.settings.update_chunk_size):
            keys = [self._natural_key(entity_type, record.entity_key) for record in chunk]
            current = self._current(entity_type, keys)

            mutations = []
            for key, record in zip(keys, chunk):
                existing = current.get(key)
                if existing is None:
                    error_messages.append(f"{entity_type.capitalize()} '{key}' no longer exists; not restored")
                    continue
                mutation = self._restore_mutation(key, record.payload, existing)
                if mutation is None:
                    log.debug("%s %s already matches snapshot", entity_type, key)
                    continue
                mutations.append(mutation)

            if not mutations:
                continue
            try:
                written += self.db.update_records(
                    entity_type,
                    mutations,
                    actor=actor,
                    snapshot_id=snapshot_id,
                    operation=AuditOperation.RESTORE,
                )
            except DomainError as e:
                log.warning("Restore chunk of %d %s records failed: %s", len(mutations), entity_type, e)
                error_messages.append(str(e))
        return written

    def _natural_key(self, entity_type: EntityType, entity_key: str) -> Any:
        return int(entity_key) if entity_type == EntityType.ORGANIZATION else entity_key

    def _current(self, entity_type: EntityType, keys: list[Any]) -> dict[Any, dict[str, Any]]:
        if entity_type == EntityType.ORGANIZATION:
            rows = self.db.get_organizations_by_tax_ids(keys)
        else:
            rows = self.db.get_items_by_codes(keys)
        return {row.key: record_values(row) for row in rows}

    def _restore_mutation(
        self, key: Any, payload: dict[str, Any], existing: dict[str, Any]
    ) -> Optional[Mutation]:
        values = {
            name: value
            for name, value in payload.items()
            if name not in _UNRESTORED_FIELDS
            and comparable_value(existing.get(name)) != comparable_value(value)
        }
        if not values:
            return None
        return Mutation(
            operation=AuditOperation.RESTORE,
            key=key,
            values=values,
            previous_values={name: existing.get(name) for name in values},
        )
