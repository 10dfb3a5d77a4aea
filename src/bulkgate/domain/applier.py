"""Chunked application of approved changes to the store."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, Optional

from bulkgate.domain.entities import (
    ApplyReport,
    ApprovedChanges,
    AuditOperation,
    CanonicalEntity,
    ChangeDetail,
    ChunkResult,
    Mutation,
    UpdateMode,
    record_values,
)
from bulkgate.domain import errors
from bulkgate.domain.errors import DomainError
from bulkgate.domain.fields import ITEM_INSERT_DEFAULTS, EntityType, entity_fields, is_absent, is_empty
from bulkgate.domain.reconciliation import chunked, comparable_value
from bulkgate.domain.settings import ImportSettings

if TYPE_CHECKING:
    from bulkgate.database.base import Database

log = logging.getLogger(__name__)

ChunkCallback = Callable[[ChunkResult, int, int], None]


def insert_values(entity: CanonicalEntity) -> dict[str, Any]:
    """Build the column values for inserting a new entity.

    The NOT_FOUND sentinel is written as is; items get the workflow defaults.
    """
    allowed = entity_fields(entity.entity_type)
    values = {name: value for name, value in entity.fields.items() if name in allowed}
    if entity.entity_type == EntityType.ITEM:
        for name, default in ITEM_INSERT_DEFAULTS.items():
            values.setdefault(name, default)
    return values


def merge_values(
    current: dict[str, Any], incoming: CanonicalEntity, protected: tuple[str, ...]
) -> dict[str, Any]:
    """Return the incoming values that differ from the stored record.

    Absent incoming values and protected fields are never part of the result,
    so the stored value always carries over for them.
    """
    allowed = entity_fields(incoming.entity_type)
    return {
        name: value
        for name, value in incoming.fields.items()
        if name in allowed
        and name not in protected
        and not is_absent(value)
        and comparable_value(current.get(name)) != comparable_value(value)
    }


def fill_values(current: dict[str, Any], incoming: CanonicalEntity, fillable: tuple[str, ...]) -> dict[str, Any]:
    """Return the incoming values for fields that are empty in the stored record."""
    return {
        name: incoming.get(name)
        for name in fillable
        if not is_absent(incoming.get(name))
        and not is_empty(incoming.get(name))
        and is_empty(current.get(name))
    }


def unwritten_organizations(results: list[ChunkResult]) -> set[Any]:
    """Return the tax ids of new organizations whose insert chunk failed."""
    return {
        key
        for chunk in results
        if not chunk.success
        and chunk.entity_type == EntityType.ORGANIZATION
        and chunk.operation == AuditOperation.INSERT
        for key in chunk.keys
    }


def _item_tax_id(operation: AuditOperation, entry: CanonicalEntity | ChangeDetail) -> Any:
    if operation == AuditOperation.INSERT:
        return entry.get("tax_id")
    return entry.incoming.get("tax_id")


class BatchApplier:
    """Write approved changes in chunks and report the outcome of each chunk.

    Categories run in the order new organizations, changed organizations, new
    items, changed items. A chunk that fails is recorded as a failed
    ``ChunkResult`` and the run moves on; already applied chunks stay applied.
    """

    def __init__(self, db: "Database", settings: Optional[ImportSettings] = None):
        """Initialize batch applier.

        Args:
            db: Database instance
            settings: Import settings (defaults used when omitted)
        """
        self.db = db
        self.settings = settings or ImportSettings()

    def apply(
        self,
        batch_id: str,
        approved: ApprovedChanges,
        actor: str,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> ApplyReport:
        """Apply approved changes.

        Args:
            batch_id: Batch the writes belong to
            approved: Approved changes
            actor: Who triggered the commit
            on_chunk: Optional callback receiving each result plus the number of
                chunks done and the total number of chunks

        Returns:
            ApplyReport with one result per chunk, in processing order
        """
        plan = [
            (EntityType.ORGANIZATION, AuditOperation.INSERT, approved.new_organizations),
            (EntityType.ORGANIZATION, AuditOperation.UPDATE, approved.changed_organizations),
            (EntityType.ITEM, AuditOperation.INSERT, approved.new_items),
            (EntityType.ITEM, AuditOperation.UPDATE, approved.changed_items),
        ]
        total = sum(
            len(list(chunked(entries, self._chunk_size(operation)))) for _, operation, entries in plan
        )

        results: list[ChunkResult] = []

        def record(result: ChunkResult) -> None:
            results.append(result)
            if on_chunk is not None:
                on_chunk(result, len(results), total)

        # Every organization chunk finishes before the first item chunk starts.
        for entity_type in (EntityType.ORGANIZATION, EntityType.ITEM):
            tasks = []
            excluded = []
            if entity_type == EntityType.ITEM:
                missing = unwritten_organizations(results)
                plan, excluded = self._exclude_orphans(plan, missing)
                total = len(results) + len(excluded) + sum(
                    len(list(chunked(entries, self._chunk_size(operation))))
                    for task_type, operation, entries in plan
                    if task_type == EntityType.ITEM
                )
            for task_type, operation, entries in plan:
                if task_type != entity_type:
                    continue
                for index, chunk in enumerate(chunked(entries, self._chunk_size(operation))):
                    tasks.append((operation, index, chunk))
            for result in self._run(batch_id, entity_type, tasks, approved.mode, actor):
                record(result)
            for result in excluded:
                record(result)

        report = ApplyReport(chunks=results)
        log.info(
            "Applied batch %s: %d inserted, %d updated, %d failed chunks",
            batch_id,
            report.inserted,
            report.updated,
            len(report.failed_chunks),
        )
        return report

    def _exclude_orphans(self, plan: list[tuple], missing: set[Any]) -> tuple[list[tuple], list[ChunkResult]]:
        """Drop item changes that reference an organization that was never written.

        Returns the filtered plan and one failed REFERENCE_ERROR result per
        operation that lost items.
        """
        if not missing:
            return plan, []

        filtered = []
        excluded = []
        for entity_type, operation, entries in plan:
            if entity_type != EntityType.ITEM:
                filtered.append((entity_type, operation, entries))
                continue
            kept = [entry for entry in entries if _item_tax_id(operation, entry) not in missing]
            dropped = [entry for entry in entries if _item_tax_id(operation, entry) in missing]
            filtered.append((entity_type, operation, kept))
            if not dropped:
                continue
            keys = tuple(entry.key for entry in dropped)
            tax_ids = sorted({_item_tax_id(operation, entry) for entry in dropped})
            log.warning("Excluded %d items referencing unwritten organizations %s", len(keys), tax_ids)
            excluded.append(
                ChunkResult(
                    entity_type=EntityType.ITEM,
                    operation=operation,
                    index=len(list(chunked(kept, self._chunk_size(operation)))),
                    keys=keys,
                    success=False,
                    error_code="REFERENCE_ERROR",
                    error_message=errors.unwritten_organization(tax_ids),
                )
            )
        return filtered, excluded

    def _chunk_size(self, operation: AuditOperation) -> int:
        if operation == AuditOperation.INSERT:
            return self.settings.insert_chunk_size
        return self.settings.update_chunk_size

    def _run(
        self,
        batch_id: str,
        entity_type: EntityType,
        tasks: list[tuple[AuditOperation, int, list[Any]]],
        mode: UpdateMode,
        actor: str,
    ) -> list[ChunkResult]:
        def run(task: tuple[AuditOperation, int, list[Any]]) -> ChunkResult:
            operation, index, chunk = task
            if operation == AuditOperation.INSERT:
                return self.apply_insert_chunk(batch_id, entity_type, index, chunk, actor)
            return self.apply_update_chunk(batch_id, entity_type, index, chunk, mode, actor)

        workers = self.settings.max_concurrent_chunks
        if workers > 1 and self.db.supports_concurrent_writes and len(tasks) > 1:
            # Inserts create keys the updates of the same type never touch, so
            # chunks of one entity type are independent of each other.
            with ThreadPoolExecutor(max_workers=workers) as executor:
                return list(executor.map(run, tasks))
        return [run(task) for task in tasks]

    def apply_insert_chunk(
        self,
        batch_id: str,
        entity_type: EntityType,
        index: int,
        entities: list[CanonicalEntity],
        actor: str,
    ) -> ChunkResult:
        """Insert one chunk of new entities.

        Returns:
            ChunkResult tagged as success or failure
        """
        keys = tuple(entity.key for entity in entities)
        mutations = [
            Mutation(operation=AuditOperation.INSERT, key=entity.key, values=insert_values(entity))
            for entity in entities
        ]
        try:
            written = self.db.insert_records(entity_type, mutations, batch_id=batch_id, actor=actor)
        except DomainError as e:
            log.warning("Insert chunk %d of %s failed: %s", index, entity_type, e)
            return ChunkResult(
                entity_type=entity_type,
                operation=AuditOperation.INSERT,
                index=index,
                keys=keys,
                success=False,
                error_code=e.code,
                error_message=e.message,
            )
        return ChunkResult(
            entity_type=entity_type,
            operation=AuditOperation.INSERT,
            index=index,
            keys=keys,
            success=True,
            applied=written,
        )

    def apply_update_chunk(
        self,
        batch_id: str,
        entity_type: EntityType,
        index: int,
        details: list[ChangeDetail],
        mode: UpdateMode,
        actor: str,
    ) -> ChunkResult:
        """Update one chunk of changed entities.

        The current stored values are re-read in one query right before the
        write. Records with nothing left to write are skipped and get no
        audit entry.

        Returns:
            ChunkResult tagged as success or failure
        """
        keys = tuple(detail.key for detail in details)
        try:
            current = self._current(entity_type, list(keys))
            mutations = []
            for detail in details:
                stored = current.get(detail.key)
                if stored is None:
                    stored = record_values(detail.existing)
                if mode == UpdateMode.FILL_ONLY:
                    values = fill_values(stored, detail.incoming, self.settings.fillable_fields(entity_type))
                else:
                    values = merge_values(stored, detail.incoming, self.settings.protected_fields)
                if not values:
                    log.debug("Skipped %s %s: nothing to write", entity_type, detail.key)
                    continue
                mutations.append(
                    Mutation(
                        operation=AuditOperation.UPDATE,
                        key=detail.key,
                        values=values,
                        previous_values={name: stored.get(name) for name in values},
                    )
                )
            written = (
                self.db.update_records(entity_type, mutations, actor=actor, batch_id=batch_id)
                if mutations
                else 0
            )
        except DomainError as e:
            log.warning("Update chunk %d of %s failed: %s", index, entity_type, e)
            return ChunkResult(
                entity_type=entity_type,
                operation=AuditOperation.UPDATE,
                index=index,
                keys=keys,
                success=False,
                error_code=e.code,
                error_message=e.message,
            )
        return ChunkResult(
            entity_type=entity_type,
            operation=AuditOperation.UPDATE,
            index=index,
            keys=keys,
            success=True,
            applied=written,
            skipped=len(details) - len(mutations),
        )

    def _current(self, entity_type: EntityType, keys: list[Any]) -> dict[Any, dict[str, Any]]:
        if entity_type == EntityType.ORGANIZATION:
            rows = self.db.get_organizations_by_tax_ids(keys)
        else:
            rows = self.db.get_items_by_codes(keys)
        return {row.key: record_values(row) for row in rows}
