"""Approval-gated import pipeline.

An import runs in two calls. ``begin`` normalizes, maps and reconciles a file
and returns a preview without writing anything. ``commit`` takes the preview
plus the operator's approval decisions, snapshots the records about to be
updated and applies the approved changes in chunks.
"""

import logging
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from bulkgate.domain import errors
from bulkgate.domain.applier import BatchApplier
from bulkgate.domain.approval import ApprovalGate
from bulkgate.domain.backup import BackupService
from bulkgate.domain.entities import (
    ApplyReport,
    ApprovalState,
    AuditLogEntry,
    Batch,
    BatchStatus,
    ChunkResult,
    CommitResult,
    ImportPreview,
    ProgressEvent,
    ProgressStage,
    TabularFile,
    UpdateMode,
)
from bulkgate.domain.errors import DomainError, NotFoundError, SnapshotError
from bulkgate.domain.locks import KeyLockRegistry
from bulkgate.domain.mapper import EntityMapper
from bulkgate.domain.normalizer import Normalizer
from bulkgate.domain.progress import ProgressReporter
from bulkgate.domain.reconciliation import ReconciliationEngine
from bulkgate.domain.settings import ImportSettings
from bulkgate.utils.tabular_reader import read_tabular_file

if TYPE_CHECKING:
    from bulkgate.database.base import Database

log = logging.getLogger(__name__)

# Share of the percentage range covered by the applying stage.
_APPLY_START = 70
_APPLY_END = 95


def _chunk_error(chunk: ChunkResult) -> dict[str, Any]:
    return {
        "code": chunk.error_code,
        "message": chunk.error_message,
        "entity_type": chunk.entity_type.value,
        "operation": chunk.operation.value,
        "chunk": chunk.index,
        "keys": [str(key) for key in chunk.keys],
    }


class ImportPipeline:
    """Service for running approval-gated bulk imports."""

    def __init__(
        self,
        db: "Database",
        settings: Optional[ImportSettings] = None,
        progress: Optional[ProgressReporter] = None,
        locks: Optional[KeyLockRegistry] = None,
    ):
        """Initialize import pipeline.

        Args:
            db: Database instance
            settings: Import settings (defaults used when omitted)
            progress: Progress reporter to publish events on
            locks: Key lock registry shared by every pipeline writing to the same store
        """
        self.db = db
        self.settings = settings or ImportSettings()
        self.progress_reporter = progress or ProgressReporter()
        self.locks = locks or KeyLockRegistry()
        self.normalizer = Normalizer(self.settings)
        self.mapper = EntityMapper(self.settings)
        self.reconciliation = ReconciliationEngine(db, self.settings)
        self.gate = ApprovalGate()
        self.backup = BackupService(db, self.settings)
        self.applier = BatchApplier(db, self.settings)

    def begin_file(self, file_path: str | Path, mode: UpdateMode = UpdateMode.MERGE) -> ImportPreview:
        """Read a delimited file from disk and build its preview.

        Raises:
            NotFoundError: If the file doesn't exist
            FormatError: If the file type or size is rejected
        """
        file = read_tabular_file(file_path, max_bytes=self.settings.max_file_bytes)
        return self.begin(file, mode=mode)

    def begin(self, file: TabularFile, mode: UpdateMode = UpdateMode.MERGE) -> ImportPreview:
        """Classify the contents of a file for approval.

        Nothing is written to the store.

        Args:
            file: Header row and data rows of the upload
            mode: Update mode the preview is classified for

        Returns:
            ImportPreview holding the classified sets and every issue found

        Raises:
            FormatError: If the file is too large, too long or empty
            SchemaError: If required columns are missing
        """
        batch_id = str(uuid.uuid4())
        self.progress_reporter.emit(batch_id, ProgressStage.PARSING, f"Parsing {file.filename}")
        try:
            normalized = self.normalizer.normalize(file)
            self.progress_reporter.emit(
                batch_id, ProgressStage.MAPPING, f"Mapping {len(normalized.records)} rows"
            )
            mapping = self.mapper.map(normalized)
            self.progress_reporter.emit(batch_id, ProgressStage.VALIDATING, "Comparing with stored records")
            reconciliation = self.reconciliation.reconcile(mapping, mode=mode)
        except DomainError as e:
            self.progress_reporter.fail(batch_id, f"[{e.code}] {e.message}")
            raise

        self.progress_reporter.emit(batch_id, ProgressStage.VALIDATING, "Waiting for approval", 55)
        return ImportPreview(
            batch_id=batch_id,
            filename=file.filename,
            file_size=file.size,
            total_rows=len(file.rows),
            reconciliation=reconciliation,
            unmapped_headers=mapping.unmapped_headers,
            issues=normalized.issues + mapping.issues + reconciliation.issues,
        )

    def initial_approval(self, preview: ImportPreview, approved: bool = False) -> ApprovalState:
        """Return an approval state covering every classified key of a preview."""
        return self.gate.initial_state(preview.reconciliation, approved=approved)

    def commit(
        self, preview: ImportPreview, approval: ApprovalState, actor: Optional[str] = None
    ) -> CommitResult:
        """Snapshot and apply the approved part of a preview.

        The batch is created only once something was approved. If the snapshot
        cannot be written the batch fails before any record is touched.

        Args:
            preview: Preview returned by begin
            approval: Operator decisions
            actor: Who triggers the commit (defaults to the configured actor)

        Returns:
            CommitResult with the final batch, snapshot id and per-chunk report

        Raises:
            NothingApprovedError: If nothing was approved
            ConflictError: If another batch holds locks on the same keys, or
                the preview was already committed (BATCH_EXISTS)
        """
        actor = actor or self.settings.actor
        batch_id = preview.batch_id
        approved = self.gate.submit(preview.reconciliation, approval)

        with self.locks.hold(approved.locked_keys(), timeout=self.settings.lock_timeout):
            started = time.monotonic()
            self.db.create_batch(
                batch_id=batch_id,
                filename=preview.filename,
                file_size=preview.file_size,
                total_records=preview.total_rows,
                uploaded_by=actor,
            )
            log.info("Batch %s started by %s with %d approved changes", batch_id, actor, approved.total)

            self.progress_reporter.emit(batch_id, ProgressStage.BACKING_UP, "Backing up records to update")
            try:
                snapshot = self.backup.create_snapshot(batch_id, approved, actor)
            except SnapshotError as e:
                self._fail_batch(batch_id, started, approved.total, e.code, e.message)
                return CommitResult(
                    batch_id=batch_id,
                    status=BatchStatus.FAILED,
                    snapshot_id=None,
                    batch=self.db.get_batch(batch_id),
                    report=ApplyReport(chunks=[]),
                    errors=[e.message],
                    error_codes=[e.code],
                    issues=approved.issues,
                )

            self.progress_reporter.emit(
                batch_id, ProgressStage.APPLYING, f"Applying {approved.total} changes", _APPLY_START
            )

            def on_chunk(chunk: ChunkResult, done: int, total: int) -> None:
                share = (_APPLY_END - _APPLY_START) * done // max(total, 1)
                self.progress_reporter.emit(
                    batch_id,
                    ProgressStage.APPLYING,
                    f"Applied chunk {done} of {total}",
                    _APPLY_START + share,
                )

            try:
                report = self.applier.apply(batch_id, approved, actor, on_chunk=on_chunk)
            except Exception as e:
                log.exception("Batch %s aborted while applying", batch_id)
                code = e.code if isinstance(e, DomainError) else "UNEXPECTED_ERROR"
                self._fail_batch(batch_id, started, approved.total, code, str(e))
                raise
            failed = report.failed_chunks
            status = BatchStatus.FAILED if failed else BatchStatus.COMPLETED
            self.db.finalize_batch(
                batch_id,
                status,
                processed_records=sum(len(chunk.keys) for chunk in report.chunks),
                new_records=report.inserted,
                updated_records=report.updated,
                error_records=report.failed_records,
                processing_time_ms=self._elapsed_ms(started),
                error_summary=[_chunk_error(chunk) for chunk in failed],
            )

        error_messages = [
            f"{chunk.operation} {chunk.entity_type} chunk {chunk.index}: {chunk.error_message}"
            for chunk in failed
        ]
        if failed:
            self.progress_reporter.fail(batch_id, f"{len(failed)} chunks failed")
        else:
            self.progress_reporter.emit(batch_id, ProgressStage.COMPLETED, "Import completed")
        log.info("Batch %s finished %s", batch_id, status)

        return CommitResult(
            batch_id=batch_id,
            status=status,
            snapshot_id=snapshot.id,
            batch=self.db.get_batch(batch_id),
            report=report,
            errors=error_messages,
            error_codes=[chunk.error_code for chunk in failed if chunk.error_code],
            issues=approved.issues,
        )

    def progress(self, batch_id: str) -> list[ProgressEvent]:
        """Return the progress events recorded for a batch."""
        return self.progress_reporter.events(batch_id)

    def get_batch(self, batch_id: str) -> Batch:
        """Get batch by ID.

        Raises:
            NotFoundError: If the batch doesn't exist
        """
        batch = self.db.get_batch(batch_id)
        if batch is None:
            raise NotFoundError(errors.batch_not_found(batch_id))
        return batch

    def list_audit_entries(self, batch_id: str) -> list[AuditLogEntry]:
        """List the audit entries written by a batch, in ledger order."""
        return self.db.list_audit_entries(batch_id=batch_id)

    def _fail_batch(self, batch_id: str, started: float, error_records: int, code: str, message: str) -> None:
        """Mark a batch failed before any chunk result is known."""
        try:
            self.db.finalize_batch(
                batch_id,
                BatchStatus.FAILED,
                processed_records=0,
                new_records=0,
                updated_records=0,
                error_records=error_records,
                processing_time_ms=self._elapsed_ms(started),
                error_summary=[{"code": code, "message": message}],
            )
        finally:
            self.progress_reporter.fail(batch_id, f"[{code}] {message}")

    def _elapsed_ms(self, started: float) -> int:
        return int((time.monotonic() - started) * 1000)
