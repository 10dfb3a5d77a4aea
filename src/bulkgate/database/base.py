"""Abstract database interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

# Import entities directly to avoid circular import through domain/__init__.py
from bulkgate.domain.entities import (
    AuditLogEntry,
    AuditOperation,
    BackupSnapshot,
    Batch,
    BatchStatus,
    Item,
    Mutation,
    Organization,
    SnapshotRecord,
)
from bulkgate.domain.fields import EntityType


class Database(ABC):
    """Abstract database interface for bulkgate.

    Implementations are assumed atomic per call: a call that writes several
    rows either persists all of them together with their audit entries, or
    none of them.
    """

    # Whether independent write calls may run on several threads at once.
    supports_concurrent_writes: bool = False

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    # Organization operations
    @abstractmethod
    def get_organization(self, tax_id: int) -> Optional[Organization]:
        """Get organization by tax id."""
        pass

    @abstractmethod
    def get_organizations_by_tax_ids(self, tax_ids: list[int]) -> list[Organization]:
        """Get every organization whose tax id is in the list, in one query."""
        pass

    # Item operations
    @abstractmethod
    def get_item(self, item_code: str) -> Optional[Item]:
        """Get item by item code."""
        pass

    @abstractmethod
    def get_items_by_codes(self, item_codes: list[str]) -> list[Item]:
        """Get every item whose code is in the list, in one query."""
        pass

    # Mutations
    @abstractmethod
    def insert_records(
        self,
        entity_type: EntityType,
        mutations: list[Mutation],
        *,
        batch_id: str,
        actor: str,
    ) -> int:
        """Insert rows and append one audit entry per row. Returns rows written."""
        pass

    @abstractmethod
    def update_records(
        self,
        entity_type: EntityType,
        mutations: list[Mutation],
        *,
        actor: str,
        batch_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        operation: AuditOperation = AuditOperation.UPDATE,
    ) -> int:
        """Update rows by natural key and append one audit entry per row. Returns rows written."""
        pass

    @abstractmethod
    def list_audit_entries(
        self, batch_id: Optional[str] = None, entity_key: Optional[str] = None
    ) -> list[AuditLogEntry]:
        """List audit entries in ledger order, optionally filtered."""
        pass

    # Batch operations
    @abstractmethod
    def create_batch(
        self,
        batch_id: str,
        filename: str,
        file_size: int,
        total_records: int,
        uploaded_by: str,
    ) -> str:
        """Create a batch in processing status. Returns batch ID."""
        pass

    @abstractmethod
    def get_batch(self, batch_id: str) -> Optional[Batch]:
        """Get batch by ID."""
        pass

    @abstractmethod
    def finalize_batch(
        self,
        batch_id: str,
        status: BatchStatus,
        *,
        processed_records: int,
        new_records: int,
        updated_records: int,
        error_records: int,
        processing_time_ms: int,
        error_summary: Optional[list[dict[str, Any]]] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        """Move a processing batch to a terminal status with its final counters.

        Raises ConflictError if the batch is already terminal.
        """
        pass

    # Backup operations
    @abstractmethod
    def create_snapshot(
        self,
        snapshot_id: str,
        batch_id: str,
        created_by: str,
        organization_tax_ids: list[int],
        item_codes: list[str],
    ) -> BackupSnapshot:
        """Copy the current payload of the given records into a new snapshot.

        The snapshot header and every payload are written in one transaction.
        """
        pass

    @abstractmethod
    def get_snapshot(self, snapshot_id: str) -> Optional[BackupSnapshot]:
        """Get backup snapshot by ID."""
        pass

    @abstractmethod
    def get_snapshot_for_batch(self, batch_id: str) -> Optional[BackupSnapshot]:
        """Get the backup snapshot taken for a batch."""
        pass

    @abstractmethod
    def list_snapshot_records(self, snapshot_id: str) -> list[SnapshotRecord]:
        """List the payloads stored in a snapshot."""
        pass

    @abstractmethod
    def record_restore(
        self,
        snapshot_id: str,
        restored_by: str,
        organizations_restored: int,
        items_restored: int,
        status: str,
        error_messages: list[str],
    ) -> int:
        """Record a restore run. Returns restore record ID."""
        pass
