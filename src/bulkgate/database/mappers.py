"""Mapper functions to convert between domain models and SQLAlchemy models.

JSON columns (audit values, backup payloads) hold plain JSON, so dates are
stored as ISO strings and converted back using the target column type.
"""

from dataclasses import fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Date, DateTime

from bulkgate.domain import entities as domain
from bulkgate.domain.fields import EntityType
from bulkgate.database.models import (
    AuditLogEntry as ORMAuditLogEntry,
    BackupRecord as ORMBackupRecord,
    BackupSnapshot as ORMBackupSnapshot,
    Base,
    ImportBatch as ORMImportBatch,
    Item as ORMItem,
    Organization as ORMOrganization,
)

_ITEM_FIELD_NAMES = tuple(f.name for f in fields(domain.Item))


def organization_to_domain(orm_organization: ORMOrganization) -> domain.Organization:
    """Convert SQLAlchemy Organization model to domain Organization entity."""
    return domain.Organization(
        id=orm_organization.id,
        tax_id=orm_organization.tax_id,
        legal_name=orm_organization.legal_name,
        address=orm_organization.address,
        email=orm_organization.email,
        phone=orm_organization.phone,
        contact=orm_organization.contact,
        created_at=orm_organization.created_at,
        updated_at=orm_organization.updated_at,
    )


def item_to_domain(orm_item: ORMItem) -> domain.Item:
    """Convert SQLAlchemy Item model to domain Item entity."""
    # Column names match the dataclass field names one to one.
    return domain.Item(**{name: getattr(orm_item, name) for name in _ITEM_FIELD_NAMES})


def batch_to_domain(orm_batch: ORMImportBatch) -> domain.Batch:
    """Convert SQLAlchemy ImportBatch model to domain Batch entity."""
    return domain.Batch(
        id=orm_batch.id,
        filename=orm_batch.filename,
        file_size=orm_batch.file_size,
        total_records=orm_batch.total_records,
        status=domain.BatchStatus(orm_batch.status),
        uploaded_by=orm_batch.uploaded_by,
        created_at=orm_batch.created_at,
        processed_records=orm_batch.processed_records,
        new_records=orm_batch.new_records,
        updated_records=orm_batch.updated_records,
        error_records=orm_batch.error_records,
        completed_at=orm_batch.completed_at,
        processing_time_ms=orm_batch.processing_time_ms,
        error_summary=list(orm_batch.error_summary or []),
    )


def snapshot_to_domain(orm_snapshot: ORMBackupSnapshot) -> domain.BackupSnapshot:
    """Convert SQLAlchemy BackupSnapshot model to domain BackupSnapshot entity."""
    return domain.BackupSnapshot(
        id=orm_snapshot.id,
        batch_id=orm_snapshot.batch_id,
        snapshot_type=orm_snapshot.snapshot_type,
        created_by=orm_snapshot.created_by,
        created_at=orm_snapshot.created_at,
        organizations_backed_up=orm_snapshot.organizations_backed_up,
        items_backed_up=orm_snapshot.items_backed_up,
    )


def snapshot_record_to_domain(orm_record: ORMBackupRecord) -> domain.SnapshotRecord:
    """Convert SQLAlchemy BackupRecord model to domain SnapshotRecord entity.

    Payload values are converted back to column types.
    """
    entity_type = EntityType(orm_record.entity_type)
    model = ORMOrganization if entity_type == EntityType.ORGANIZATION else ORMItem
    return domain.SnapshotRecord(
        snapshot_id=orm_record.snapshot_id,
        entity_type=entity_type,
        entity_key=orm_record.entity_key,
        payload=json_to_column_values(model, orm_record.payload),
    )


def audit_entry_to_domain(orm_entry: ORMAuditLogEntry) -> domain.AuditLogEntry:
    """Convert SQLAlchemy AuditLogEntry model to domain AuditLogEntry entity."""
    return domain.AuditLogEntry(
        id=orm_entry.id,
        entity_type=EntityType(orm_entry.entity_type),
        entity_key=orm_entry.entity_key,
        operation=domain.AuditOperation(orm_entry.operation),
        new_values=dict(orm_entry.new_values),
        actor=orm_entry.actor,
        performed_at=orm_entry.performed_at,
        batch_id=orm_entry.batch_id,
        snapshot_id=orm_entry.snapshot_id,
        changed_fields=list(orm_entry.changed_fields) if orm_entry.changed_fields is not None else None,
        previous_values=dict(orm_entry.previous_values) if orm_entry.previous_values is not None else None,
    )


def to_json_value(value: Any) -> Any:
    """Convert a column value into something a JSON column can hold."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def values_to_json(values: dict[str, Any]) -> dict[str, Any]:
    """Convert a dict of column values for storage in a JSON column."""
    return {name: to_json_value(value) for name, value in values.items()}


def json_to_column_values(model: type[Base], payload: dict[str, Any]) -> dict[str, Any]:
    """Convert JSON payload values back into column values for a model.

    Keys that are not columns of the model are dropped.
    """
    columns = model.__table__.columns
    result = {}
    for name, value in payload.items():
        if name not in columns:
            continue
        column_type = columns[name].type
        if value is not None and isinstance(column_type, DateTime):
            value = datetime.fromisoformat(value)
        elif value is not None and isinstance(column_type, Date):
            value = date.fromisoformat(value)
        result[name] = value
    return result
