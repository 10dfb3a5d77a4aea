"""Tests for pre-processing snapshots and restore."""

from datetime import date

import pytest

from bulkgate.domain.applier import BatchApplier
from bulkgate.domain.backup import RESTORE_COMPLETED, RESTORE_PARTIAL, BackupService
from bulkgate.domain.entities import AuditOperation
from bulkgate.domain.errors import NotFoundError, PersistenceError, SnapshotError
from bulkgate.domain.fields import EntityType

from conftest import (
    ITEM_CODE,
    ORG_TAX_ID,
    OTHER_TAX_ID,
    approve_everything,
    canonical_item,
    canonical_organization,
    mapping_of,
    store_item,
)


@pytest.fixture
def backup_service(temp_db):
    return BackupService(temp_db)


@pytest.fixture
def approved_changes(temp_db, stored_item):
    """One changed organization, one changed item and one new organization."""
    mapping = mapping_of(
        [canonical_organization(email="new@acme.example"), canonical_organization(tax_id=OTHER_TAX_ID)],
        [canonical_item(product="Desk lamp", expires_on=date(2026, 1, 1))],
    )
    return approve_everything(temp_db, mapping)


def create_batch(db, batch_id="batch-1"):
    db.create_batch(batch_id=batch_id, filename="upload.csv", file_size=10, total_records=1, uploaded_by="tester")
    return batch_id


def test_snapshot_copies_only_records_to_update(temp_db, backup_service, approved_changes):
    batch_id = create_batch(temp_db)

    snapshot = backup_service.create_snapshot(batch_id, approved_changes, "tester")

    assert snapshot.batch_id == batch_id
    assert snapshot.snapshot_type == "pre_processing"
    assert snapshot.organizations_backed_up == 1
    assert snapshot.items_backed_up == 1
    records = backup_service.list_snapshot_records(snapshot.id)
    assert {(record.entity_type, record.entity_key) for record in records} == {
        (EntityType.ORGANIZATION, str(ORG_TAX_ID)),
        (EntityType.ITEM, ITEM_CODE),
    }
    item_payload = next(record.payload for record in records if record.entity_type == EntityType.ITEM)
    assert item_payload["product"] == "Lamp"
    assert item_payload["issued_on"] == date(2024, 1, 15)


def test_snapshot_with_nothing_to_update_is_still_recorded(temp_db, backup_service):
    approved = approve_everything(temp_db, mapping_of([canonical_organization()]))
    batch_id = create_batch(temp_db)

    snapshot = backup_service.create_snapshot(batch_id, approved, "tester")

    assert snapshot.organizations_backed_up == 0
    assert backup_service.get_snapshot_for_batch(batch_id).id == snapshot.id


def test_snapshot_store_failure_becomes_snapshot_error(temp_db, approved_changes):
    class BrokenDatabase:
        def create_snapshot(self, **kwargs):
            raise PersistenceError("database is locked")

    with pytest.raises(SnapshotError) as excinfo:
        BackupService(BrokenDatabase()).create_snapshot("batch-1", approved_changes, "tester")

    assert excinfo.value.code == "SNAPSHOT_ERROR"


def test_restore_writes_snapshot_back(temp_db, backup_service, approved_changes):
    batch_id = create_batch(temp_db)
    snapshot = backup_service.create_snapshot(batch_id, approved_changes, "tester")
    BatchApplier(temp_db).apply(batch_id, approved_changes, "tester")
    assert temp_db.get_item(ITEM_CODE).product == "Desk lamp"

    result = backup_service.restore_snapshot(snapshot.id, "operator")

    assert result.status == RESTORE_COMPLETED
    assert result.organizations_restored == 1
    assert result.items_restored == 1
    item = temp_db.get_item(ITEM_CODE)
    assert item.product == "Lamp"
    assert item.expires_on is None
    assert temp_db.get_organization(ORG_TAX_ID).email == "info@acme.example"
    # Inserted records have no prior state and are left alone
    assert temp_db.get_organization(OTHER_TAX_ID) is not None

    restores = [
        entry for entry in temp_db.list_audit_entries(entity_key=ITEM_CODE)
        if entry.operation == AuditOperation.RESTORE
    ]
    assert len(restores) == 1
    assert restores[0].snapshot_id == snapshot.id
    assert restores[0].batch_id is None
    assert restores[0].changed_fields == ["expires_on", "product"]


def test_restore_does_not_change_batch_audit_count(temp_db, backup_service, approved_changes):
    batch_id = create_batch(temp_db)
    snapshot = backup_service.create_snapshot(batch_id, approved_changes, "tester")
    BatchApplier(temp_db).apply(batch_id, approved_changes, "tester")
    before = len(temp_db.list_audit_entries(batch_id=batch_id))

    backup_service.restore_snapshot(snapshot.id, "operator")

    assert len(temp_db.list_audit_entries(batch_id=batch_id)) == before


def test_restore_skips_records_already_matching(temp_db, backup_service, approved_changes):
    batch_id = create_batch(temp_db)
    snapshot = backup_service.create_snapshot(batch_id, approved_changes, "tester")

    result = backup_service.restore_snapshot(snapshot.id, "operator")

    assert result.status == RESTORE_COMPLETED
    assert result.organizations_restored == 0
    assert result.items_restored == 0


def test_restore_reports_partial_failure(temp_db, backup_service, approved_changes):
    batch_id = create_batch(temp_db)
    snapshot = backup_service.create_snapshot(batch_id, approved_changes, "tester")
    BatchApplier(temp_db).apply(batch_id, approved_changes, "tester")

    class FailingItemUpdates:
        def __init__(self, db):
            self.db = db

        def update_records(self, entity_type, mutations, **kwargs):
            if entity_type == EntityType.ITEM:
                raise PersistenceError("item table locked")
            return self.db.update_records(entity_type, mutations, **kwargs)

        def __getattr__(self, name):
            return getattr(self.db, name)

    result = BackupService(FailingItemUpdates(temp_db)).restore_snapshot(snapshot.id, "operator")

    assert result.status == RESTORE_PARTIAL
    assert result.organizations_restored == 1
    assert result.items_restored == 0
    assert result.errors == ["item table locked"]


def test_restore_unknown_snapshot_raises(backup_service):
    with pytest.raises(NotFoundError):
        backup_service.restore_snapshot("missing", "operator")


def test_restore_item_deleted_after_snapshot_is_reported(temp_db, backup_service, stored_organization):
    store_item(temp_db, item_code="CERT-0009")
    approved = approve_everything(temp_db, mapping_of([], [canonical_item(item_code="CERT-0009", product="X")]))
    batch_id = create_batch(temp_db)
    snapshot = backup_service.create_snapshot(batch_id, approved, "tester")

    class MissingItems:
        def __init__(self, db):
            self.db = db

        def get_items_by_codes(self, item_codes):
            return []

        def __getattr__(self, name):
            return getattr(self.db, name)

    result = BackupService(MissingItems(temp_db)).restore_snapshot(snapshot.id, "operator")

    assert result.status == "failed"
    assert "CERT-0009" in result.errors[0]
