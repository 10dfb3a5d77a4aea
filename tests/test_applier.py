"""Tests for chunked application of approved changes."""

import threading
from datetime import date

import pytest

from bulkgate.domain.applier import BatchApplier, fill_values, insert_values, merge_values
from bulkgate.domain.entities import AuditOperation, UpdateMode
from bulkgate.domain.errors import PersistenceError
from bulkgate.domain.fields import NOT_FOUND, EntityType
from bulkgate.domain.settings import ImportSettings

from conftest import (
    ITEM_CODE,
    ORG_TAX_ID,
    OTHER_TAX_ID,
    approve_everything,
    canonical_item,
    canonical_organization,
    ensure_batch,
    mapping_of,
    store_item,
    store_organization,
)


@pytest.fixture(autouse=True)
def batch(temp_db):
    """Create the batch the applied audit entries belong to."""
    return ensure_batch(temp_db, "batch-1")


class FailingInsertDatabase:
    """Delegate to a real database but fail inserts for one entity type."""

    supports_concurrent_writes = False

    def __init__(self, db, failing_type):
        self.db = db
        self.failing_type = failing_type

    def insert_records(self, entity_type, mutations, *, batch_id, actor):
        if entity_type == self.failing_type:
            raise PersistenceError("disk full")
        return self.db.insert_records(entity_type, mutations, batch_id=batch_id, actor=actor)

    def __getattr__(self, name):
        return getattr(self.db, name)


def test_insert_values_apply_item_defaults():
    values = insert_values(canonical_item(product=NOT_FOUND))

    assert values["product"] == NOT_FOUND
    assert values["declaration_status"] == "not_generated"
    assert values["certificate_status"] == "pending_upload"
    assert values["sent_to_client"] == "pending"
    assert values["qr_status"] == "not_generated"


def test_merge_values_skip_protected_and_absent_fields():
    current = {"product": "Lamp", "brand": "Lumo", "qr_link": "https://qr.example/1"}
    incoming = canonical_item(product="Desk lamp", brand=NOT_FOUND, qr_link="https://evil.example")

    values = merge_values(current, incoming, ImportSettings().protected_fields)

    assert values["product"] == "Desk lamp"
    assert "brand" not in values
    assert "qr_link" not in values


def test_fill_values_only_touch_empty_fields():
    current = {"phone": None, "contact": "", "email": "info@acme.example"}
    incoming = canonical_organization(phone="555-0100", contact="Ana", email="other@acme.example")

    values = fill_values(current, incoming, ("email", "phone", "contact"))

    assert values == {"phone": "555-0100", "contact": "Ana"}


def test_apply_inserts_organizations_before_items(temp_db):
    approved = approve_everything(temp_db, mapping_of([canonical_organization()], [canonical_item()]))
    applier = BatchApplier(temp_db)

    report = applier.apply("batch-1", approved, "tester")

    assert [(chunk.entity_type, chunk.operation) for chunk in report.chunks] == [
        (EntityType.ORGANIZATION, AuditOperation.INSERT),
        (EntityType.ITEM, AuditOperation.INSERT),
    ]
    assert report.inserted == 2
    item = temp_db.get_item(ITEM_CODE)
    assert item.tax_id == ORG_TAX_ID
    assert item.public_id
    assert item.qr_status == "not_generated"
    entries = temp_db.list_audit_entries(batch_id="batch-1")
    assert [entry.entity_key for entry in entries] == [str(ORG_TAX_ID), ITEM_CODE]
    assert all(entry.changed_fields is None for entry in entries)


def test_apply_splits_into_chunks(temp_db):
    settings = ImportSettings(insert_chunk_size=2)
    organizations = [canonical_organization(tax_id=ORG_TAX_ID + offset) for offset in range(5)]
    approved = approve_everything(temp_db, mapping_of(organizations), settings=settings)

    report = BatchApplier(temp_db, settings).apply("batch-1", approved, "tester")

    assert [len(chunk.keys) for chunk in report.chunks] == [2, 2, 1]
    assert [chunk.index for chunk in report.chunks] == [0, 1, 2]
    assert report.inserted == 5


def test_update_keeps_protected_fields(temp_db, stored_organization):
    store_item(temp_db, qr_link="https://qr.example/1", certificate_status="issued")
    incoming = canonical_item(product="Desk lamp", qr_link="https://other.example", certificate_status="pending")
    approved = approve_everything(temp_db, mapping_of([], [incoming]))

    report = BatchApplier(temp_db).apply("batch-1", approved, "tester")

    assert report.updated == 1
    item = temp_db.get_item(ITEM_CODE)
    assert item.product == "Desk lamp"
    assert item.qr_link == "https://qr.example/1"
    assert item.certificate_status == "issued"
    entry = temp_db.list_audit_entries(batch_id="batch-1")[0]
    assert entry.operation == AuditOperation.UPDATE
    assert entry.changed_fields == ["product"]
    assert entry.previous_values == {"product": "Lamp"}
    assert entry.new_values == {"product": "Desk lamp"}


def test_fill_only_update_never_overwrites(temp_db):
    store_organization(temp_db, phone=None)
    incoming = canonical_organization(phone="555-0100", email="other@acme.example")
    approved = approve_everything(temp_db, mapping_of([incoming]), mode=UpdateMode.FILL_ONLY)

    BatchApplier(temp_db).apply("batch-1", approved, "tester")

    organization = temp_db.get_organization(ORG_TAX_ID)
    assert organization.phone == "555-0100"
    assert organization.email == "info@acme.example"
    assert organization.legal_name == "Acme SA"
    entry = temp_db.list_audit_entries(batch_id="batch-1")[0]
    assert entry.changed_fields == ["phone"]


def test_failed_chunk_is_reported_and_run_continues(temp_db, stored_organization):
    store_item(temp_db)
    failing = FailingInsertDatabase(temp_db, EntityType.ORGANIZATION)
    mapping = mapping_of(
        [canonical_organization(tax_id=OTHER_TAX_ID)],
        [canonical_item(product="Desk lamp")],
    )
    approved = approve_everything(temp_db, mapping)

    report = BatchApplier(failing).apply("batch-1", approved, "tester")

    assert len(report.failed_chunks) == 1
    failed = report.failed_chunks[0]
    assert failed.entity_type == EntityType.ORGANIZATION
    assert failed.error_code == "PERSISTENCE_ERROR"
    assert failed.keys == (OTHER_TAX_ID,)
    assert report.failed_records == 1
    assert report.updated == 1
    assert temp_db.get_organization(OTHER_TAX_ID) is None
    assert temp_db.get_item(ITEM_CODE).product == "Desk lamp"


def test_audit_entries_match_persisted_records(temp_db, stored_organization):
    mapping = mapping_of(
        [canonical_organization(email="new@acme.example"), canonical_organization(tax_id=OTHER_TAX_ID)],
        [canonical_item(), canonical_item(item_code="CERT-0002", tax_id=OTHER_TAX_ID)],
    )
    approved = approve_everything(temp_db, mapping)

    report = BatchApplier(temp_db).apply("batch-1", approved, "tester")

    entries = temp_db.list_audit_entries(batch_id="batch-1")
    assert len(entries) == report.inserted + report.updated == 4


class RecordingDatabase:
    """Thread-safe stand-in that records insert calls."""

    supports_concurrent_writes = True

    def __init__(self):
        self.calls = []
        self.lock = threading.Lock()

    def insert_records(self, entity_type, mutations, *, batch_id, actor):
        with self.lock:
            self.calls.append([mutation.key for mutation in mutations])
        return len(mutations)


@pytest.mark.parametrize("workers", [1, 4])
def test_concurrency_setting_keeps_chunk_order(temp_db, workers):
    settings = ImportSettings(insert_chunk_size=1, max_concurrent_chunks=workers)
    organizations = [canonical_organization(tax_id=ORG_TAX_ID + offset) for offset in range(3)]
    approved = approve_everything(temp_db, mapping_of(organizations), settings=settings)
    recording = RecordingDatabase()

    report = BatchApplier(recording, settings).apply("batch-1", approved, "tester")

    assert [chunk.keys[0] for chunk in report.chunks] == [ORG_TAX_ID, ORG_TAX_ID + 1, ORG_TAX_ID + 2]
    assert report.inserted == 3
    assert sorted(recording.calls) == [[ORG_TAX_ID], [ORG_TAX_ID + 1], [ORG_TAX_ID + 2]]


def test_progress_callback_receives_every_chunk(temp_db):
    settings = ImportSettings(insert_chunk_size=1)
    organizations = [canonical_organization(tax_id=ORG_TAX_ID + offset) for offset in range(3)]
    approved = approve_everything(temp_db, mapping_of(organizations), settings=settings)
    seen = []

    BatchApplier(temp_db, settings).apply(
        "batch-1", approved, "tester", on_chunk=lambda chunk, done, total: seen.append((done, total))
    )

    assert seen == [(1, 3), (2, 3), (3, 3)]


def test_item_dates_round_trip(temp_db, stored_organization):
    approved = approve_everything(temp_db, mapping_of([], [canonical_item(expires_on=date(2026, 1, 1))]))

    BatchApplier(temp_db).apply("batch-1", approved, "tester")

    assert temp_db.get_item(ITEM_CODE).expires_on == date(2026, 1, 1)


def test_items_of_unwritten_organization_are_excluded(temp_db, stored_organization):
    failing = FailingInsertDatabase(temp_db, EntityType.ORGANIZATION)
    mapping = mapping_of(
        [canonical_organization(tax_id=OTHER_TAX_ID)],
        [canonical_item(item_code="CERT-0002", tax_id=OTHER_TAX_ID), canonical_item(item_code="CERT-0003")],
    )
    approved = approve_everything(temp_db, mapping)

    report = BatchApplier(failing).apply("batch-1", approved, "tester")

    excluded = [chunk for chunk in report.failed_chunks if chunk.error_code == "REFERENCE_ERROR"]
    assert len(excluded) == 1
    assert excluded[0].entity_type == EntityType.ITEM
    assert excluded[0].keys == ("CERT-0002",)
    assert str(OTHER_TAX_ID) in excluded[0].error_message
    assert report.failed_records == 2
    assert temp_db.get_item("CERT-0002") is None
    assert temp_db.get_item("CERT-0003").tax_id == ORG_TAX_ID
    keys = [entry.entity_key for entry in temp_db.list_audit_entries(batch_id="batch-1")]
    assert keys == ["CERT-0003"]


def test_excluded_items_count_towards_progress_total(temp_db):
    failing = FailingInsertDatabase(temp_db, EntityType.ORGANIZATION)
    approved = approve_everything(temp_db, mapping_of([canonical_organization()], [canonical_item()]))
    seen = []

    BatchApplier(failing).apply(
        "batch-1", approved, "tester", on_chunk=lambda chunk, done, total: seen.append((done, total))
    )

    assert seen == [(1, 2), (2, 2)]
