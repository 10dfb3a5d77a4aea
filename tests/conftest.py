"""Shared pytest fixtures for bulkgate tests."""

import csv
import tempfile
import os
from datetime import date
from pathlib import Path
import pytest

from bulkgate.database.factories import create_sqlite_database
from bulkgate.domain.approval import ApprovalGate
from bulkgate.domain.entities import (
    ApprovedChanges,
    AuditOperation,
    CanonicalEntity,
    MappingResult,
    Mutation,
    TabularFile,
    UpdateMode,
)
from bulkgate.domain.fields import EntityType
from bulkgate.domain.import_pipeline import ImportPipeline
from bulkgate.domain.reconciliation import ReconciliationEngine
from bulkgate.domain.settings import ImportSettings

ORG_TAX_ID = 30712345678
OTHER_TAX_ID = 20123456786
ITEM_CODE = "CERT-0001"

HEADERS = [
    "CUIT",
    "Razón Social",
    "Dirección Legal",
    "E-mail",
    "Codificación",
    "Producto",
    "Marca",
    "Fecha Emisión",
]


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    # Create a temporary file for the database
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    # Create database
    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    # Cleanup
    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def settings():
    """Default import settings."""
    return ImportSettings()


@pytest.fixture
def pipeline(temp_db, settings):
    """Create an ImportPipeline with a temporary database."""
    return ImportPipeline(temp_db, settings)


def ensure_batch(db, batch_id: str) -> str:
    """Create a processing batch unless it exists; audit entries reference it."""
    if db.get_batch(batch_id) is None:
        db.create_batch(batch_id=batch_id, filename="seed.csv", file_size=0, total_records=0, uploaded_by="seed")
    return batch_id


def store_organization(db, tax_id: int = ORG_TAX_ID, batch_id: str = "seed", **fields):
    """Insert an organization directly into the store."""
    values = {
        "tax_id": tax_id,
        "legal_name": "Acme SA",
        "address": "Av. Siempre Viva 742",
        "email": "info@acme.example",
    }
    values.update(fields)
    ensure_batch(db, batch_id)
    db.insert_records(
        EntityType.ORGANIZATION,
        [Mutation(operation=AuditOperation.INSERT, key=tax_id, values=values)],
        batch_id=batch_id,
        actor="seed",
    )
    return db.get_organization(tax_id)


def store_item(db, item_code: str = ITEM_CODE, tax_id: int = ORG_TAX_ID, batch_id: str = "seed", **fields):
    """Insert an item directly into the store."""
    values = {
        "item_code": item_code,
        "tax_id": tax_id,
        "product": "Lamp",
        "brand": "Lumo",
        "issued_on": date(2024, 1, 15),
    }
    values.update(fields)
    ensure_batch(db, batch_id)
    db.insert_records(
        EntityType.ITEM,
        [Mutation(operation=AuditOperation.INSERT, key=item_code, values=values)],
        batch_id=batch_id,
        actor="seed",
    )
    return db.get_item(item_code)


@pytest.fixture
def stored_organization(temp_db):
    """An organization already present in the store."""
    return store_organization(temp_db)


@pytest.fixture
def stored_item(temp_db, stored_organization):
    """An item already present in the store, owned by stored_organization."""
    return store_item(temp_db)


def make_file(rows: list[list], headers: list[str] | None = None, filename: str = "upload.csv") -> TabularFile:
    """Build a TabularFile from rows of cell values."""
    return TabularFile(filename=filename, size=1024, headers=list(headers or HEADERS), rows=rows)


def org_row(
    tax_id="30-71234567-8",
    legal_name="Acme SA",
    address="Av. Siempre Viva 742",
    email="info@acme.example",
    item_code=ITEM_CODE,
    product="Lamp",
    brand="Lumo",
    issued_on="15/01/2024",
) -> list:
    """Build one data row matching HEADERS."""
    return [tax_id, legal_name, address, email, item_code, product, brand, issued_on]


def canonical_organization(tax_id=ORG_TAX_ID, row_number=2, **fields) -> CanonicalEntity:
    """Build an organization entity as the mapper would emit it."""
    values = {
        "tax_id": tax_id,
        "legal_name": "Acme SA",
        "address": "Av. Siempre Viva 742",
        "email": "info@acme.example",
    }
    values.update(fields)
    return CanonicalEntity(EntityType.ORGANIZATION, tax_id, values, row_number)


def canonical_item(item_code=ITEM_CODE, tax_id=ORG_TAX_ID, row_number=2, **fields) -> CanonicalEntity:
    """Build an item entity as the mapper would emit it."""
    values = {"item_code": item_code, "product": "Lamp", "brand": "Lumo", "issued_on": date(2024, 1, 15)}
    if tax_id is not None:
        values["tax_id"] = tax_id
    values.update(fields)
    return CanonicalEntity(EntityType.ITEM, item_code, values, row_number)


def mapping_of(organizations=(), items=()) -> MappingResult:
    """Build a mapping result from canonical entities."""
    return MappingResult(
        organizations={entity.key: entity for entity in organizations},
        items={entity.key: entity for entity in items},
        issues=[],
        unmapped_headers=[],
    )


def approve_everything(db, mapping: MappingResult, mode=UpdateMode.MERGE, settings=None) -> ApprovedChanges:
    """Reconcile a mapping against the store and approve every classified change."""
    reconciliation = ReconciliationEngine(db, settings).reconcile(mapping, mode=mode)
    gate = ApprovalGate()
    return gate.submit(reconciliation, gate.initial_state(reconciliation, approved=True))


@pytest.fixture
def write_csv(tmp_path):
    """Return a function writing rows to a CSV file under tmp_path."""

    def write(rows: list[list], headers: list[str] | None = None, name: str = "upload.csv") -> Path:
        path = tmp_path / name
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(headers or HEADERS)
            writer.writerows(rows)
        return path

    return write


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
