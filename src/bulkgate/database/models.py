"""SQLAlchemy models for bulkgate database."""

import uuid
from datetime import datetime, UTC

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(UTC)


class Organization(Base):
    """Organization model, keyed by tax id."""

    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True)
    tax_id = Column(BigInteger, unique=True, nullable=False, index=True)
    legal_name = Column(String, nullable=True)
    address = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    contact = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    # Relationships
    items = relationship("Item", back_populates="organization")


class Item(Base):
    """Item model, keyed by item code."""

    __tablename__ = "items"

    id = Column(Integer, primary_key=True)
    item_code = Column(String, unique=True, nullable=False, index=True)
    tax_id = Column(BigInteger, ForeignKey("organizations.tax_id"), nullable=False)
    holder = Column(String, nullable=True)
    certification_type = Column(String, nullable=True)
    status = Column(String, nullable=True)
    manufacturer = Column(String, nullable=True)
    plant = Column(String, nullable=True)
    origin = Column(String, nullable=True)
    product = Column(String, nullable=True)
    brand = Column(String, nullable=True)
    model = Column(String, nullable=True)
    technical_specs = Column(String, nullable=True)
    standards = Column(String, nullable=True)
    test_report_number = Column(String, nullable=True)
    laboratory = Column(String, nullable=True)
    foreign_body = Column(String, nullable=True)
    foreign_certificate_number = Column(String, nullable=True)
    foreign_certificate_issued_on = Column(Date, nullable=True)
    agreement = Column(String, nullable=True)
    category_code = Column(BigInteger, nullable=True)
    subcategory_code = Column(BigInteger, nullable=True)
    subcategory_name = Column(String, nullable=True)
    issued_on = Column(Date, nullable=True)
    expires_on = Column(Date, nullable=True)
    cancelled_on = Column(Date, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    days_to_expiry = Column(Integer, nullable=True)
    certification_body = Column(String, nullable=True)
    certification_scheme = Column(String, nullable=True)

    # Generated downstream; import updates never overwrite these
    public_id = Column(String, unique=True, default=lambda: str(uuid.uuid4()), nullable=False)
    qr_path = Column(String, nullable=True)
    qr_link = Column(String, nullable=True)
    qr_status = Column(String, nullable=True)
    qr_generated_at = Column(DateTime, nullable=True)
    certificate_path = Column(String, nullable=True)
    certificate_status = Column(String, nullable=True)
    declaration_path = Column(String, nullable=True)
    declaration_status = Column(String, nullable=True)
    sent_to_client = Column(String, nullable=True)

    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    # Relationships
    organization = relationship("Organization", back_populates="items")


class ImportBatch(Base):
    """One end-to-end run of the pipeline over one uploaded file."""

    __tablename__ = "import_batches"

    id = Column(String, primary_key=True)
    filename = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    total_records = Column(Integer, nullable=False)
    processed_records = Column(Integer, default=0, nullable=False)
    new_records = Column(Integer, default=0, nullable=False)
    updated_records = Column(Integer, default=0, nullable=False)
    error_records = Column(Integer, default=0, nullable=False)
    status = Column(String, nullable=False)
    uploaded_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    error_summary = Column(JSON, nullable=True)

    # Relationships
    snapshots = relationship("BackupSnapshot", back_populates="batch")


class BackupSnapshot(Base):
    """Backup snapshot header; payloads live in backup_records."""

    __tablename__ = "backup_snapshots"

    id = Column(String, primary_key=True)
    batch_id = Column(String, ForeignKey("import_batches.id"), nullable=False, index=True)
    snapshot_type = Column(String, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    organizations_backed_up = Column(Integer, default=0, nullable=False)
    items_backed_up = Column(Integer, default=0, nullable=False)

    # Relationships
    batch = relationship("ImportBatch", back_populates="snapshots")
    records = relationship("BackupRecord", back_populates="snapshot", cascade="all, delete-orphan")


class BackupRecord(Base):
    """Full payload copy of one record taken before it was updated."""

    __tablename__ = "backup_records"

    id = Column(Integer, primary_key=True)
    snapshot_id = Column(String, ForeignKey("backup_snapshots.id"), nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_key = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)

    # Relationships
    snapshot = relationship("BackupSnapshot", back_populates="records")


class AuditLogEntry(Base):
    """Append-only ledger row; one per successful mutation."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    entity_type = Column(String, nullable=False)
    entity_key = Column(String, nullable=False, index=True)
    batch_id = Column(String, ForeignKey("import_batches.id"), nullable=True, index=True)
    snapshot_id = Column(String, ForeignKey("backup_snapshots.id"), nullable=True)
    operation = Column(String, nullable=False)
    changed_fields = Column(JSON, nullable=True)
    previous_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=False)
    actor = Column(String, nullable=False)
    performed_at = Column(DateTime, default=_now, nullable=False)


class RestoreRecord(Base):
    """History of restores run from a backup snapshot."""

    __tablename__ = "restore_history"

    id = Column(Integer, primary_key=True)
    snapshot_id = Column(String, ForeignKey("backup_snapshots.id"), nullable=False)
    restored_by = Column(String, nullable=False)
    restored_at = Column(DateTime, default=_now, nullable=False)
    organizations_restored = Column(Integer, default=0, nullable=False)
    items_restored = Column(Integer, default=0, nullable=False)
    status = Column(String, nullable=False)
    errors = Column(JSON, nullable=True)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    engine = create_engine(database_url, echo=False)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
