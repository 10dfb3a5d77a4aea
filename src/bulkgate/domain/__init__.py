"""Domain layer for bulkgate application."""

from bulkgate.domain.normalizer import Normalizer
from bulkgate.domain.mapper import EntityMapper
from bulkgate.domain.reconciliation import ReconciliationEngine
from bulkgate.domain.approval import ApprovalGate
from bulkgate.domain.backup import BackupService
from bulkgate.domain.applier import BatchApplier
from bulkgate.domain.progress import ProgressReporter
from bulkgate.domain.locks import KeyLockRegistry
from bulkgate.domain.import_pipeline import ImportPipeline
from bulkgate.domain.settings import DuplicatePolicy, ImportSettings

__all__ = [
    "Normalizer",
    "EntityMapper",
    "ReconciliationEngine",
    "ApprovalGate",
    "BackupService",
    "BatchApplier",
    "ProgressReporter",
    "KeyLockRegistry",
    "ImportPipeline",
    "DuplicatePolicy",
    "ImportSettings",
]
