"""
Workspace migration: owner backfill, ordering seed and template cloning.

Usage:
    from src.migration import MigrationOrchestrator
    from src.store import DocumentStore

    report = MigrationOrchestrator(DocumentStore()).run()
"""

from src.migration.clone import (
    CloneArena,
    CloneError,
    CloneOutcome,
    TemplateCloner,
    TemplateSnapshot,
)
from src.migration.order_seed import OrderSeeder
from src.migration.orchestrator import Dataset, MigrationOrchestrator
from src.migration.ownership import OwnershipResolver, is_malformed_conversation
from src.migration.report import MigrationReport

__all__ = [
    "CloneArena",
    "CloneError",
    "CloneOutcome",
    "Dataset",
    "MigrationOrchestrator",
    "MigrationReport",
    "OrderSeeder",
    "OwnershipResolver",
    "TemplateCloner",
    "TemplateSnapshot",
    "is_malformed_conversation",
]
