"""Migration engine, orchestrator and strategies."""

from .strategy import (
    MigrationStrategy,
    MigrationContext,
    GithubMigrationStrategy,
    AdoMigrationStrategy,
    BbsMigrationStrategy,
)
from .orchestrator import (
    MigrationOrchestrator,
    MigrationOutcome,
    MigrationResult,
    MigrationSummary,
)
from .engine import MigrationEngine

__all__ = [
    'MigrationStrategy',
    'MigrationContext',
    'GithubMigrationStrategy',
    'AdoMigrationStrategy',
    'BbsMigrationStrategy',
    'MigrationOrchestrator',
    'MigrationOutcome',
    'MigrationResult',
    'MigrationSummary',
    'MigrationEngine',
]
