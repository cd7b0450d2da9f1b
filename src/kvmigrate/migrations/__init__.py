"""
kvmigrate Migration System

Upgrades persisted key/value application data between schema versions with
a pre-run snapshot, per-step version tracking, and automatic rollback.

Key Features:
- Dotted "X.Y.Z" target versions, applied in ascending order
- Version ledger record updated after every step
- One full snapshot before the first write of a run
- Snapshot retention pruning
- Rollback on failure
"""

from .migration_base import MigrationStep, FunctionStep, migration_step
from .registry import MigrationRegistry
from .ledger import VersionLedger
from .snapshots import SnapshotManager, SnapshotInfo, Snapshot
from .runner import MigrationRunner, MigrationResult, RunState

__all__ = [
    "MigrationStep",
    "FunctionStep",
    "migration_step",
    "MigrationRegistry",
    "VersionLedger",
    "SnapshotManager",
    "SnapshotInfo",
    "Snapshot",
    "MigrationRunner",
    "MigrationResult",
    "RunState",
]
