"""
kvmigrate - versioned, rollback-safe migrations for key/value application state

Upgrades a store from whatever data version it carries to the newest
version the running software knows about, snapshotting first and restoring
automatically if a step fails.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .config import MigrationConfig
from .errors import (
    StoreError,
    MigrationError,
    InvalidVersionFormat,
    DuplicateVersion,
    StepApplyError,
    LedgerReadError,
    LedgerWriteError,
    SnapshotWriteError,
    NoSnapshotAvailable,
    RestoreError,
)
from .state import StoreState
from .store import KeyValueStore, MemoryStore, SQLiteStore
from .versioning import Version, compare_versions
from .migrations import (
    MigrationStep,
    FunctionStep,
    migration_step,
    MigrationRegistry,
    VersionLedger,
    SnapshotManager,
    SnapshotInfo,
    MigrationRunner,
    MigrationResult,
    RunState,
)

__all__ = [
    "MigrationConfig",
    "StoreError",
    "MigrationError",
    "InvalidVersionFormat",
    "DuplicateVersion",
    "StepApplyError",
    "LedgerReadError",
    "LedgerWriteError",
    "SnapshotWriteError",
    "NoSnapshotAvailable",
    "RestoreError",
    "StoreState",
    "KeyValueStore",
    "MemoryStore",
    "SQLiteStore",
    "Version",
    "compare_versions",
    "MigrationStep",
    "FunctionStep",
    "migration_step",
    "MigrationRegistry",
    "VersionLedger",
    "SnapshotManager",
    "SnapshotInfo",
    "MigrationRunner",
    "MigrationResult",
    "RunState",
]
