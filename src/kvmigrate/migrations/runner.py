"""
Migration Runner - applies pending migration steps at start-up

Run lifecycle:
    IDLE -> PLANNING -> SNAPSHOTTING -> APPLYING(i) -> COMMITTED
                                                    -> ROLLED_BACK
                                                    -> FAILED

Exactly one snapshot is taken per non-empty run, before the first write.
Steps run strictly one after another in ascending target version order,
and the ledger is advanced after each step before the next one starts. If
a step (or the ledger write that follows it) fails, the snapshot is
restored automatically.

The runner holds no lock: the hosting application must make sure only one
run touches a store at a time.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..config import MigrationConfig
from ..errors import (
    InvalidVersionFormat,
    LedgerReadError,
    LedgerWriteError,
    MigrationError,
    NoSnapshotAvailable,
    RestoreError,
    SnapshotWriteError,
    StepApplyError,
    StoreError,
)
from ..state import StoreState
from ..store import KeyValueStore
from ..versioning import Version, VersionLike
from .ledger import VersionLedger
from .migration_base import MigrationStep
from .registry import MigrationRegistry
from .snapshots import SnapshotInfo, SnapshotManager

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Runner lifecycle states."""
    IDLE = "idle"
    PLANNING = "planning"
    SNAPSHOTTING = "snapshotting"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMMITTED, RunState.ROLLED_BACK, RunState.FAILED)


@dataclass
class MigrationResult:
    """Outcome of one run."""
    success: bool
    status: RunState
    steps_applied: int
    final_version: Optional[Version]
    from_version: Optional[Version] = None
    applied_versions: List[Version] = field(default_factory=list)
    error: Optional[MigrationError] = None
    restore_error: Optional[MigrationError] = None
    snapshot: Optional[SnapshotInfo] = None
    durations_ms: Dict[str, int] = field(default_factory=dict)

    @property
    def rolled_back(self) -> bool:
        return self.status == RunState.ROLLED_BACK

    @property
    def needs_intervention(self) -> bool:
        """
        True when a failed step could not be rolled back.

        The store may mix old- and new-schema records; the application
        should stop starting up.
        """
        return self.restore_error is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "status": self.status.value,
            "steps_applied": self.steps_applied,
            "final_version": str(self.final_version) if self.final_version else None,
            "from_version": str(self.from_version) if self.from_version else None,
            "applied_versions": [str(v) for v in self.applied_versions],
            "error": self.error.to_dict() if self.error else None,
            "restore_error": self.restore_error.to_dict() if self.restore_error else None,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "durations_ms": dict(self.durations_ms),
        }


class MigrationRunner:
    """
    Migration Runner - plans, snapshots, applies and rolls back

    Pattern: Explicitly constructed by the application's start-up routine
    Lifetime: One run per process start; reusable for later no-op runs

    Example:
        store = SQLiteStore(data_dir / "app.sqlite")
        registry = MigrationRegistry()
        registry.register_many([AddActiveFlag(), add_last_modified])

        runner = MigrationRunner(store, registry)
        result = runner.run()
        if result.needs_intervention:
            raise SystemExit("Data migration failed and could not be rolled back")
    """

    def __init__(self,
                 store: KeyValueStore,
                 registry: Optional[MigrationRegistry] = None,
                 config: Optional[MigrationConfig] = None,
                 ledger: Optional[VersionLedger] = None,
                 snapshots: Optional[SnapshotManager] = None):
        """
        Initialize Migration Runner.

        Args:
            store: Persisted key/value store
            registry: Registered steps (default: empty registry using the
                      config's default version)
            config: Migration config (default: MigrationConfig())
            ledger: Version ledger (default: built from store and config)
            snapshots: Snapshot manager (default: built from store and config)
        """
        self.store = store
        self.config = config or MigrationConfig()
        self.registry = (registry if registry is not None
                         else MigrationRegistry(self.config.default_version))
        self.ledger = ledger if ledger is not None else VersionLedger(store, self.config)
        self.snapshots = (snapshots if snapshots is not None
                          else SnapshotManager(store, self.config))
        self.state = RunState.IDLE
        self.step_index: Optional[int] = None

    def needs_migration(self) -> bool:
        """
        True if the ledger is behind the newest registered step.

        Raises:
            StoreError: If the ledger cannot be read
        """
        return bool(self.registry.pending_steps(self.ledger.get_current()))

    def run(self, from_version: Optional[VersionLike] = None,
            to_version: Optional[VersionLike] = None) -> MigrationResult:
        """
        Apply all pending steps.

        Synchronous wrapper around run_async(); call run_async() instead
        when an event loop is already running.

        Args:
            from_version: Plan from this version instead of the ledger's
            to_version: Do not apply steps targeting versions above this

        Returns:
            MigrationResult describing the terminal state
        """
        return asyncio.run(self.run_async(from_version, to_version))

    run_pending = run

    async def run_async(self, from_version: Optional[VersionLike] = None,
                        to_version: Optional[VersionLike] = None) -> MigrationResult:
        """Coroutine form of run(); async steps are awaited one at a time."""
        self.state = RunState.PLANNING
        self.step_index = None

        try:
            recorded = self.ledger.get_current()
        except StoreError as e:
            error = LedgerReadError(e)
            logger.error(f"Migration planning failed: {error} ({error.details})")
            return self._finish(RunState.FAILED, None, error=error)

        try:
            current = Version.coerce(from_version) if from_version is not None else recorded
            ceiling = Version.coerce(to_version) if to_version is not None else None
            plan = self.registry.pending_steps(current, ceiling)
        except InvalidVersionFormat as e:
            logger.error(f"Migration planning failed: {e}")
            return self._finish(RunState.FAILED, recorded, error=e)

        if current < recorded:
            logger.warning(
                f"Planning from {current}, below the recorded data version {recorded}; "
                "steps already applied will run again"
            )

        if not plan:
            logger.info(f"No migrations needed; data version is up to date ({current})")
            return self._finish(RunState.COMMITTED, current, from_version=current)

        logger.info(
            f"Running {len(plan)} migration(s) from {current} to {plan[-1].target_version}"
        )

        self.state = RunState.SNAPSHOTTING
        try:
            state = self._load_state()
        except Exception as e:
            error = SnapshotWriteError("Failed to read application records",
                                       details=f"{type(e).__name__}: {e}")
            logger.error(f"Migration aborted before any change: {error}")
            return self._finish(RunState.FAILED, current, from_version=current, error=error)

        try:
            snapshot = self.snapshots.create_snapshot(version=current)
        except SnapshotWriteError as e:
            logger.error(f"Migration aborted before any change: {e}")
            return self._finish(RunState.FAILED, current, from_version=current, error=e)

        self.state = RunState.APPLYING
        applied: List[Version] = []
        durations: Dict[str, int] = {}

        for index, step in enumerate(plan):
            self.step_index = index
            version = step.target_version
            logger.info(f"Migrating to {version}: {step.description or 'No description'}")
            started = time.monotonic()

            try:
                new_state = await self._apply_step(step, state)
                self._persist(state, new_state)
            except Exception as e:
                error = StepApplyError(version, e)
                return self._recover(error, current, applied, snapshot, durations)

            try:
                self.ledger.set_current(version)
            except LedgerWriteError as e:
                return self._recover(e, current, applied, snapshot, durations)
            except Exception as e:
                error = LedgerWriteError(version, e)
                return self._recover(error, current, applied, snapshot, durations)

            state = new_state
            applied.append(version)
            durations[str(version)] = int((time.monotonic() - started) * 1000)
            logger.info(f"Successfully migrated to version {version}")

        logger.info(f"Migrations applied successfully ({len(applied)} migration(s))")
        return self._finish(
            RunState.COMMITTED, applied[-1],
            from_version=current, applied=applied, snapshot=snapshot, durations=durations,
        )

    def _reserved(self, key: str) -> bool:
        ledger_key = self.config.ledger_key
        return (key == ledger_key
                or key.startswith(ledger_key + VersionLedger.DUPLICATE_SEPARATOR)
                or self.config.is_snapshot_key(key))

    def _load_state(self) -> StoreState:
        """Read every namespaced application record (ledger and snapshots excluded)."""
        records = {}
        for key in self.store.list_keys():
            if not self.config.is_namespaced(key) or self._reserved(key):
                continue
            value = self.store.get(key)
            if value is not None:
                records[key] = value
        return StoreState(records)

    async def _apply_step(self, step: MigrationStep, state: StoreState) -> StoreState:
        """Run one step on a private copy of state and validate its output."""
        working = state.copy()
        output = step.apply(working)
        if inspect.isawaitable(output):
            output = await output

        if output is None:
            output = working
        elif isinstance(output, StoreState):
            pass
        elif isinstance(output, Mapping):
            output = StoreState(output)
        else:
            raise TypeError(
                f"Step {step.target_version} returned {type(output).__name__}; "
                "expected StoreState, dict or None"
            )

        for key, value in output.items():
            if not isinstance(value, str):
                raise TypeError(f"Record {key!r} must be a string, got {type(value).__name__}")
            if self._reserved(key):
                raise ValueError(f"Step {step.target_version} may not write reserved key {key!r}")
        return output

    def _persist(self, old: StoreState, new: StoreState) -> None:
        """Write the records that changed between old and new."""
        changed, removed = old.diff(new)
        for key, value in changed.items():
            self.store.set(key, value)
        for key in removed:
            self.store.delete(key)

    def _recover(self, error: MigrationError, from_version: Version,
                 applied: List[Version], snapshot: SnapshotInfo,
                 durations: Dict[str, int]) -> MigrationResult:
        """Restore the pre-run snapshot after a failure inside APPLYING."""
        cause = getattr(error, "cause", None)
        logger.error(f"Migration step failed: {error}", exc_info=cause)
        logger.error("Migration failed; restoring pre-migration snapshot...")

        try:
            self.snapshots.restore_latest()
        except (NoSnapshotAvailable, RestoreError) as e:
            restore_error = e
        except Exception as e:
            restore_error = RestoreError("Failed to restore from snapshot",
                                         details=f"{type(e).__name__}: {e}")
        else:
            try:
                final = self.ledger.get_current()
            except StoreError as e:
                logger.warning(f"Could not re-read data version after restore: {e}")
                final = None
            logger.error(f"Data restored from snapshot {snapshot.key}; data version is {final}")
            return self._finish(
                RunState.ROLLED_BACK, final, from_version=from_version,
                applied=[], snapshot=snapshot, error=error, durations=durations,
            )

        final = applied[-1] if applied else from_version
        logger.critical(
            f"Restore after failed migration also failed: {restore_error}. "
            f"Store may be partially migrated (last applied version {final}); "
            "manual intervention required"
        )
        return self._finish(
            RunState.FAILED, final, from_version=from_version, applied=applied,
            snapshot=snapshot, error=error, restore_error=restore_error, durations=durations,
        )

    def _finish(self, status: RunState, final_version: Optional[Version],
                from_version: Optional[Version] = None,
                applied: Optional[List[Version]] = None,
                snapshot: Optional[SnapshotInfo] = None,
                error: Optional[MigrationError] = None,
                restore_error: Optional[MigrationError] = None,
                durations: Optional[Dict[str, int]] = None) -> MigrationResult:
        self.state = status
        applied = applied or []
        return MigrationResult(
            success=status == RunState.COMMITTED,
            status=status,
            steps_applied=len(applied),
            final_version=final_version,
            from_version=from_version,
            applied_versions=applied,
            error=error,
            restore_error=restore_error,
            snapshot=snapshot,
            durations_ms=durations or {},
        )

    def __repr__(self) -> str:
        return f"<MigrationRunner: {self.state.value}, {len(self.registry)} steps>"
