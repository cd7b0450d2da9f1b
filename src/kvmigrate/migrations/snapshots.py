"""
Snapshot Manager for kvmigrate

Handles full-store snapshot and restore operations for safe migrations.

Features:
- Timestamped snapshots stored as one aggregate record each
- Retention pruning (oldest removed first)
- Full-overwrite restore from the newest snapshot
- Snapshot verification
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import MigrationConfig
from ..errors import NoSnapshotAvailable, RestoreError, SnapshotWriteError
from ..store import KeyValueStore
from ..versioning import VersionLike

logger = logging.getLogger(__name__)

# Fixed-width UTC stamp embedded in snapshot keys, e.g. 20260101T120000123456Z
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SnapshotInfo:
    """Information about a stored snapshot."""
    key: str
    created_at: datetime
    version: Optional[str] = None
    entry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "key": self.key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "version": self.version,
            "entry_count": self.entry_count,
        }


@dataclass
class Snapshot:
    """A loaded snapshot: metadata plus captured {key: raw value} pairs."""
    info: SnapshotInfo
    entries: Dict[str, str] = field(default_factory=dict)


class SnapshotManager:
    """
    Snapshot Manager - point-in-time copies of the application namespace

    Pattern: One aggregate JSON record per snapshot under
             "<snapshot_prefix><timestamp>"
    Lifetime: Snapshots persist until pruned by retention

    Every key in the namespace is captured except snapshot keys themselves.
    The ledger record is always captured, so a restore also rewinds the
    data version.

    Example:
        manager = SnapshotManager(store, config)
        info = manager.create_snapshot(version="1.0.0")
        # ... perform migration ...
        if migration_failed:
            manager.restore_latest()
    """

    def __init__(self, store: KeyValueStore, config: Optional[MigrationConfig] = None,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize Snapshot Manager.

        Args:
            store: Persisted key/value store
            config: Migration config (default: MigrationConfig())
            clock: Returns the current time; injectable for tests
        """
        self.store = store
        self.config = config or MigrationConfig()
        self._clock = clock

    @property
    def prefix(self) -> str:
        return self.config.snapshot_prefix

    @property
    def retention(self) -> int:
        return self.config.retention

    def _is_captured(self, key: str) -> bool:
        if self.config.is_snapshot_key(key):
            return False
        return self.config.is_namespaced(key) or key == self.config.ledger_key

    def _parse_key(self, key: str) -> Optional[datetime]:
        stamp = key[len(self.prefix):]
        try:
            return datetime.strptime(stamp, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    def _scan_snapshot_keys(self) -> Tuple[List[Tuple[datetime, str]], List[str]]:
        """
        Split keys under the snapshot prefix by whether their timestamp parses.

        Returns:
            (dated, undated): (created_at, key) pairs newest first, and the
            sorted keys whose timestamp is in an unrecognized format
        """
        dated = []
        undated = []
        for key in self.store.list_keys():
            if not self.config.is_snapshot_key(key):
                continue
            created_at = self._parse_key(key)
            if created_at is None:
                undated.append(key)
            else:
                dated.append((created_at, key))
        dated.sort(reverse=True)
        return dated, sorted(undated)

    def _snapshot_keys(self) -> List[Tuple[datetime, str]]:
        """
        Snapshot keys with their embedded timestamps, newest first.

        Keys under the snapshot prefix whose timestamp cannot be parsed are
        left to prune().
        """
        return self._scan_snapshot_keys()[0]

    def _capture(self) -> Dict[str, str]:
        entries = {}
        for key in self.store.list_keys():
            if not self._is_captured(key):
                continue
            value = self.store.get(key)
            if value is not None:
                entries[key] = value
        return entries

    def create_snapshot(self, version: Optional[VersionLike] = None) -> SnapshotInfo:
        """
        Capture every namespaced record into a new snapshot.

        Nothing outside the new snapshot key is written before the snapshot
        is safely stored, so a failure here never alters application data.

        Args:
            version: Data version at capture time, stored as metadata

        Returns:
            SnapshotInfo for the new snapshot

        Raises:
            SnapshotWriteError: If the store cannot be read or the snapshot
                                cannot be written
        """
        try:
            existing = self._snapshot_keys()
            entries = self._capture()
        except Exception as e:
            raise SnapshotWriteError(
                "Failed to capture store contents for snapshot",
                details=f"{type(e).__name__}: {e}",
            ) from e

        # Keys must sort strictly after every existing snapshot
        created_at = self._clock()
        if existing and created_at <= existing[0][0]:
            created_at = existing[0][0] + timedelta(microseconds=1)

        key = f"{self.prefix}{created_at.strftime(TIMESTAMP_FORMAT)}"
        info = SnapshotInfo(
            key=key,
            created_at=created_at,
            version=str(version) if version is not None else None,
            entry_count=len(entries),
        )
        record = {
            "created_at": created_at.isoformat(),
            "version": info.version,
            "entries": entries,
        }

        try:
            self.store.set(key, json.dumps(record, sort_keys=True))
        except Exception as e:
            raise SnapshotWriteError(
                f"Failed to write snapshot {key}",
                details=f"{type(e).__name__}: {e}",
            ) from e

        logger.info(f"Snapshot created: {key} ({len(entries)} entries)")
        self.prune(self.retention)
        return info

    def prune(self, keep: int) -> int:
        """
        Remove old snapshots, keeping only the most recent `keep`.

        Keys under the snapshot prefix with an unrecognized timestamp (such
        as snapshots written by an older release) cannot be restored. They
        are deleted once `keep` restorable snapshots exist, and reported
        until then.

        Failures are logged and skipped; pruning never raises store errors.

        Args:
            keep: Number of recent snapshots to keep

        Returns:
            Number of snapshots deleted
        """
        if keep < 1:
            raise ValueError(f"keep must be >= 1, got {keep}")

        try:
            snapshots, undated = self._scan_snapshot_keys()
        except Exception as e:
            logger.warning(f"Failed to list snapshots for pruning: {e}")
            return 0

        stale = [key for _, key in snapshots[keep:]]
        if undated and len(snapshots) >= keep:
            stale.extend(undated)
        elif undated:
            logger.warning(
                f"Keeping {len(undated)} snapshot key(s) with unrecognized timestamps "
                f"until {keep} restorable snapshots exist: {', '.join(undated)}"
            )

        deleted = 0
        for key in stale:
            try:
                self.store.delete(key)
                deleted += 1
            except Exception as e:
                logger.warning(f"Failed to prune snapshot {key}: {e}")

        if deleted:
            logger.debug(f"Pruned {deleted} old snapshot(s)")
        return deleted

    def load_snapshot(self, key: str) -> Snapshot:
        """
        Load and decode a snapshot record.

        Raises:
            RestoreError: If the record is missing or corrupt
        """
        created_at = self._parse_key(key) if self.config.is_snapshot_key(key) else None
        if created_at is None:
            raise RestoreError(f"Not a snapshot key: {key}")

        try:
            raw = self.store.get(key)
        except Exception as e:
            raise RestoreError(f"Failed to read snapshot {key}",
                               details=f"{type(e).__name__}: {e}") from e
        if raw is None:
            raise RestoreError(f"Snapshot {key} no longer exists")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RestoreError(f"Snapshot {key} is corrupt", details=str(e)) from e

        entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(entries, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in entries.items()
        ):
            raise RestoreError(f"Snapshot {key} is corrupt",
                               details="missing or invalid 'entries' mapping")

        info = SnapshotInfo(
            key=key,
            created_at=created_at,
            version=data.get("version"),
            entry_count=len(entries),
        )
        return Snapshot(info=info, entries=entries)

    def list_snapshots(self) -> List[SnapshotInfo]:
        """
        List all available snapshots.

        Returns:
            SnapshotInfo objects, newest first. Unreadable snapshots are
            listed with entry_count -1.
        """
        infos = []
        for created_at, key in self._snapshot_keys():
            try:
                infos.append(self.load_snapshot(key).info)
            except RestoreError:
                infos.append(SnapshotInfo(key=key, created_at=created_at, entry_count=-1))
        return infos

    def get_latest_snapshot(self) -> Optional[SnapshotInfo]:
        """
        Get the most recent snapshot.

        Returns:
            SnapshotInfo for the latest snapshot, or None if none exist
        """
        snapshots = self._snapshot_keys()
        if not snapshots:
            return None
        created_at, key = snapshots[0]
        try:
            return self.load_snapshot(key).info
        except RestoreError:
            return SnapshotInfo(key=key, created_at=created_at, entry_count=-1)

    def verify_snapshot(self, key: str) -> bool:
        """True if key holds a decodable snapshot."""
        try:
            self.load_snapshot(key)
        except RestoreError:
            return False
        return True

    def restore_latest(self) -> SnapshotInfo:
        """
        Restore the store from the newest snapshot.

        WARNING: This overwrites the application namespace. Every captured
        record is written back verbatim and namespaced records created after
        the snapshot are deleted. The snapshot itself is kept.

        Returns:
            SnapshotInfo of the snapshot restored

        Raises:
            NoSnapshotAvailable: If no snapshot exists
            RestoreError: If the snapshot is corrupt or the store rejects
                          the restore
        """
        try:
            snapshots = self._snapshot_keys()
        except Exception as e:
            raise RestoreError("Failed to list snapshots",
                               details=f"{type(e).__name__}: {e}") from e

        if not snapshots:
            raise NoSnapshotAvailable()

        _, key = snapshots[0]
        snapshot = self.load_snapshot(key)

        try:
            for entry_key, value in snapshot.entries.items():
                self.store.set(entry_key, value)
            for current_key in self.store.list_keys():
                if self._is_captured(current_key) and current_key not in snapshot.entries:
                    self.store.delete(current_key)
        except Exception as e:
            raise RestoreError(f"Failed to restore from snapshot {key}",
                               details=f"{type(e).__name__}: {e}") from e

        logger.info(f"Restored {len(snapshot.entries)} entries from snapshot {key}")
        return snapshot.info

    def __repr__(self) -> str:
        return f"<SnapshotManager: prefix={self.prefix!r}, retention={self.retention}>"
