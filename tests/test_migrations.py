"""
Unit tests for Version Ledger and Snapshot Manager

Tests cover:
- Ledger reads with defaults, garbage and legacy records
- Ledger writes clearing stale duplicates
- Snapshot creation, naming and retention
- Restore operations (full overwrite)
- Snapshot listing, verification and error handling
"""

import json
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from kvmigrate.config import MigrationConfig
from kvmigrate.errors import (
    InvalidVersionFormat,
    LedgerWriteError,
    NoSnapshotAvailable,
    RestoreError,
    SnapshotWriteError,
    StoreError,
)
from kvmigrate.migrations.ledger import VersionLedger
from kvmigrate.migrations.snapshots import SnapshotManager, SnapshotInfo
from kvmigrate.store import MemoryStore
from kvmigrate.versioning import Version

from conftest import FlakyStore, StepClock


class TestVersionLedger(unittest.TestCase):
    """Test suite for VersionLedger."""

    def setUp(self):
        self.store = FlakyStore()
        self.config = MigrationConfig(namespace="app", default_version="1.0.0")
        self.ledger = VersionLedger(self.store, self.config)

    # ==================== Reads ====================

    def test_initial_version_is_default(self):
        """Test that a store without a ledger reports the default version."""
        self.assertEqual(self.ledger.get_current(), Version(1, 0, 0))

    def test_read_has_no_side_effects(self):
        """Test that reading the default does not write it back."""
        self.ledger.get_current()
        self.assertEqual(self.store.list_keys(), [])
        self.assertFalse(self.ledger.is_initialized())

    def test_custom_default(self):
        ledger = VersionLedger(self.store, MigrationConfig(default_version="0.0.0"))
        self.assertEqual(ledger.get_current(), Version(0, 0, 0))

    def test_garbage_record_returns_default(self):
        """Test that a corrupted ledger record does not raise."""
        self.store.set("app-data-version", "\x00not-a-version{")
        with self.assertLogs("kvmigrate.migrations.ledger", level="WARNING"):
            self.assertEqual(self.ledger.get_current(), Version(1, 0, 0))
        # Still untouched
        self.assertEqual(self.store.get("app-data-version"), "\x00not-a-version{")

    def test_json_string_record(self):
        self.store.set("app-data-version", '"1.4.0"')
        self.assertEqual(self.ledger.get_current(), Version(1, 4, 0))

    def test_legacy_list_record(self):
        """Test reading the old [{id, value}] record layout."""
        self.store.set("app-data-version", json.dumps([
            {"id": "current", "value": "1.2.0"},
        ]))
        self.assertEqual(self.ledger.get_current(), Version(1, 2, 0))

    def test_legacy_list_record_skips_invalid_entries(self):
        self.store.set("app-data-version", json.dumps([
            {"id": "a", "value": "junk"},
            "not a dict",
            {"id": "b", "value": "1.3.0"},
        ]))
        self.assertEqual(self.ledger.get_current(), Version(1, 3, 0))

    def test_unreadable_store_raises(self):
        """Test that a store fault is not mistaken for a fresh install."""
        self.ledger.set_current("1.2.0")
        with patch.object(self.store, "get", side_effect=StoreError("offline")):
            with self.assertRaises(StoreError):
                self.ledger.get_current()
            with self.assertRaises(StoreError):
                self.ledger.is_initialized()
        self.assertEqual(self.ledger.get_current(), Version(1, 2, 0))

    # ==================== Writes ====================

    def test_set_and_get(self):
        self.ledger.set_current("1.1.0")
        self.assertEqual(self.ledger.get_current(), Version(1, 1, 0))
        self.assertEqual(self.store.get("app-data-version"), "1.1.0")
        self.assertTrue(self.ledger.is_initialized())

    def test_set_normalizes(self):
        self.assertEqual(self.ledger.set_current("2"), Version(2, 0, 0))
        self.assertEqual(self.store.get("app-data-version"), "2.0.0")

    def test_set_is_idempotent(self):
        self.ledger.set_current("1.1.0")
        self.ledger.set_current("1.1.0")
        self.assertEqual(self.ledger.ledger_keys(), ["app-data-version"])
        self.assertEqual(self.ledger.get_current(), Version(1, 1, 0))

    def test_set_after_garbage_leaves_one_clean_entry(self):
        """Test that a corrupted ledger is replaced by exactly one clean record."""
        self.store.set("app-data-version", "garbage!!")
        self.store.set("app-data-version:stale", "0.9.0")
        self.store.set("app-data-version:legacy", "[]")

        self.assertEqual(self.ledger.get_current(), Version(1, 0, 0))
        self.ledger.set_current("1.1.0")

        self.assertEqual(self.ledger.ledger_keys(), ["app-data-version"])
        self.assertEqual(self.store.get("app-data-version"), "1.1.0")

    def test_set_does_not_touch_similar_keys(self):
        self.store.set("app-data-versions-archive", "keep")
        self.ledger.set_current("1.1.0")
        self.assertEqual(self.store.get("app-data-versions-archive"), "keep")

    def test_set_invalid_version_deletes_nothing(self):
        self.ledger.set_current("1.1.0")
        with self.assertRaises(InvalidVersionFormat):
            self.ledger.set_current("1.one.0")
        self.assertEqual(self.store.get("app-data-version"), "1.1.0")

    def test_set_write_failure(self):
        self.store.fail_set = lambda key: key == "app-data-version"
        with self.assertRaises(LedgerWriteError) as context:
            self.ledger.set_current("1.1.0")
        self.assertEqual(context.exception.target_version, Version(1, 1, 0))
        self.assertIsInstance(context.exception.__cause__, StoreError)
        self.assertEqual(context.exception.to_dict()["code"], "LEDGER_WRITE_ERROR")

    def test_set_list_failure(self):
        self.store.fail_list = True
        with self.assertRaises(LedgerWriteError):
            self.ledger.set_current("1.1.0")

    def test_persists_across_instances(self):
        self.ledger.set_current("1.3.0")
        self.assertEqual(VersionLedger(self.store, self.config).get_current(), Version(1, 3, 0))


class TestSnapshotManager(unittest.TestCase):
    """Test suite for SnapshotManager."""

    def setUp(self):
        self.store = FlakyStore({
            "app-data-version": "1.0.0",
            "app-sections": json.dumps([{"id": "s1"}]),
            "app-plans": json.dumps([{"id": "p1"}]),
            "other-tool": "untouched",
        })
        self.config = MigrationConfig(namespace="app", retention=3)
        self.clock = StepClock()
        self.manager = SnapshotManager(self.store, self.config, clock=self.clock)

    def snapshot_keys(self):
        return self.store.keys_with_prefix("app-backup-")

    # ==================== Snapshot Creation ====================

    def test_create_snapshot(self):
        info = self.manager.create_snapshot(version="1.0.0")

        self.assertIsInstance(info, SnapshotInfo)
        self.assertEqual(info.key, "app-backup-20260101T120000000000Z")
        self.assertEqual(info.created_at, datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(info.version, "1.0.0")
        self.assertEqual(info.entry_count, 3)

    def test_snapshot_captures_namespace_only(self):
        info = self.manager.create_snapshot()
        record = json.loads(self.store.get(info.key))

        self.assertEqual(set(record["entries"]), {"app-data-version", "app-sections", "app-plans"})
        self.assertEqual(record["entries"]["app-sections"], self.store.get("app-sections"))
        self.assertNotIn("other-tool", record["entries"])

    def test_snapshot_ignores_keys_sharing_namespace_letters(self):
        """Test that 'app' does not claim 'apple-prefs' or 'application-cache'."""
        self.store.set("apple-prefs", "{}")
        self.store.set("application-cache", "[]")

        info = self.manager.create_snapshot()
        entries = json.loads(self.store.get(info.key))["entries"]

        self.assertNotIn("apple-prefs", entries)
        self.assertNotIn("application-cache", entries)

    def test_restore_keeps_keys_sharing_namespace_letters(self):
        self.manager.create_snapshot()
        self.store.set("apple-prefs", "created later")

        self.manager.restore_latest()

        self.assertEqual(self.store.get("apple-prefs"), "created later")

    def test_snapshot_excludes_other_snapshots(self):
        self.manager.create_snapshot()
        second = self.manager.create_snapshot()
        record = json.loads(self.store.get(second.key))

        self.assertFalse(any(k.startswith("app-backup-") for k in record["entries"]))

    def test_snapshot_captures_ledger_outside_namespace(self):
        config = MigrationConfig(namespace="app", ledger_key="schema-version")
        self.store.set("schema-version", "1.0.0")
        manager = SnapshotManager(self.store, config, clock=self.clock)

        info = manager.create_snapshot()

        self.assertIn("schema-version", json.loads(self.store.get(info.key))["entries"])

    def test_snapshot_write_failure_is_non_destructive(self):
        before = self.store.to_dict()
        self.store.fail_set = lambda key: key.startswith("app-backup-")

        with self.assertRaises(SnapshotWriteError):
            self.manager.create_snapshot()

        self.assertEqual(self.store.to_dict(), before)

    def test_snapshot_read_failure(self):
        self.store.fail_list = True
        with self.assertRaises(SnapshotWriteError) as context:
            self.manager.create_snapshot()
        self.assertIn("StoreError", context.exception.details)

    def test_same_instant_gets_later_key(self):
        """Test that snapshots taken within one clock tick still order correctly."""
        fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
        manager = SnapshotManager(self.store, self.config, clock=lambda: fixed)

        first = manager.create_snapshot()
        second = manager.create_snapshot()

        self.assertGreater(second.created_at, first.created_at)
        self.assertEqual(manager.get_latest_snapshot().key, second.key)

    def test_real_clock_keys_unique(self):
        manager = SnapshotManager(self.store, self.config)
        keys = {manager.create_snapshot().key for _ in range(3)}
        self.assertEqual(len(keys), 3)

    # ==================== Retention ====================

    def test_retention_keeps_three_of_five(self):
        """Test that after 5 snapshots exactly 3 remain, the newest ones."""
        created = [self.manager.create_snapshot() for _ in range(5)]

        remaining = self.snapshot_keys()

        self.assertEqual(len(remaining), 3)
        self.assertEqual(remaining, sorted(info.key for info in created[2:]))

    def test_prune_failure_is_logged(self):
        for _ in range(3):
            self.manager.create_snapshot()
        self.store.fail_delete = lambda key: key.startswith("app-backup-")

        with self.assertLogs("kvmigrate.migrations.snapshots", level="WARNING"):
            info = self.manager.create_snapshot()

        self.assertIn(info.key, self.snapshot_keys())
        self.assertEqual(len(self.snapshot_keys()), 4)

    def test_prune_explicit(self):
        for _ in range(3):
            self.manager.create_snapshot()
        self.assertEqual(self.manager.prune(1), 2)
        self.assertEqual(len(self.snapshot_keys()), 1)

    def test_prune_invalid_keep(self):
        with self.assertRaises(ValueError):
            self.manager.prune(0)

    # ==================== Restore ====================

    def test_restore_latest(self):
        self.manager.create_snapshot()
        before = {k: v for k, v in self.store.to_dict().items() if not k.startswith("app-backup-")}

        self.store.set("app-sections", "[]")
        self.store.set("app-data-version", "1.2.0")
        self.store.delete("app-plans")

        self.manager.restore_latest()

        after = {k: v for k, v in self.store.to_dict().items() if not k.startswith("app-backup-")}
        self.assertEqual(after, before)

    def test_restore_removes_keys_created_after_snapshot(self):
        """Test that restore is a full overwrite, not a merge."""
        self.manager.create_snapshot()
        self.store.set("app-new-record", "{}")

        self.manager.restore_latest()

        self.assertIsNone(self.store.get("app-new-record"))
        self.assertEqual(self.store.get("other-tool"), "untouched")

    def test_restore_uses_most_recent(self):
        self.manager.create_snapshot()
        self.store.set("app-sections", "second")
        latest = self.manager.create_snapshot()
        self.store.set("app-sections", "third")

        restored = self.manager.restore_latest()

        self.assertEqual(restored.key, latest.key)
        self.assertEqual(self.store.get("app-sections"), "second")

    def test_restore_keeps_snapshot(self):
        info = self.manager.create_snapshot()
        self.manager.restore_latest()
        self.assertIn(info.key, self.snapshot_keys())

    def test_restore_without_snapshot(self):
        with self.assertRaises(NoSnapshotAvailable):
            self.manager.restore_latest()

    def test_restore_corrupt_snapshot(self):
        info = self.manager.create_snapshot()
        self.store.set(info.key, "{truncated")

        with self.assertRaises(RestoreError) as context:
            self.manager.restore_latest()
        self.assertIn("corrupt", str(context.exception))

    def test_restore_snapshot_missing_entries(self):
        info = self.manager.create_snapshot()
        self.store.set(info.key, json.dumps({"created_at": "x"}))

        with self.assertRaises(RestoreError):
            self.manager.restore_latest()

    def test_restore_write_failure(self):
        self.manager.create_snapshot()
        self.store.fail_set = lambda key: key == "app-sections"

        with self.assertRaises(RestoreError) as context:
            self.manager.restore_latest()
        self.assertEqual(context.exception.code, "RESTORE_ERROR")

    def test_unparsable_snapshot_keys_ignored(self):
        self.store.set("app-backup-not-a-timestamp", "{}")
        with self.assertRaises(NoSnapshotAvailable):
            self.manager.restore_latest()

    # ==================== Unrecognized Snapshot Keys ====================

    def test_unrecognized_snapshot_kept_and_reported_below_retention(self):
        legacy = "app-backup-2024-03-01T10:00:00.000Z"
        self.store.set(legacy, "[]")

        with self.assertLogs("kvmigrate.migrations.snapshots", level="WARNING") as logs:
            self.manager.create_snapshot()

        self.assertIn(legacy, self.store.list_keys())
        self.assertIn(legacy, "\n".join(logs.output))

    def test_unrecognized_snapshot_pruned_once_retention_reached(self):
        legacy = "app-backup-2024-03-01T10:00:00.000Z"
        self.store.set(legacy, "[]")

        created = [self.manager.create_snapshot() for _ in range(3)]

        self.assertNotIn(legacy, self.store.list_keys())
        self.assertEqual(self.snapshot_keys(), sorted(info.key for info in created))

    # ==================== Listing & Verification ====================

    def test_list_snapshots_newest_first(self):
        first = self.manager.create_snapshot(version="1.0.0")
        second = self.manager.create_snapshot(version="1.1.0")

        snapshots = self.manager.list_snapshots()

        self.assertEqual([s.key for s in snapshots], [second.key, first.key])
        self.assertEqual(snapshots[0].version, "1.1.0")

    def test_list_snapshots_marks_corrupt(self):
        info = self.manager.create_snapshot()
        self.store.set(info.key, "garbage")

        snapshots = self.manager.list_snapshots()

        self.assertEqual(snapshots[0].entry_count, -1)

    def test_get_latest_snapshot_empty(self):
        self.assertIsNone(self.manager.get_latest_snapshot())

    def test_verify_snapshot(self):
        info = self.manager.create_snapshot()
        self.assertTrue(self.manager.verify_snapshot(info.key))
        self.assertFalse(self.manager.verify_snapshot("app-backup-20990101T000000000000Z"))
        self.assertFalse(self.manager.verify_snapshot("app-sections"))

    def test_load_snapshot(self):
        info = self.manager.create_snapshot()
        snapshot = self.manager.load_snapshot(info.key)
        self.assertEqual(snapshot.entries["app-data-version"], "1.0.0")
        self.assertEqual(snapshot.info.entry_count, 3)

    def test_snapshot_info_to_dict(self):
        info = self.manager.create_snapshot(version="1.0.0")
        data = info.to_dict()
        self.assertEqual(data["key"], info.key)
        self.assertEqual(data["version"], "1.0.0")
        self.assertEqual(data["created_at"], "2026-01-01T12:00:00+00:00")


class TestSnapshotManagerDefaults(unittest.TestCase):

    def test_default_config(self):
        manager = SnapshotManager(MemoryStore())
        self.assertEqual(manager.prefix, "app-backup-")
        self.assertEqual(manager.retention, 3)


if __name__ == "__main__":
    unittest.main()
