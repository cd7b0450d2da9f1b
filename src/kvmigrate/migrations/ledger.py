"""
Version Ledger for kvmigrate
Tracks the schema version of the persisted application data.

The ledger is a single store record holding the last fully applied version
as a plain string. Reads never write: a store without a ledger record (or
with a malformed one) simply reports the configured default version. A
store that cannot be read at all raises StoreError.
"""

import json
import logging
from typing import List, Optional

from ..config import MigrationConfig
from ..errors import LedgerWriteError, StoreError
from ..store import KeyValueStore
from ..versioning import Version, VersionLike, is_valid_version

logger = logging.getLogger(__name__)


class VersionLedger:
    """
    Version Ledger - reads and writes the current data version

    Pattern: One record under config.ledger_key, raw "X.Y.Z" string
    Lifetime: Persistent across application restarts

    Features:
    - Side-effect-free reads with a configured default
    - Tolerates garbage and legacy list-shaped records
    - Clears stale duplicate records before every write
    """

    # Suffix separator for stale duplicates such as "app-data-version:old"
    DUPLICATE_SEPARATOR = ":"

    def __init__(self, store: KeyValueStore, config: Optional[MigrationConfig] = None):
        """
        Initialize Version Ledger.

        Args:
            store: Persisted key/value store
            config: Migration config (default: MigrationConfig())
        """
        self.store = store
        self.config = config or MigrationConfig()

    @property
    def key(self) -> str:
        return self.config.ledger_key

    @property
    def default_version(self) -> Version:
        return Version.parse(self.config.default_version)

    def get_current(self) -> Version:
        """
        Get the current data version.

        Returns:
            Stored version, or the default version if the record is
            missing or malformed

        Raises:
            StoreError: If the store cannot be read. The true version is
                        unknown, so no default is assumed.
        """
        raw = self.store.get(self.key)
        if raw is None:
            return self.default_version

        version = self._parse_record(raw)
        if version is None:
            logger.warning(
                f"Ignoring malformed version ledger '{self.key}': {raw[:80]!r}"
            )
            return self.default_version
        return version

    def _parse_record(self, raw: str) -> Optional[Version]:
        """Parse a plain version string or a legacy [{"id", "value"}] list."""
        if is_valid_version(raw):
            return Version.parse(raw)

        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

        if isinstance(data, str) and is_valid_version(data):
            return Version.parse(data)

        if isinstance(data, list):
            for item in data:
                if isinstance(item, dict):
                    value = item.get("value")
                    if isinstance(value, str) and is_valid_version(value):
                        return Version.parse(value)
        return None

    def set_current(self, version: VersionLike) -> Version:
        """
        Record version as the current data version.

        Deletes every existing ledger record first, then writes the new one,
        so exactly one clean record remains. Writing the same value twice is
        a no-op in effect.

        Args:
            version: New current version

        Returns:
            The normalized Version written

        Raises:
            InvalidVersionFormat: If version is malformed (nothing is deleted)
            LedgerWriteError: If the store rejects the delete or write
        """
        version = Version.coerce(version)

        try:
            for key in self.ledger_keys():
                self.store.delete(key)
            self.store.set(self.key, str(version))
        except StoreError as e:
            raise LedgerWriteError(version, e) from e

        logger.debug(f"Data version set to {version}")
        return version

    def ledger_keys(self) -> List[str]:
        """
        All keys holding ledger records, including stale duplicates.

        Raises:
            StoreError: If the store cannot list keys
        """
        duplicate_prefix = self.key + self.DUPLICATE_SEPARATOR
        return sorted(
            k for k in self.store.list_keys()
            if k == self.key or k.startswith(duplicate_prefix)
        )

    def is_initialized(self) -> bool:
        """
        True if a readable ledger record exists.

        Raises:
            StoreError: If the store cannot be read
        """
        raw = self.store.get(self.key)
        return raw is not None and self._parse_record(raw) is not None

    def __repr__(self) -> str:
        return f"<VersionLedger: {self.key}>"
