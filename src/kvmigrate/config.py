"""
Migration configuration

Settings can come from keyword arguments, a dict, the `migrations:` section
of a YAML config file, or KVMIGRATE_* environment variables.

Example config.yaml:
    migrations:
      namespace: devinde-tracker
      default_version: "1.0.0"
      retention: 3
"""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .versioning import Version, is_valid_version

ENV_PREFIX = "KVMIGRATE_"
NAMESPACE_SEPARATOR = "-"


@dataclass
class MigrationConfig:
    """
    Keys and limits used by the ledger, snapshot manager and runner.

    ledger_key and snapshot_prefix are derived from namespace unless given
    explicitly.
    """
    namespace: str = "app"
    default_version: str = "1.0.0"
    retention: int = 3
    ledger_key: Optional[str] = field(default=None)
    snapshot_prefix: Optional[str] = field(default=None)

    def __post_init__(self):
        if not self.namespace:
            raise ValueError("namespace must be a non-empty string")
        if not is_valid_version(self.default_version):
            raise ValueError(f"default_version is not a valid version: {self.default_version!r}")
        self.default_version = str(Version.parse(self.default_version))
        if isinstance(self.retention, bool) or not isinstance(self.retention, int):
            raise ValueError(f"retention must be an integer, got {self.retention!r}")
        if self.retention < 1:
            raise ValueError(f"retention must be >= 1, got {self.retention}")
        if self.ledger_key is None:
            self.ledger_key = f"{self.namespace}{NAMESPACE_SEPARATOR}data-version"
        if self.snapshot_prefix is None:
            self.snapshot_prefix = f"{self.namespace}{NAMESPACE_SEPARATOR}backup-"
        if self.ledger_key.startswith(self.snapshot_prefix):
            raise ValueError("ledger_key must not start with snapshot_prefix")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MigrationConfig":
        """Create config from a dictionary; unknown keys are rejected."""
        known = {"namespace", "default_version", "retention", "ledger_key", "snapshot_prefix"}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown migration config keys: {', '.join(sorted(unknown))}")
        kwargs = dict(data)
        if "default_version" in kwargs:
            kwargs["default_version"] = str(kwargs["default_version"])
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, config_path: Path) -> "MigrationConfig":
        """
        Load the `migrations:` section of a YAML config file.

        A missing file or missing section yields the defaults.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        config_data = yaml.safe_load(config_path.read_text()) or {}
        section = config_data.get("migrations") or {}
        if not isinstance(section, dict):
            raise ValueError(f"'migrations' section in {config_path} must be a mapping")
        return cls.from_dict(section)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MigrationConfig":
        """Build config from KVMIGRATE_* environment variables."""
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        for name in ("namespace", "default_version", "ledger_key", "snapshot_prefix"):
            value = env.get(ENV_PREFIX + name.upper())
            if value:
                data[name] = value
        retention = env.get(ENV_PREFIX + "RETENTION")
        if retention:
            try:
                data["retention"] = int(retention)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}RETENTION must be an integer, got {retention!r}")
        return cls.from_dict(data)

    def is_namespaced(self, key: str) -> bool:
        """
        True if key belongs to this application's namespace.

        Keys must be the namespace itself or start with "<namespace>-", so
        "app" does not claim "apple-prefs".
        """
        return key == self.namespace or key.startswith(self.namespace + NAMESPACE_SEPARATOR)

    def is_snapshot_key(self, key: str) -> bool:
        return key.startswith(self.snapshot_prefix)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
