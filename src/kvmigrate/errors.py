"""
Exception hierarchy for kvmigrate.

Every error raised by the migration subsystem derives from MigrationError,
which carries a short machine-readable code and can be serialized into the
error detail attached to a MigrationResult.
"""

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Raised by store backends when a read or write cannot be completed"""
    pass


class MigrationError(Exception):
    """Base exception for migration subsystem errors"""

    code = "MIGRATION_ERROR"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details or "",
        }


class InvalidVersionFormat(MigrationError, ValueError):
    """Raised when a version string has a non-numeric component"""

    code = "INVALID_VERSION_FORMAT"

    def __init__(self, value: Any, reason: str = "components must be non-negative integers"):
        self.value = value
        super().__init__(f"Invalid version {value!r}: {reason}")


class DuplicateVersion(MigrationError):
    """Raised when two steps target the same version"""

    code = "DUPLICATE_VERSION"

    def __init__(self, version: Any, existing: Any = None, incoming: Any = None):
        self.version = version
        message = f"Duplicate migration version {version}"
        if existing is not None and incoming is not None:
            message += f": {incoming!r} conflicts with {existing!r}"
        super().__init__(message)


class StepApplyError(MigrationError):
    """Raised when a migration step fails; wraps the underlying cause"""

    code = "STEP_APPLY_ERROR"

    def __init__(self, target_version: Any, cause: BaseException):
        self.target_version = target_version
        self.cause = cause
        super().__init__(
            f"Migration to version {target_version} failed",
            details=f"{type(cause).__name__}: {cause}",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["target_version"] = str(self.target_version)
        return data


class LedgerWriteError(MigrationError):
    """Raised when the version ledger cannot be written"""

    code = "LEDGER_WRITE_ERROR"

    def __init__(self, version: Any, cause: Optional[BaseException] = None):
        self.target_version = version
        self.cause = cause
        details = f"{type(cause).__name__}: {cause}" if cause else None
        super().__init__(f"Failed to record data version {version}", details=details)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["target_version"] = str(self.target_version)
        return data


class LedgerReadError(MigrationError):
    """Raised when the version ledger cannot be read, so the data version is unknown"""

    code = "LEDGER_READ_ERROR"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__("Failed to read the current data version",
                         details=f"{type(cause).__name__}: {cause}")


class SnapshotWriteError(MigrationError):
    """Raised when a pre-migration snapshot cannot be captured or stored"""

    code = "SNAPSHOT_WRITE_ERROR"


class NoSnapshotAvailable(MigrationError):
    """Raised when a restore is requested but no snapshot exists"""

    code = "NO_SNAPSHOT"

    def __init__(self, message: str = "No snapshot found to restore from"):
        super().__init__(message)


class RestoreError(MigrationError):
    """Raised when a snapshot exists but cannot be written back"""

    code = "RESTORE_ERROR"
