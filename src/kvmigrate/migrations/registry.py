"""
Migration Registry for kvmigrate

Holds the migration steps known to the running application.

Features:
- Manual registration at start-up (register / register_many)
- Optional auto-discovery of MigrationStep subclasses from a package
- Duplicate target versions rejected
- Steps kept sorted by target version
- Execution plan for a version range (pending_steps)
"""

import importlib
import inspect
import logging
import pkgutil
from typing import Iterable, List, Optional, Type, Union

from ..errors import DuplicateVersion
from ..versioning import Version, VersionLike
from .migration_base import MigrationStep

logger = logging.getLogger(__name__)

StepLike = Union[MigrationStep, Type[MigrationStep]]


class MigrationRegistry:
    """
    Migration Registry - ordered collection of migration steps

    Pattern: Populated once at start-up, append-only afterwards
    Lifetime: Owned by the application's start-up routine

    Example:
        registry = MigrationRegistry()
        registry.register_many([AddActiveFlag(), add_last_modified])
        for step in registry.pending_steps("1.0.0"):
            print(f"Apply {step}")
    """

    def __init__(self, default_version: VersionLike = "1.0.0"):
        """
        Initialize Migration Registry.

        Args:
            default_version: Version reported by latest_version() when no
                             steps are registered (default: "1.0.0")
        """
        self.default_version = Version.coerce(default_version)
        self._steps: List[MigrationStep] = []

    def register(self, step: StepLike) -> MigrationStep:
        """
        Register a migration step.

        Args:
            step: MigrationStep instance, or a MigrationStep subclass which
                  is instantiated

        Returns:
            The registered step instance

        Raises:
            DuplicateVersion: If a step with the same target version exists
            TypeError: If step is not a MigrationStep
            InvalidVersionFormat: If the step's target version is malformed
        """
        if inspect.isclass(step) and issubclass(step, MigrationStep):
            step = step()
        if not isinstance(step, MigrationStep):
            raise TypeError(
                f"Expected a MigrationStep, got {type(step).__name__}; "
                "wrap plain functions with FunctionStep or @migration_step"
            )

        existing = self.get_step(step.target_version)
        if existing is not None:
            raise DuplicateVersion(step.target_version, existing, step)

        self._steps.append(step)
        self._steps.sort(key=lambda s: s.target_version)
        logger.debug(f"Registered {step!r}")
        return step

    def register_many(self, steps: Iterable[StepLike]) -> List[MigrationStep]:
        """
        Register several steps in argument order.

        Stops at the first failure; steps before it stay registered.
        """
        return [self.register(step) for step in steps]

    def discover(self, package: str) -> int:
        """
        Register every MigrationStep subclass defined in a package.

        Scans the package's modules (skipping names starting with "_"),
        imports them, and registers concrete MigrationStep subclasses
        defined in each module.

        Args:
            package: Dotted package name (e.g., "myapp.migrations.versions")

        Returns:
            Number of steps registered

        Raises:
            ImportError: If the package or one of its modules cannot be imported
            DuplicateVersion: If two discovered steps share a target version
        """
        pkg = importlib.import_module(package)
        search_path = getattr(pkg, "__path__", None)
        if search_path is None:
            raise ImportError(f"{package} is a module, not a package")

        count = 0
        for module_info in sorted(pkgutil.iter_modules(search_path), key=lambda m: m.name):
            if module_info.name.startswith("_"):
                continue

            module_name = f"{package}.{module_info.name}"
            module = importlib.import_module(module_name)

            for name, obj in inspect.getmembers(module, inspect.isclass):
                if (issubclass(obj, MigrationStep) and
                        not inspect.isabstract(obj) and
                        obj.__module__ == module_name):
                    self.register(obj)
                    count += 1

        logger.info(f"Discovered {count} migration steps in '{package}'")
        return count

    def get_step(self, version: VersionLike) -> Optional[MigrationStep]:
        """
        Get the step targeting a specific version.

        Returns:
            Step instance or None if not found
        """
        version = Version.coerce(version)
        for step in self._steps:
            if step.target_version == version:
                return step
        return None

    def all_steps(self) -> List[MigrationStep]:
        """All registered steps in ascending target version order."""
        return list(self._steps)

    def pending_steps(self, from_version: VersionLike,
                      to_version: Optional[VersionLike] = None) -> List[MigrationStep]:
        """
        Build the execution plan.

        Returns all steps with target_version > from_version and, if
        to_version is given, target_version <= to_version, in ascending
        order.

        Raises:
            InvalidVersionFormat: If either bound is malformed
        """
        lower = Version.coerce(from_version)
        upper = Version.coerce(to_version) if to_version is not None else None

        return [
            step for step in self._steps
            if step.target_version > lower
            and (upper is None or step.target_version <= upper)
        ]

    def latest_version(self) -> Version:
        """
        Highest target version registered.

        Returns:
            Latest target version, or the default version if empty
        """
        if not self._steps:
            return self.default_version
        return self._steps[-1].target_version

    def has_steps(self) -> bool:
        return len(self._steps) > 0

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self):
        return iter(list(self._steps))

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<MigrationRegistry: {len(self._steps)} steps, latest v{self.latest_version()}>"
