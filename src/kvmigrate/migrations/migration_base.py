"""
Migration Step Base Class

A migration step transforms persisted application state from the shape of
the previous version to the shape of its target version.

Pattern:
- Each step has a unique target version ("X.Y.Z")
- apply() receives a StoreState and returns the transformed StoreState
- Failure is signalled by raising; the runner rolls the store back
- Steps are applied in ascending target version order
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

from ..state import StoreState
from ..versioning import Version

StepOutput = Union[StoreState, dict, None]
ApplyFunction = Callable[[StoreState], Union[StepOutput, Awaitable[StepOutput]]]


class MigrationStep(ABC):
    """
    Abstract base class for migration steps.

    Subclasses define:
    - target_version: Version string this step upgrades to (e.g., "1.1.0")
    - description: Human-readable description of the change
    - apply(): The transformation

    Example:
        class AddActiveFlag(MigrationStep):
            target_version = "1.1.0"
            description = "Add 'active' field to sections"

            def apply(self, state: StoreState) -> StoreState:
                sections = state.get_json("app-sections", [])
                for section in sections:
                    section.setdefault("active", True)
                state.set_json("app-sections", sections)
                return state

    apply() may also be declared `async def`; the runner awaits it before
    moving on.
    """

    # Subclasses must define these
    target_version: Union[str, Version]
    description: str = ""

    def __init__(self):
        """Validate and normalize required attributes."""
        if not hasattr(self, "target_version"):
            raise ValueError(
                f"{self.__class__.__name__} must define 'target_version'"
            )
        # Raises InvalidVersionFormat for malformed versions
        self.target_version = Version.coerce(self.target_version)
        if self.description is None:
            self.description = ""
        if not isinstance(self.description, str):
            raise ValueError(
                f"{self.__class__.__name__} must define 'description' as a string"
            )

    @abstractmethod
    def apply(self, state: StoreState) -> StepOutput:
        """
        Transform state to the target version's shape.

        Args:
            state: Private copy of the application records. Mutating it is
                   allowed; returning None means "use the mutated state".

        Returns:
            The new state (StoreState, dict of raw strings, or None)

        Raises:
            Exception: Any failure. Triggers rollback of the whole run.
        """
        pass

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.apply)

    def __repr__(self) -> str:
        """String representation for logging."""
        return f"<MigrationStep v{self.target_version}: {self.description}>"

    def __eq__(self, other) -> bool:
        """Compare steps by target version."""
        if not isinstance(other, MigrationStep):
            return False
        return self.target_version == other.target_version

    def __lt__(self, other) -> bool:
        """Order steps by target version."""
        if not isinstance(other, MigrationStep):
            return NotImplemented
        return self.target_version < other.target_version

    def __hash__(self) -> int:
        """Hash by target version for use in sets/dicts."""
        return hash(self.target_version)


class FunctionStep(MigrationStep):
    """Adapts a plain (sync or async) function into a MigrationStep."""

    def __init__(self, target_version: Union[str, Version], func: ApplyFunction,
                 description: Optional[str] = None):
        if not callable(func):
            raise TypeError(f"Migration function for {target_version} must be callable")
        self.target_version = target_version
        self.description = description if description is not None else (inspect.getdoc(func) or "")
        self.func = func
        super().__init__()

    def apply(self, state: StoreState) -> Any:
        return self.func(state)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)


def migration_step(target_version: str, description: Optional[str] = None):
    """
    Decorator turning a function into a FunctionStep.

    Example:
        @migration_step("1.2.0", "Add lastModified to business plans")
        def add_last_modified(state):
            ...
            return state

        registry.register(add_last_modified)
    """
    def decorator(func: ApplyFunction) -> FunctionStep:
        return FunctionStep(target_version, func, description)
    return decorator
