"""
StoreState - the state representation handed to migration steps

A StoreState is an in-memory copy of the application's namespaced records
(key -> raw string). Steps receive a StoreState, transform it and return
it; the runner then persists only what changed. Because steps never touch
the store directly, each step's input and output can be inspected on its
own.
"""

import json
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


class StoreState(Mapping[str, str]):
    """
    Mutable mapping of record keys to raw string values.

    Example:
        def add_active_flag(state: StoreState) -> StoreState:
            sections = state.get_json("app-sections", [])
            for section in sections:
                section.setdefault("active", True)
            state.set_json("app-sections", sections)
            return state
    """

    def __init__(self, records: Optional[Mapping[str, str]] = None):
        self._records: Dict[str, str] = dict(records or {})

    def __getitem__(self, key: str) -> str:
        return self._records[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def set(self, key: str, value: str) -> None:
        """Set the raw string value of a record."""
        if not isinstance(value, str):
            raise TypeError(
                f"Record {key!r} must be a string, got {type(value).__name__}; "
                "use set_json() for structured values"
            )
        self._records[key] = value

    def delete(self, key: str) -> None:
        """Remove a record if present."""
        self._records.pop(key, None)

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Decode a record as JSON.

        Returns default if the record is absent.

        Raises:
            json.JSONDecodeError: If the record is present but not valid JSON
        """
        raw = self._records.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set_json(self, key: str, value: Any) -> None:
        """Encode value as JSON and store it under key."""
        self._records[key] = json.dumps(value)

    def keys_with_prefix(self, prefix: str) -> List[str]:
        """Sorted record keys starting with prefix."""
        return sorted(k for k in self._records if k.startswith(prefix))

    def copy(self) -> "StoreState":
        return StoreState(self._records)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._records)

    def diff(self, other: Mapping[str, str]) -> Tuple[Dict[str, str], List[str]]:
        """
        Compute what must be written to turn this state into other.

        Returns:
            (changed, removed): records to set and keys to delete
        """
        changed = {
            key: value for key, value in other.items()
            if self._records.get(key) != value
        }
        removed = sorted(key for key in self._records if key not in other)
        return changed, removed

    def __eq__(self, other: object) -> bool:
        if isinstance(other, StoreState):
            return self._records == other._records
        if isinstance(other, Mapping):
            return self._records == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"<StoreState: {len(self._records)} records>"
