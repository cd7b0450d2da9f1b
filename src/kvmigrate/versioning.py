"""
Version Comparator

Dotted integer versions ("X.Y.Z") with a total order. Missing components
are treated as 0, so "1.2" == "1.2.0" and "2" == "2.0.0".
"""

from dataclasses import dataclass
from typing import Tuple, Union

from .errors import InvalidVersionFormat

VersionLike = Union[str, "Version"]


@dataclass(frozen=True, order=True)
class Version:
    """Immutable (major, minor, patch) triple, ordered most-significant-first."""
    major: int = 0
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, text: str) -> "Version":
        """
        Parse a dotted version string.

        Args:
            text: Version string such as "1.2.0", "1.2" or "3"

        Returns:
            Parsed Version

        Raises:
            InvalidVersionFormat: If the string is empty, has more than three
                components, or any present component is not a plain integer
        """
        if not isinstance(text, str):
            raise InvalidVersionFormat(text, "expected a string")

        parts = text.strip().split(".")
        if len(parts) > 3:
            raise InvalidVersionFormat(text, "at most three components allowed")

        numbers = []
        for part in parts:
            # isdigit() accepts non-ASCII digits that int() may reject
            if not (part.isascii() and part.isdigit()):
                raise InvalidVersionFormat(text)
            numbers.append(int(part))

        while len(numbers) < 3:
            numbers.append(0)

        return cls(*numbers)

    @classmethod
    def coerce(cls, value: VersionLike) -> "Version":
        """Return value unchanged if already a Version, else parse it."""
        if isinstance(value, Version):
            return value
        return cls.parse(value)

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def compare_versions(a: VersionLike, b: VersionLike) -> int:
    """
    Compare two versions.

    Returns:
        -1 if a < b
        0 if a == b
        1 if a > b

    Raises:
        InvalidVersionFormat: If either version cannot be parsed
    """
    va = Version.coerce(a)
    vb = Version.coerce(b)

    if va < vb:
        return -1
    elif va > vb:
        return 1
    else:
        return 0


def is_valid_version(value: str) -> bool:
    """Check whether a string parses as a version."""
    try:
        Version.parse(value)
    except InvalidVersionFormat:
        return False
    return True
