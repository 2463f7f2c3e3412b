"""Version parsing and minimum-version checks.

Versions are compared as ``(major, minor, patch)`` triples, never as strings,
so ``0.25.10`` sorts after ``0.25.3``.
"""

import re
from typing import NamedTuple

from bicep_bridge.errors import MalformedVersionError

# Leading numeric core, then optional metadata introduced by -, + or whitespace.
_VERSION_RE = re.compile(
    r"^(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?(?P<rest>[-+\s].*)?$",
    re.DOTALL,
)


class Version(NamedTuple):
    """Parsed semantic version triple."""

    major: int
    minor: int = 0
    patch: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class VersionCheck(NamedTuple):
    """Result of a minimum-version check.

    ``minimum`` is the threshold passed in, unchanged, so callers can render
    a "requires at least X" message without carrying the constant around.
    """

    satisfied: bool
    minimum: str


def parse_version(version: str) -> Version:
    """Parse a dotted version string into a ``Version``.

    Missing minor/patch components default to 0. Anything after the numeric
    core that starts with ``-``, ``+`` or whitespace is ignored.

    Args:
        version: Version text such as ``"0.25.3"`` or ``"0.30.3+abc123"``.

    Returns:
        The parsed triple.

    Raises:
        MalformedVersionError: If the text is not a dotted numeric version.
    """
    if not isinstance(version, str):
        raise MalformedVersionError(repr(version), "not a string")

    text = version.strip()
    match = _VERSION_RE.match(text)
    if match is None:
        raise MalformedVersionError(version)

    return Version(
        major=int(match.group("major")),
        minor=int(match.group("minor") or 0),
        patch=int(match.group("patch") or 0),
    )


def has_minimum_version(version: str, minimum: str) -> VersionCheck:
    """Check whether ``version`` is at least ``minimum``.

    Raises:
        MalformedVersionError: If either string cannot be parsed.
    """
    satisfied = parse_version(version) >= parse_version(minimum)
    return VersionCheck(satisfied=satisfied, minimum=minimum)
