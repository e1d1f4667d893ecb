"""
quiver.version - Engine version compatibility checks.

The engine reports its version as a semantic version, optionally
prefixed with "v":

    v3.100.0
    3.101.0-alpha.1234+g0a1b2c3

Ordering follows semantic versioning precedence: the release triple
first, then prerelease identifiers (numeric ones compared as numbers,
the rest as text). Any prerelease sorts below its release and build
metadata is ignored.

A workspace refuses to start when the installed engine is older than
MINIMUM_ENGINE_VERSION or belongs to a newer major release. Opting out
skips every rule, including parsing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

from packaging.version import Version

from quiver.errors import (
    MajorVersionMismatchError,
    MinimumVersionError,
    ParseError,
)


MINIMUM_ENGINE_VERSION = "v3.2.0"

SKIP_VERSION_CHECK_VAR = "QUIVER_AUTOMATION_API_SKIP_VERSION_CHECK"

_SEMVER = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


def _identifier_key(ident: str) -> tuple[int, int, str]:
    # Numeric identifiers sort below alphanumeric ones
    if ident.isdigit():
        return (0, int(ident), "")
    return (1, 0, ident)


@total_ordering
@dataclass(frozen=True, eq=False)
class EngineVersion:
    """A parsed engine version."""
    release: Version
    prerelease: tuple[str, ...] = ()
    build: str | None = None
    text: str = ""

    @property
    def major(self) -> int:
        return self.release.major

    @property
    def minor(self) -> int:
        return self.release.minor

    @property
    def micro(self) -> int:
        return self.release.micro

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def _key(self) -> tuple:
        return (
            self.release,
            0 if self.prerelease else 1,
            tuple(_identifier_key(i) for i in self.prerelease),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EngineVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: EngineVersion) -> bool:
        if not isinstance(other, EngineVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.text


def parse_version(text: str) -> EngineVersion:
    """Parse a semantic version string.

    >>> parse_version("v2.21.1-alpha.1234") < parse_version("v2.21.1")
    True
    >>> parse_version("1.0.0-alpha.beta") < parse_version("1.0.0-beta")
    True

    Raises:
        ParseError: text is not major.minor.patch[-pre][+build]
    """
    raw = (text or "").strip()
    m = _SEMVER.match(raw)
    if not m:
        raise ParseError(f"Failed to parse engine version: '{text}'")
    return EngineVersion(
        release=Version(f"{m['major']}.{m['minor']}.{m['patch']}"),
        prerelease=tuple(m["pre"].split(".")) if m["pre"] else (),
        build=m["build"],
        text=raw,
    )


def check_version(
    minimum: str | EngineVersion,
    current: str,
    opt_out: bool = False,
) -> EngineVersion | None:
    """Validate the installed engine version against a minimum.

    Args:
        minimum: lowest supported engine version
        current: version reported by the engine
        opt_out: bypass every check

    Returns:
        The parsed current version, or None when opting out of an
        unparsable version.

    Raises:
        ParseError: current is not a semantic version
        MajorVersionMismatchError: current is from a newer major release
        MinimumVersionError: current is older than minimum
    """
    if opt_out:
        try:
            return parse_version(current)
        except ParseError:
            return None

    min_version = minimum if isinstance(minimum, EngineVersion) else parse_version(minimum)
    cur_version = parse_version(current)

    if min_version.major < cur_version.major:
        raise MajorVersionMismatchError(
            f"Major version mismatch. You are using engine version {current} "
            f"which is not compatible with this library. "
            f"Please upgrade to a compatible release of quiver."
        )
    if min_version > cur_version:
        raise MinimumVersionError(
            f"Minimum version requirement failed. The minimum engine version "
            f"required is {minimum}, found {current}. "
            f"Please upgrade the engine."
        )
    return cur_version
