"""Version parsing and bumping utilities.

Handles conversion between version strings and semver objects, bump
arithmetic, bump-type inference between two versions, and the prerelease
strategies offered by the interactive version prompt.
"""

from __future__ import annotations

import re

import semver

from .errors import ValidationError
from .models import BumpKind

_NUMERIC_ONLY = re.compile(r"^\d+(\.\d+){0,2}$")

PRERELEASE_STRATEGIES = ("next", "prepatch", "preminor", "premajor")


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Incomplete purely numeric versions are padded with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"

    Raises:
        ValidationError: If the string is not a valid semantic version.
    """
    text = version_str.strip()
    if _NUMERIC_ONLY.match(text):
        parts = text.split(".")
        while len(parts) < 3:
            parts.append("0")
        text = ".".join(parts)
    try:
        return semver.Version.parse(text)
    except (ValueError, TypeError) as exc:
        raise ValidationError(
            f"invalid semantic version: {version_str!r}", operation="parse-version"
        ) from exc


def is_valid_semver(version_str: str) -> bool:
    """Return True for a complete semantic version (e.g. "1.2.3-beta.1")."""
    return semver.Version.is_valid(version_str)


def compare_versions(a: str, b: str) -> int:
    """Compare two versions with semver precedence (-1, 0 or 1)."""
    return parse_version(a).compare(parse_version(b))


def bump_version(version_str: str, bump: BumpKind) -> str:
    """Apply a bump to a version and return the new version string.

    Prerelease and build metadata are dropped before bumping, so the result
    is always a release version strictly greater than the input.

    Examples:
        bump_version("1.2.3", BumpKind.MINOR) → "1.3.0"
        bump_version("1.2.3-beta.1", BumpKind.PATCH) → "1.2.4"
        bump_version("1.2.3", BumpKind.NONE) → "1.2.3"
    """
    if bump is BumpKind.NONE:
        return version_str

    base = parse_version(version_str).replace(prerelease=None, build=None)
    if bump is BumpKind.MAJOR:
        return str(base.bump_major())
    if bump is BumpKind.MINOR:
        return str(base.bump_minor())
    return str(base.bump_patch())


def bump_type_of(old: str, new: str) -> BumpKind:
    """Infer which bump moves ``old`` to ``new``.

    Only the numeric release components are compared; moving from a
    prerelease to its own release (1.0.0-beta.1 → 1.0.0) is ``NONE``.
    """
    before = parse_version(old)
    after = parse_version(new)

    if after.major > before.major:
        return BumpKind.MAJOR
    if after.major == before.major and after.minor > before.minor:
        return BumpKind.MINOR
    if (
        after.major == before.major
        and after.minor == before.minor
        and after.patch > before.patch
    ):
        return BumpKind.PATCH
    return BumpKind.NONE


def prerelease_identifier(version_str: str) -> str | None:
    """Return the leading prerelease identifier ("beta" for "1.0.0-beta.2")."""
    prerelease = parse_version(version_str).prerelease
    if not prerelease:
        return None
    return prerelease.split(".")[0]


def next_prerelease(version_str: str, strategy: str, identifier: str) -> str:
    """Compute a prerelease version.

    Strategies:
        next: increment the trailing counter when the identifier matches
            ("1.0.0-beta.1" → "1.0.0-beta.2"), otherwise restart the counter
            under the new identifier; a release version gets a prepatch.
        prepatch / preminor / premajor: bump that component of the release
            version and start a fresh "<identifier>.0" counter.

    Raises:
        ValidationError: For an unknown strategy.
    """
    if strategy not in PRERELEASE_STRATEGIES:
        raise ValidationError(
            f"unknown prerelease strategy: {strategy!r}", operation="next-prerelease"
        )

    current = parse_version(version_str)
    release = current.replace(prerelease=None, build=None)

    if strategy == "next":
        if not current.prerelease:
            return str(release.bump_patch().replace(prerelease=f"{identifier}.0"))
        parts = current.prerelease.split(".")
        if parts[0] != identifier:
            return str(release.replace(prerelease=f"{identifier}.0"))
        for i in range(len(parts) - 1, 0, -1):
            if parts[i].isdigit():
                parts[i] = str(int(parts[i]) + 1)
                break
        else:
            parts.append("0")
        return str(release.replace(prerelease=".".join(parts)))

    if strategy == "premajor":
        bumped = release.bump_major()
    elif strategy == "preminor":
        bumped = release.bump_minor()
    else:
        bumped = release.bump_patch()
    return str(bumped.replace(prerelease=f"{identifier}.0"))
