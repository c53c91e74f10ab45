"""Manifest writer.

Applies a finalized release plan to each package's package.json: the new
version, plus updated ranges for every workspace dependency that is itself
being released.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from itertools import groupby
from pathlib import Path

from .graph import update_order
from .models import DependencyGraph, Package, PackageRelease
from .versions import parse_version
from .workspace import MANIFEST_FILENAME, load_manifest

logger = logging.getLogger(__name__)

RANGE_FIELDS = ("dependencies", "devDependencies")
PEER_FIELD = "peerDependencies"
WORKSPACE_PROTOCOL = "workspace:"


def caret_range(version: str) -> str:
    return f"^{version}"


def peer_range(version: str) -> str:
    """Range accepting ``version`` up to, not including, the next major.

    >>> peer_range("2.3.1")
    '>=2.3.1 <3.0.0'
    """
    return f">={version} <{parse_version(version).major + 1}.0.0"


def _rewrite_ranges(section: dict, versions: Mapping[str, str], make_range) -> None:
    for name in section:
        if name not in versions:
            continue
        current = str(section[name])
        # workspace: ranges stay as written
        if current.startswith(WORKSPACE_PROTOCOL):
            continue
        section[name] = make_range(versions[name])


def rewrite_manifest(
    path: Path,
    new_version: str,
    dependency_versions: Mapping[str, str],
) -> None:
    """Set a package's version and update its workspace dependency ranges.

    - "dependencies" / "devDependencies": ``^<version>``
    - "peerDependencies": ``>=<version> <<next major>.0.0``
    - ``workspace:`` protocol ranges are left untouched

    Key order and all other fields are preserved; output uses two-space
    indentation and ends with a newline.

    Args:
        path: Path to the package.json file.
        new_version: New version string to set.
        dependency_versions: Map of workspace package name → its new version.

    Raises:
        ParseError: If the manifest is not valid JSON.
    """
    manifest = load_manifest(path)
    manifest["version"] = new_version

    if dependency_versions:
        for field in RANGE_FIELDS:
            section = manifest.get(field)
            if isinstance(section, dict):
                _rewrite_ranges(section, dependency_versions, caret_range)

        peers = manifest.get(PEER_FIELD)
        if isinstance(peers, dict):
            _rewrite_ranges(peers, dependency_versions, peer_range)

    path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def dependency_versions(pkg: Package, releases: Iterable[PackageRelease]) -> dict[str, str]:
    """New versions of the workspace packages ``pkg`` depends on.

    Only dependencies whose version actually changes in the plan are
    returned. Peer dependencies are looked up in the raw manifest since they
    do not create graph edges.
    """
    new_versions = {
        release.name: release.new_version
        for release in releases
        if release.new_version != release.current_version
    }
    names = [*pkg.all_workspace_dependencies, *pkg.manifest.get(PEER_FIELD, {})]
    return {name: new_versions[name] for name in names if name in new_versions}


def apply_releases(
    releases: Sequence[PackageRelease],
    graph: DependencyGraph,
    root: Path,
    *,
    max_workers: int | None = None,
) -> list[Path]:
    """Write every release's manifest, dependencies before dependents.

    Packages are grouped into dependency levels; each level is written in
    parallel and completes before the next one starts. ``as-is`` releases
    are not written.

    Returns:
        Paths of the written manifests, in write order.

    Raises:
        ParseError: If any manifest is malformed. Writes already completed
            in earlier levels are kept.
    """
    by_name = {release.name: release for release in releases}
    to_write = [
        release.name for release in releases if release.new_version != release.current_version
    ]

    def write(name: str) -> Path:
        release = by_name[name]
        path = root / release.package.path / MANIFEST_FILENAME
        rewrite_manifest(path, release.new_version, dependency_versions(release.package, releases))
        logger.debug("Wrote %s (%s → %s)", path, release.current_version, release.new_version)
        return path

    written: list[Path] = []
    ordered = update_order(graph, to_write)
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        for level, group in groupby(ordered, key=lambda item: item[1]):
            names = [name for name, _ in group]
            logger.debug("Writing level %d: %s", level, ", ".join(names))
            written.extend(pool.map(write, names))

    return written

