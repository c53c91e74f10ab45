"""Workspace discovery.

Expands the workspace member globs, reads each member's package.json and
records which of its dependencies are other workspace packages.
"""

from __future__ import annotations

import glob
import json
import logging
from fnmatch import fnmatch
from pathlib import Path

from .config import WorkspaceConfig
from .errors import ParseError, ValidationError
from .models import Package

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "package.json"


def load_manifest(path: Path) -> dict:
    """Read and parse a package.json.

    Raises:
        ParseError: If the file is not valid JSON or not a JSON object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ParseError(f"{path}: {exc}", operation="read-manifest") from exc
    if not isinstance(data, dict):
        raise ParseError(f"{path}: expected a JSON object", operation="read-manifest")
    return data


def _member_dirs(root: Path, patterns: list[str]) -> list[Path]:
    dirs: list[Path] = []
    negated = [p[1:] for p in patterns if p.startswith("!")]
    for pattern in patterns:
        if pattern.startswith("!"):
            continue
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            rel = p.relative_to(root).as_posix()
            if any(fnmatch(rel, neg) for neg in negated):
                continue
            if (p / MANIFEST_FILENAME).exists() and p not in dirs:
                dirs.append(p)
    return dirs


def _is_excluded(name: str, manifest: dict, config: WorkspaceConfig) -> bool:
    if config.include and name not in config.include:
        return True
    if any(fnmatch(name, pattern) for pattern in config.exclude):
        return True
    return config.exclude_private and bool(manifest.get("private"))


def discover_packages(root: Path, config: WorkspaceConfig) -> list[Package]:
    """Scan the workspace and return its packages, sorted by name.

    Two passes, as dependency names can only be classified once every
    member is known: first collect name/version/path per member, then keep
    the "dependencies" and "devDependencies" entries that name a workspace
    package.

    Raises:
        ValidationError: If no members are found or two members share a name.
        ParseError: If a member's package.json is malformed.
    """
    member_dirs = _member_dirs(root, config.members)
    if not member_dirs:
        raise ValidationError(
            "No packages found matching workspace members", operation="discover-packages"
        )

    manifests: dict[str, tuple[Path, dict]] = {}
    for d in member_dirs:
        manifest = load_manifest(d / MANIFEST_FILENAME)
        name = manifest.get("name")
        if not name:
            logger.warning("Skipping %s: package.json has no name", d)
            continue
        if name in manifests:
            raise ValidationError(
                f"duplicate package name {name!r} in {manifests[name][0]} and {d}",
                operation="discover-packages",
            )
        manifests[name] = (d, manifest)

    workspace_names = set(manifests)
    packages: list[Package] = []
    for name in sorted(manifests):
        d, manifest = manifests[name]
        if _is_excluded(name, manifest, config):
            logger.debug("Excluding %s from release", name)
            continue
        packages.append(
            Package(
                name=name,
                version=manifest.get("version", "0.0.0"),
                path=d.relative_to(root).as_posix(),
                manifest=manifest,
                workspace_dependencies=[
                    dep for dep in manifest.get("dependencies", {}) if dep in workspace_names
                ],
                workspace_dev_dependencies=[
                    dep for dep in manifest.get("devDependencies", {}) if dep in workspace_names
                ],
            )
        )

    return packages
