"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from monorelease.commits import parse_commit_message
from monorelease.models import Commit, Package


@pytest.fixture
def make_package() -> Callable[..., Package]:
    """Factory for Package models."""

    def factory(
        name: str,
        version: str = "1.0.0",
        deps: list[str] | None = None,
        dev_deps: list[str] | None = None,
        path: str | None = None,
    ) -> Package:
        return Package(
            name=name,
            version=version,
            path=path or f"packages/{name.split('/')[-1]}",
            workspace_dependencies=deps or [],
            workspace_dev_dependencies=dev_deps or [],
        )

    return factory


@pytest.fixture
def make_commit() -> Callable[..., Commit]:
    """Factory turning a commit message into a Commit with a fake hash."""
    counter = iter(range(1, 10_000))

    def factory(message: str, hash: str | None = None, **kwargs) -> Commit:
        full = hash or f"{next(counter):07x}" + "a" * 33
        return parse_commit_message(message, hash=full, **kwargs)

    return factory


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A three-package npm workspace: core <- utils <- app."""
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "root", "private": True, "workspaces": ["packages/*"]})
    )
    manifests = {
        "core": {"name": "@acme/core", "version": "1.2.3"},
        "utils": {
            "name": "@acme/utils",
            "version": "2.0.0",
            "dependencies": {"@acme/core": "^1.2.3", "lodash": "^4.17.21"},
        },
        "app": {
            "name": "@acme/app",
            "version": "0.4.0",
            "private": True,
            "dependencies": {"@acme/utils": "workspace:*"},
            "devDependencies": {"@acme/core": "^1.0.0"},
            "peerDependencies": {"@acme/core": ">=1.0.0 <2.0.0"},
        },
    }
    for directory, manifest in manifests.items():
        pkg_dir = tmp_path / "packages" / directory
        pkg_dir.mkdir(parents=True)
        (pkg_dir / "package.json").write_text(json.dumps(manifest, indent=2) + "\n")
    return tmp_path
