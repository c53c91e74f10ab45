"""Configuration loading.

Settings are read with tomlkit from ``monorelease.toml`` at the workspace
root, or from ``[tool.monorelease]`` in a root ``pyproject.toml``, and
validated into a ReleaseConfig. Missing files give the defaults.

Example ``monorelease.toml``::

    repo = "acme/widgets"
    global_commit_mode = "dependencies"

    [branch]
    release = "release/next"
    default = "main"

    [workspace]
    members = ["packages/*"]
    exclude = ["packages/internal-*"]
    exclude_private = true
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal, Union

import tomlkit
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from tomlkit.exceptions import TOMLKitError

from .changelog import DEFAULT_GROUPS, CommitGroup
from .errors import ParseError, ValidationError
from .models import Repository

CONFIG_FILENAME = "monorelease.toml"
DEFAULT_PR_BODY = """\
This pull request prepares the following releases:

{packages}

Merging it will publish the listed versions.
"""


class BranchConfig(BaseModel):
    release: str = "release/next"
    default: str = "main"


class WorkspaceConfig(BaseModel):
    """Which directories are workspace members.

    Attributes:
        members: Glob patterns for package directories. Empty means "use the
            root package.json workspaces field".
        include: If non-empty, only these package names are released.
        exclude: Package names or glob patterns never released.
        exclude_private: Skip packages whose manifest has "private": true.
    """

    members: list[str] = Field(default_factory=list)
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    exclude_private: bool = False


class ChangelogConfig(BaseModel):
    """Changelog settings.

    Attributes:
        combine_prerelease_into_first_stable: When a prerelease is promoted
            to a stable version, list every commit since the last stable tag
            instead of only those since the last prerelease.
    """

    enabled: bool = True
    authors: bool = True
    combine_prerelease_into_first_stable: bool = False
    groups: list[CommitGroup] = Field(default_factory=lambda: list(DEFAULT_GROUPS))


class PromptsConfig(BaseModel):
    versions: bool = True


class PullRequestConfig(BaseModel):
    title: str = "chore: release packages"
    body: str = DEFAULT_PR_BODY


class ReleaseConfig(BaseModel):
    """Validated monorelease settings."""

    repo: str | None = None
    global_commit_mode: Union[Literal["all", "dependencies"], Literal[False]] = "dependencies"
    overrides_file: str = ".github/monorelease.overrides.json"
    branch: BranchConfig = Field(default_factory=BranchConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    changelog: ChangelogConfig = Field(default_factory=ChangelogConfig)
    prompts: PromptsConfig = Field(default_factory=PromptsConfig)
    pull_request: PullRequestConfig = Field(default_factory=PullRequestConfig)

    @field_validator("global_commit_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if value == "none":
            return False
        return value

    @field_validator("repo")
    @classmethod
    def _check_repo(cls, value: str | None) -> str | None:
        if value is not None and value.count("/") != 1:
            raise ValueError(f"repo must look like 'owner/name', got {value!r}")
        return value

    @property
    def repository(self) -> Repository | None:
        if not self.repo:
            return None
        owner, name = self.repo.split("/")
        return Repository(owner=owner, name=name)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomlkit.parse(path.read_text(encoding="utf-8")).unwrap()
    except TOMLKitError as exc:
        raise ParseError(f"{path}: {exc}", operation="load-config") from exc


def load_config(root: Path) -> ReleaseConfig:
    """Load settings for the workspace at ``root``.

    Raises:
        ParseError: If the config file is not valid TOML.
        ValidationError: If a setting has an invalid value.
    """
    raw: dict[str, Any] = {}
    config_file = root / CONFIG_FILENAME
    pyproject = root / "pyproject.toml"

    if config_file.exists():
        raw = _read_toml(config_file)
    elif pyproject.exists():
        raw = _read_toml(pyproject).get("tool", {}).get("monorelease", {})

    try:
        config = ReleaseConfig.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc), operation="load-config") from exc

    if not config.workspace.members:
        config.workspace.members = root_workspace_globs(root)
    return config


def root_workspace_globs(root: Path) -> list[str]:
    """Read member globs from the root package.json ``workspaces`` field.

    Supports both the array form and the ``{"packages": [...]}`` form.
    """
    manifest = root / "package.json"
    if not manifest.exists():
        return []
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ParseError(f"{manifest}: {exc}", operation="load-config") from exc

    workspaces = data.get("workspaces", [])
    if isinstance(workspaces, dict):
        workspaces = workspaces.get("packages", [])
    return [str(pattern) for pattern in workspaces]
