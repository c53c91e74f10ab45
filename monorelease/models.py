"""Data models for monorelease.

These Pydantic models represent the core data structures that flow through
the release pipeline: parsed commits, workspace packages, the dependency
graph, override decisions and the computed release plan.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class BumpKind(str, Enum):
    """Semantic-version bump severity, totally ordered by rank.

    ``NONE`` doubles as the "nothing to do" sentinel.
    """

    NONE = "none"
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"

    @property
    def rank(self) -> int:
        return _BUMP_RANKS[self]


_BUMP_RANKS = {
    BumpKind.NONE: 0,
    BumpKind.PATCH: 1,
    BumpKind.MINOR: 2,
    BumpKind.MAJOR: 3,
}


def max_bump(a: BumpKind, b: BumpKind) -> BumpKind:
    """Return the more severe of two bumps.

    >>> max_bump(BumpKind.MINOR, BumpKind.PATCH)
    <BumpKind.MINOR: 'minor'>
    """
    return a if a.rank >= b.rank else b


class CommitType(str, Enum):
    """Known conventional-commit type tags.

    Anything else maps to ``OTHER``; the raw string stays on the commit.
    """

    FEAT = "feat"
    FEATURE = "feature"
    FIX = "fix"
    PERF = "perf"
    REFACTOR = "refactor"
    DOCS = "docs"
    STYLE = "style"
    TEST = "test"
    BUILD = "build"
    CI = "ci"
    CHORE = "chore"
    REVERT = "revert"
    OTHER = "other"

    @classmethod
    def of(cls, value: str | None) -> CommitType:
        if not value:
            return cls.OTHER
        try:
            return cls(value.lower())
        except ValueError:
            return cls.OTHER


class CommitReference(BaseModel):
    """An issue or pull request referenced from a commit message."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["issue", "pull-request"]
    value: str


class CommitAuthor(BaseModel):
    """A commit author or co-author.

    Attributes:
        profile: GitHub login, when known. Used to render profile links.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    profile: str | None = None


class Commit(BaseModel):
    """A single parsed commit. Never mutated once created."""

    model_config = ConfigDict(frozen=True)

    hash: str
    short_hash: str
    message: str
    type: str | None = None
    scope: str | None = None
    description: str
    is_conventional: bool = False
    is_breaking: bool = False
    references: list[CommitReference] = Field(default_factory=list)
    authors: list[CommitAuthor] = Field(default_factory=list)
    date: str = ""

    @property
    def category(self) -> CommitType:
        return CommitType.of(self.type)


class Repository(BaseModel):
    """A GitHub repository, used to build absolute links."""

    model_config = ConfigDict(frozen=True)

    owner: str
    name: str

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"


class Package(BaseModel):
    """A workspace member read from its package.json.

    Attributes:
        name: Unique package name (e.g. "@scope/core").
        version: Current version from the manifest.
        path: Package directory, relative to the workspace root.
        manifest: Raw parsed manifest contents.
        workspace_dependencies: Workspace packages listed in "dependencies".
        workspace_dev_dependencies: Workspace packages listed in
            "devDependencies".
    """

    name: str
    version: str
    path: str
    manifest: dict[str, Any] = Field(default_factory=dict)
    workspace_dependencies: list[str] = Field(default_factory=list)
    workspace_dev_dependencies: list[str] = Field(default_factory=list)

    @property
    def all_workspace_dependencies(self) -> list[str]:
        seen: list[str] = []
        for dep in [*self.workspace_dependencies, *self.workspace_dev_dependencies]:
            if dep not in seen:
                seen.append(dep)
        return seen


class DependencyGraph(BaseModel):
    """Read-only view over the package set.

    Attributes:
        packages: Map of package name → Package.
        dependents: Map of package name → names of packages that directly
            depend on it. Only contains workspace package names.
    """

    packages: dict[str, Package] = Field(default_factory=dict)
    dependents: dict[str, set[str]] = Field(default_factory=dict)


class VersionOverride(BaseModel):
    """A persisted human decision that deviates from the inferred bump."""

    model_config = ConfigDict(frozen=True)

    type: BumpKind
    version: str


class ChangeKind(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    AS_IS = "as-is"


class PackageRelease(BaseModel):
    """One entry of the release plan.

    Attributes:
        package: The package being released.
        current_version: Version before the release.
        new_version: Version after the release. Equal to current_version
            for ``as-is`` entries.
        bump_type: Severity of the change between the two versions.
        has_direct_changes: True when the package had commits of its own
            (directly or through global commits).
        change_kind: Whether the version was inferred, chosen by a human,
            or explicitly kept as-is.
    """

    package: Package
    current_version: str
    new_version: str
    bump_type: BumpKind
    has_direct_changes: bool
    change_kind: ChangeKind = ChangeKind.AUTO

    @property
    def name(self) -> str:
        return self.package.name


class VersionPlan(BaseModel):
    """Result of the plan engine.

    The override map is a fresh copy; persisting it is the caller's job.
    """

    releases: list[PackageRelease] = Field(default_factory=list)
    overrides: dict[str, VersionOverride] = Field(default_factory=dict)
    excluded: set[str] = Field(default_factory=set)
    aborted: bool = False


class ChangelogVersion(BaseModel):
    """A single version section of a changelog document.

    Attributes:
        version: Version string from the heading.
        line_start: Index of the heading line.
        line_end: Index of the last line belonging to the block (inclusive).
        content: Block body without the heading line.
        raw_block: The block's exact original text, heading included.
        dialect: Name of the heading dialect that recognized the block.
    """

    version: str
    line_start: int
    line_end: int
    content: str
    raw_block: str
    dialect: str


class ParsedChangelog(BaseModel):
    """Structural parse of a changelog document.

    ``header_line_end`` is -1 when the document has no ``# name`` header.
    """

    package_name: str | None = None
    header_line_end: int = -1
    versions: list[ChangelogVersion] = Field(default_factory=list)
    lines: list[str] = Field(default_factory=list)

    def find(self, version: str) -> ChangelogVersion | None:
        for entry in self.versions:
            if entry.version == version:
                return entry
        return None

    def to_markdown(self) -> str:
        return "\n".join(self.lines)


class RunContext(BaseModel):
    """Explicit run settings threaded through the pipeline.

    Attributes:
        cwd: Workspace root.
        interactive: Whether prompts may be shown (False in CI).
        dry_run: Compute and print the plan without writing anything.
    """

    cwd: Path = Field(default_factory=Path.cwd)
    interactive: bool = False
    dry_run: bool = False
