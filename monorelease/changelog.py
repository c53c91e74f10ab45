"""Changelog parsing, rendering and merging.

Existing CHANGELOG.md files are parsed structurally so that a new version
entry can be inserted, or an existing one replaced, while every other byte
of the document is preserved. Version headings are recognized by a small,
ordered set of dialects covering the formats these files have historically
been written in:

- conventional-changelog: ``## 1.0.0 (2025-01-16)`` or
  ``## [1.0.0](compare-url) (2025-01-16)``, optionally inside ``<small>``
- changesets: ``## 1.0.0`` followed by bullet sections
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from .errors import ParseError
from .models import (
    ChangelogVersion,
    Commit,
    CommitAuthor,
    Package,
    ParsedChangelog,
    Repository,
)
from .vcs import read_file_at_ref

logger = logging.getLogger(__name__)

CHANGELOG_FILENAME = "CHANGELOG.md"
BREAKING_TITLE = "Breaking Changes"
MISC_TITLE = "Miscellaneous"

EXCLUDED_AUTHORS = (
    re.compile(r"\[bot\]", re.IGNORECASE),
    re.compile(r"dependabot", re.IGNORECASE),
    re.compile(r"\(bot\)", re.IGNORECASE),
)


class CommitGroup(BaseModel):
    """A changelog section and the commit types it collects."""

    name: str
    title: str
    types: list[str] = Field(default_factory=list)


DEFAULT_GROUPS: list[CommitGroup] = [
    CommitGroup(name="features", title="Features", types=["feat", "feature"]),
    CommitGroup(name="fixes", title="Bug Fixes", types=["fix"]),
    CommitGroup(name="performance", title="Performance", types=["perf"]),
    CommitGroup(name="refactor", title="Code Refactoring", types=["refactor"]),
    CommitGroup(name="docs", title="Documentation", types=["docs"]),
    CommitGroup(name="style", title="Styles", types=["style"]),
    CommitGroup(name="tests", title="Tests", types=["test"]),
    CommitGroup(name="build", title="Build System", types=["build"]),
    CommitGroup(name="ci", title="Continuous Integration", types=["ci"]),
    CommitGroup(name="chore", title="Chores", types=["chore"]),
    CommitGroup(name="reverts", title="Reverts", types=["revert"]),
]


# Dialects


class ChangelogDialect:
    """Recognizes version headings written in one changelog convention."""

    name = "base"
    pattern: re.Pattern[str]

    def match(self, line: str) -> str | None:
        """Return the version if ``line`` is a version heading of this dialect."""
        m = self.pattern.match(line.strip())
        if m is None:
            return None
        return next(group for group in m.groups() if group)


class ConventionalDialect(ChangelogDialect):
    name = "conventional"
    pattern = re.compile(
        r"^##\s+(?P<small><small>\s*)?"
        r"(?:\[(?P<linked>[^\]\s]+)\]\([^)]*\)|(?P<bare>[^\s\[\]()<]+))"
        r"\s*(?:\((?P<date>[^)]*)\))?\s*(?(small)</small>)\s*$"
    )

    def match(self, line: str) -> str | None:
        m = self.pattern.match(line.strip())
        if m is None:
            return None
        # The date may only be left out inside <small>
        if m.group("date") is None and m.group("small") is None:
            return None
        return m.group("linked") or m.group("bare")


class ChangesetsDialect(ChangelogDialect):
    name = "changesets"
    pattern = re.compile(r"^##\s+(v?\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.+-]+)?)\s*$")


DIALECTS: tuple[ChangelogDialect, ...] = (ConventionalDialect(), ChangesetsDialect())


def match_version_heading(line: str) -> tuple[str, str] | None:
    """Try each dialect in order; return (version, dialect name) on a match."""
    for dialect in DIALECTS:
        version = dialect.match(line)
        if version:
            return version, dialect.name
    return None


# Parsing


def parse_changelog(document: str) -> ParsedChangelog:
    """Parse a changelog into its header and version blocks.

    A leading ``# name`` line (before any ``## `` heading) is captured as the
    package name. Each version block runs from its heading up to the line
    before the next ``## `` heading, or to the end of the document.
    """
    lines = document.split("\n")
    package_name: str | None = None
    header_line_end = -1

    for i, raw in enumerate(lines):
        line = raw.strip()
        if line.startswith("## "):
            break
        if line.startswith("# "):
            package_name = line[2:].strip()
            header_line_end = i
            break

    versions: list[ChangelogVersion] = []
    for i in range(header_line_end + 1, len(lines)):
        if not lines[i].strip().startswith("## "):
            continue
        matched = match_version_heading(lines[i])
        if matched is None:
            continue
        version, dialect = matched

        line_end = len(lines) - 1
        for j in range(i + 1, len(lines)):
            if lines[j].strip().startswith("## "):
                line_end = j - 1
                break

        versions.append(
            ChangelogVersion(
                version=version,
                line_start=i,
                line_end=line_end,
                content="\n".join(lines[i + 1 : line_end + 1]).strip(),
                raw_block="\n".join(lines[i : line_end + 1]),
                dialect=dialect,
            )
        )

    return ParsedChangelog(
        package_name=package_name,
        header_line_end=header_line_end,
        versions=versions,
        lines=lines,
    )


# Rendering


def _commit_authors(commit: Commit) -> list[CommitAuthor]:
    authors: list[CommitAuthor] = []
    seen: set[str] = set()
    for author in commit.authors:
        if not author.name or not author.email:
            continue
        if any(pattern.search(author.name) for pattern in EXCLUDED_AUTHORS):
            continue
        if author.email in seen:
            continue
        seen.add(author.email)
        authors.append(author)
    return authors


def format_commit_line(
    commit: Commit,
    repository: Repository | None = None,
    *,
    show_authors: bool = True,
) -> str:
    """Format one commit as a changelog line (without the bullet).

    Example:
        "**core:** add parser ([Issue #12](https://github.com/o/r/issues/12))
        ([abc1234](https://github.com/o/r/commit/abc1234...)) (by Jane Doe)"
    """
    line = f"**{commit.scope}:** " if commit.scope else ""
    line += commit.description

    for ref in commit.references:
        number = ref.value.lstrip("#")
        if not number.isdigit():
            continue
        if repository is None:
            line += f" (#{number})"
        elif ref.kind == "issue":
            line += f" ([Issue #{number}]({repository.url}/issues/{number}))"
        else:
            line += f" ([PR #{number}]({repository.url}/pull/{number}))"

    if repository is None:
        line += f" ({commit.short_hash})"
    else:
        line += f" ([{commit.short_hash}]({repository.url}/commit/{commit.hash}))"

    if show_authors:
        authors = _commit_authors(commit)
        if authors:
            names = ", ".join(
                f"[@{a.profile}](https://github.com/{a.profile})" if a.profile else a.name
                for a in authors
            )
            line += f" (by {names})"

    return line


def group_commits(
    commits: Iterable[Commit],
    groups: Sequence[CommitGroup] = DEFAULT_GROUPS,
) -> list[tuple[str, list[Commit]]]:
    """Sort commits into titled sections, in display order.

    Breaking changes come first, then the configured groups, then a
    Miscellaneous catch-all for unknown types and non-conventional commits.
    Empty sections are omitted and duplicate hashes are dropped.
    """
    breaking: list[Commit] = []
    grouped: dict[str, list[Commit]] = {group.name: [] for group in groups}
    misc: list[Commit] = []
    seen: set[str] = set()

    for commit in commits:
        if commit.hash in seen:
            continue
        seen.add(commit.hash)

        if commit.is_breaking:
            breaking.append(commit)
            continue

        commit_type = (commit.type or "").lower()
        target = None
        if commit.is_conventional and commit_type:
            target = next((g for g in groups if commit_type in g.types), None)
        if target is None:
            misc.append(commit)
        else:
            grouped[target.name].append(commit)

    sections: list[tuple[str, list[Commit]]] = []
    if breaking:
        sections.append((BREAKING_TITLE, breaking))
    for group in groups:
        if grouped[group.name]:
            sections.append((group.title, grouped[group.name]))
    if misc:
        sections.append((MISC_TITLE, misc))
    return sections


def render_entry(
    package_name: str,
    version: str,
    commits: Iterable[Commit],
    *,
    previous_version: str | None = None,
    date: str | None = None,
    repository: Repository | None = None,
    groups: Sequence[CommitGroup] = DEFAULT_GROUPS,
    show_authors: bool = True,
) -> str:
    """Render the markdown entry for one version.

    The heading links to a compare view when both a repository and a
    previous version are known:
    ``## [1.1.0](https://github.com/o/r/compare/pkg@1.0.0...pkg@1.1.0) (2025-01-16)``
    """
    date = date or datetime.now(timezone.utc).strftime("%Y-%m-%d")

    if repository is not None and previous_version:
        compare_url = (
            f"{repository.url}/compare/"
            f"{package_name}@{previous_version}...{package_name}@{version}"
        )
        lines = [f"## [{version}]({compare_url}) ({date})"]
    else:
        lines = [f"## {version} ({date})"]

    for title, section in group_commits(commits, groups):
        lines.extend(["", f"### {title}", ""])
        for commit in section:
            line = format_commit_line(commit, repository, show_authors=show_authors)
            lines.append(f"* {line}")

    return "\n".join(lines)


# Merging

_COMMIT_KEY = re.compile(r"\[([0-9a-f]{4,40})\]\([^)]*/commit/[0-9a-f]+\)|\(([0-9a-f]{7,40})\)\s*(?:\(by |$)")


def _bullet_key(line: str) -> str:
    m = _COMMIT_KEY.search(line)
    if m:
        return m.group(1) or m.group(2)
    return line.strip()


def _sections(lines: Sequence[str]) -> list[tuple[str | None, list[str]]]:
    sections: list[tuple[str | None, list[str]]] = [(None, [])]
    for line in lines[1:]:
        stripped = line.strip()
        if stripped.startswith("### "):
            sections.append((stripped[4:].strip(), []))
        elif stripped.startswith(("* ", "- ")):
            sections[-1][1].append(line)
    return [(title, bullets) for title, bullets in sections if title or bullets]


def _union_block(old_lines: Sequence[str], new_lines: Sequence[str]) -> list[str]:
    """Merge an existing version block into a freshly rendered one.

    Bullets from the old block whose commit is missing from the new entry are
    kept, under the section they were listed in.
    """
    new_sections = _sections(new_lines)
    known = {_bullet_key(line) for _, bullets in new_sections for line in bullets}

    extras: list[tuple[str | None, list[str]]] = []
    for title, bullets in _sections(old_lines):
        missing = [line for line in bullets if _bullet_key(line) not in known]
        if missing:
            extras.append((title, missing))

    if not extras:
        return list(new_lines)

    merged = [(title, list(bullets)) for title, bullets in new_sections]
    for title, bullets in extras:
        for existing_title, existing_bullets in merged:
            if existing_title == title:
                existing_bullets.extend(bullets)
                break
        else:
            merged.append((title, bullets))

    lines = [new_lines[0]]
    for title, bullets in merged:
        lines.append("")
        if title:
            lines.extend([f"### {title}", ""])
        lines.extend(bullets)
    return lines


def merge_changelog(document: str | None, entry: str, package_name: str) -> str:
    """Insert or replace a version entry in a changelog document.

    - No document: create ``# <package_name>`` followed by the entry.
    - New version: insert directly below the header; all other blocks are
      preserved byte for byte.
    - Existing version: replace that block in place, unioning its bullets
      with the new entry's, so rerunning for the same version never
      duplicates it.

    Raises:
        ParseError: If ``entry`` does not start with a version heading.
    """
    entry_lines = entry.strip("\n").split("\n")
    matched = match_version_heading(entry_lines[0])
    if matched is None:
        raise ParseError(
            f"changelog entry has no version heading: {entry_lines[0]!r}",
            operation="merge-changelog",
        )
    version = matched[0]

    if document is None or not document.strip():
        return f"# {package_name}\n\n" + "\n".join(entry_lines) + "\n"

    parsed = parse_changelog(document)
    lines = list(parsed.lines)
    existing = parsed.find(version)

    if existing is not None:
        block = lines[existing.line_start : existing.line_end + 1]
        trailing = 0
        while trailing < len(block) and not block[len(block) - 1 - trailing].strip():
            trailing += 1
        body = block[: len(block) - trailing]
        merged = _union_block(body, entry_lines)
        updated = (
            lines[: existing.line_start]
            + merged
            + [""] * trailing
            + lines[existing.line_end + 1 :]
        )
        return "\n".join(updated)

    insert_at = parsed.header_line_end + 1
    before = lines[:insert_at]
    after = lines[insert_at:]
    while after and not after[0].strip():
        after.pop(0)
    if before and before[-1].strip():
        before.append("")

    return "\n".join([*before, *entry_lines, "", *after])


def update_changelog(
    package: Package,
    version: str,
    commits: Sequence[Commit],
    *,
    root: Path,
    previous_version: str | None = None,
    date: str | None = None,
    repository: Repository | None = None,
    groups: Sequence[CommitGroup] = DEFAULT_GROUPS,
    show_authors: bool = True,
    base_ref: str | None = None,
) -> Path:
    """Render and merge a version entry into the package's CHANGELOG.md.

    The base document is read from ``base_ref`` (normally the default
    branch) so an abandoned release pull request leaves no stale entries
    behind; when the file does not exist there, the working tree copy is
    used instead.

    Returns:
        Path of the written changelog.
    """
    path = root / package.path / CHANGELOG_FILENAME
    relative = (Path(package.path) / CHANGELOG_FILENAME).as_posix()

    existing: str | None = None
    if base_ref:
        existing = read_file_at_ref(root, base_ref, relative)
    if existing is None and path.exists():
        existing = path.read_text(encoding="utf-8")
    logger.debug("Existing changelog for %s found: %s", package.name, existing is not None)

    entry = render_entry(
        package.name,
        version,
        commits,
        previous_version=previous_version,
        date=date,
        repository=repository,
        groups=groups,
        show_authors=show_authors,
    )
    path.write_text(merge_changelog(existing, entry, package.name), encoding="utf-8")
    return path
