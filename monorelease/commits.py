"""Commit source: read and parse commits from git history.

Commits are read with ``git log`` using ASCII unit/record separators so that
multi-line bodies survive intact, then parsed as conventional commits:

    type(scope)!: description

    body

    BREAKING CHANGE: footer
    Co-authored-by: Name <email>
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path, PurePosixPath
from typing import Literal, Union

from .models import Commit, CommitAuthor, CommitReference, Package
from .shell import git

logger = logging.getLogger(__name__)

GlobalCommitMode = Union[Literal["all", "dependencies"], Literal[False]]

_FIELD = "\x1f"
_RECORD = "\x1e"
_LOG_FORMAT = _FIELD.join(["%H", "%h", "%an", "%ae", "%aI", "%B"]) + _RECORD

_HEADER = re.compile(
    r"^(?P<type>[\w-]+)(?:\((?P<scope>[^)]*)\))?(?P<bang>!)?: (?P<description>.+)$"
)
_BREAKING_FOOTER = re.compile(r"^BREAKING[ -]CHANGE:", re.MULTILINE)
_PR_SUFFIX = re.compile(r"\s*\(#(\d+)\)\s*$")
_ISSUE = re.compile(r"(?<![\w/])#(\d+)\b")
_CO_AUTHOR = re.compile(
    r"^Co-authored-by:\s*(?P<name>.+?)\s*<(?P<email>[^>]+)>\s*$", re.MULTILINE | re.IGNORECASE
)
_NOREPLY = re.compile(r"^(?:\d+\+)?(?P<login>[^@]+)@users\.noreply\.github\.com$")

DEPENDENCY_FILES = frozenset(
    {
        "package.json",
        "pnpm-lock.yaml",
        "pnpm-workspace.yaml",
        "yarn.lock",
        "package-lock.json",
        "npm-shrinkwrap.json",
    }
)


def _author(name: str, email: str) -> CommitAuthor:
    m = _NOREPLY.match(email)
    return CommitAuthor(name=name, email=email, profile=m.group("login") if m else None)


def parse_commit_message(
    message: str,
    *,
    hash: str = "",
    short_hash: str | None = None,
    author_name: str = "",
    author_email: str = "",
    date: str = "",
) -> Commit:
    """Parse a raw commit message into a Commit.

    Examples:
        "feat(core)!: drop node 16" → type "feat", scope "core", breaking
        "fix: handle empty input (#42)" → description "handle empty input",
            pull-request reference "#42"
        "Update README" → not conventional, description "Update README"
    """
    message = message.strip()
    subject, _, body = message.partition("\n")
    subject = subject.strip()

    references: list[CommitReference] = []
    pr = _PR_SUFFIX.search(subject)
    if pr:
        references.append(CommitReference(kind="pull-request", value=f"#{pr.group(1)}"))
        subject = subject[: pr.start()].rstrip()

    seen = {ref.value for ref in references}
    for number in _ISSUE.findall(f"{subject}\n{body}"):
        value = f"#{number}"
        if value not in seen:
            seen.add(value)
            references.append(CommitReference(kind="issue", value=value))

    authors: list[CommitAuthor] = []
    if author_name and author_email:
        authors.append(_author(author_name, author_email))
    for m in _CO_AUTHOR.finditer(body):
        authors.append(_author(m.group("name"), m.group("email")))

    header = _HEADER.match(subject)
    common = dict(
        hash=hash,
        short_hash=short_hash or hash[:7],
        message=message,
        references=references,
        authors=authors,
        date=date,
    )
    if header is None:
        return Commit(description=subject, **common)

    return Commit(
        type=header.group("type").lower(),
        scope=header.group("scope") or None,
        description=header.group("description").strip(),
        is_conventional=True,
        is_breaking=bool(header.group("bang")) or bool(_BREAKING_FOOTER.search(body)),
        **common,
    )


def get_commits(root: Path, rev_range: str | None = None, path: str | None = None) -> list[Commit]:
    """Read commits (newest first), optionally restricted to a range and path.

    Args:
        root: Repository root.
        rev_range: e.g. "pkg@1.0.0..HEAD"; None reads the whole history.
        path: Only commits touching this path.
    """
    args = ["log", f"--format={_LOG_FORMAT}"]
    if rev_range:
        args.append(rev_range)
    if path:
        args.extend(["--", path])

    commits: list[Commit] = []
    for record in git(*args, cwd=root).split(_RECORD):
        record = record.strip("\n")
        if not record:
            continue
        fields = record.split(_FIELD)
        if len(fields) != 6:
            logger.warning("Skipping unparseable git log record: %r", record[:80])
            continue
        full, short, name, email, date, body = fields
        commits.append(
            parse_commit_message(
                body,
                hash=full,
                short_hash=short,
                author_name=name,
                author_email=email,
                date=date,
            )
        )
    return commits


def changed_files(root: Path, commit_hash: str) -> list[str]:
    output = git("diff-tree", "--no-commit-id", "--name-only", "-r", "--root", commit_hash, cwd=root)
    return [line for line in output.splitlines() if line]


def last_package_tag(root: Path, name: str) -> str | None:
    """Find the newest release tag for a package (``<name>@*`` pattern).

    Returns None if the package has never been released.
    """
    tags = git("tag", "--list", f"{name}@*", "--sort=-v:refname", cwd=root, check=False)
    return tags.splitlines()[0] if tags else None


def tag_version(tag: str | None) -> str | None:
    """Extract the version from a ``<name>@<version>`` tag."""
    if not tag or "@" not in tag[1:]:
        return None
    return tag.rsplit("@", 1)[1]


def is_dependency_file(path: str) -> bool:
    """True for manifests and lock files whose change affects every package.

    >>> is_dependency_file("packages/core/package.json")
    True
    >>> is_dependency_file("bun-lock.json")
    True
    >>> is_dependency_file("src/index.ts")
    False
    """
    name = PurePosixPath(path).name
    return name in DEPENDENCY_FILES or "-lock." in name


def _range_since(tag: str | None) -> str | None:
    return f"{tag}..HEAD" if tag else None


def package_commits(
    root: Path,
    packages: Iterable[Package],
    last_tags: Mapping[str, str | None],
) -> dict[str, list[Commit]]:
    """Collect commits touching each package directory since its last tag.

    Packages without commits are omitted from the result.
    """
    result: dict[str, list[Commit]] = {}
    for pkg in packages:
        commits = get_commits(root, _range_since(last_tags.get(pkg.name)), pkg.path)
        logger.debug("%s: %d commits since %s", pkg.name, len(commits), last_tags.get(pkg.name))
        if commits:
            result[pkg.name] = commits
    return result


def global_commits_per_package(
    root: Path,
    packages: Sequence[Package],
    last_tags: Mapping[str, str | None],
    mode: GlobalCommitMode,
) -> dict[str, list[Commit]]:
    """Attribute cross-cutting commits to every package they may affect.

    A global commit touches no package directory. For each package, the
    global commits since that package's own last tag are attributed to it.
    With mode "dependencies" only commits touching a dependency file count;
    with "all" every such commit counts; False disables global commits.
    """
    if mode is False:
        return {}

    package_dirs = [pkg.path.rstrip("/") + "/" for pkg in packages if pkg.path not in ("", ".")]
    files_cache: dict[str, list[str]] = {}

    def is_global(commit: Commit) -> bool:
        if commit.hash not in files_cache:
            files_cache[commit.hash] = changed_files(root, commit.hash)
        files = files_cache[commit.hash]
        if not files:
            return False
        if any(f.startswith(d) for f in files for d in package_dirs):
            return False
        if mode == "dependencies":
            return any(is_dependency_file(f) for f in files)
        return True

    commits_cache: dict[str | None, list[Commit]] = {}
    result: dict[str, list[Commit]] = {}
    for pkg in packages:
        tag = last_tags.get(pkg.name)
        if tag not in commits_cache:
            commits_cache[tag] = [c for c in get_commits(root, _range_since(tag)) if is_global(c)]
        if commits_cache[tag]:
            result[pkg.name] = commits_cache[tag]
    return result


def last_stable_tag(root: Path, name: str) -> str | None:
    """Find the newest ``<name>@*`` tag whose version is not a prerelease."""
    tags = git("tag", "--list", f"{name}@*", "--sort=-v:refname", cwd=root, check=False)
    for tag in tags.splitlines():
        version = tag_version(tag)
        if version and "-" not in version:
            return tag
    return None
