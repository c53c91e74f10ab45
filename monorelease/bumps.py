"""Commit classification and bump aggregation.

Maps conventional-commit metadata onto a BumpKind and folds a sequence of
commits into the single most severe bump for a package.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import BumpKind, Commit, CommitType, max_bump

MINOR_TYPES = frozenset({CommitType.FEAT, CommitType.FEATURE})
PATCH_TYPES = frozenset({CommitType.FIX, CommitType.PERF})


def classify(commit: Commit) -> BumpKind:
    """Return the bump a single commit asks for.

    - Non-conventional commits never bump.
    - Breaking changes are major, whatever the type.
    - feat / feature are minor, fix / perf are patch.
    - Every other conventional type (chore, docs, ci, ...) is none.
    """
    if not commit.is_conventional:
        return BumpKind.NONE
    if commit.is_breaking:
        return BumpKind.MAJOR
    if commit.category in MINOR_TYPES:
        return BumpKind.MINOR
    if commit.category in PATCH_TYPES:
        return BumpKind.PATCH
    return BumpKind.NONE


def aggregate(commits: Iterable[Commit]) -> BumpKind:
    """Reduce commits to the highest bump; empty input gives NONE."""
    highest = BumpKind.NONE
    for commit in commits:
        highest = max_bump(highest, classify(commit))
        if highest is BumpKind.MAJOR:
            break
    return highest
