"""Version-control adapter.

The git operations the release pipeline needs, built on shell.git(). Every
function takes the workspace root explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from .shell import git

logger = logging.getLogger(__name__)


def current_branch(root: Path) -> str:
    return git("rev-parse", "--abbrev-ref", "HEAD", cwd=root)


def ref_exists(root: Path, ref: str) -> bool:
    return bool(git("rev-parse", "--verify", "--quiet", ref, cwd=root, check=False))


def read_file_at_ref(root: Path, ref: str, path: str) -> str | None:
    """Return a file's contents at ``ref``, or None if it does not exist there."""
    if not ref_exists(root, ref):
        logger.debug("Ref %s not found, reading %s from working tree", ref, path)
        return None
    content = git("show", f"{ref}:{path}", cwd=root, check=False)
    # git show prints nothing for a missing path once check is off
    return content + "\n" if content else None


def is_clean(root: Path) -> bool:
    return not git("status", "--porcelain", cwd=root)


def prepare_branch(root: Path, branch: str, base: str) -> None:
    """Create (or reset) the release branch from the base branch and check it out."""
    start = f"origin/{base}" if ref_exists(root, f"origin/{base}") else base
    logger.debug("Checking out %s from %s", branch, start)
    git("checkout", "-B", branch, start, cwd=root)


def commit_files(root: Path, paths: Iterable[str], message: str) -> bool:
    """Stage ``paths`` and commit them. Returns False when nothing changed."""
    files = list(paths)
    if not files:
        return False
    git("add", "--", *files, cwd=root)
    if not git("diff", "--cached", "--name-only", cwd=root):
        logger.info("No staged changes, skipping commit")
        return False
    git("commit", "-m", message, cwd=root)
    return True


def push_branch(root: Path, branch: str) -> None:
    git("push", "--force-with-lease", "-u", "origin", branch, cwd=root)


def checkout(root: Path, branch: str) -> None:
    git("checkout", branch, cwd=root)


def fetch_branch(root: Path, branch: str) -> None:
    """Fetch ``branch`` from origin so its commits can be read locally."""
    git("fetch", "origin", branch, cwd=root)
