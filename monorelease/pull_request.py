"""Release pull request, via the GitHub CLI.

One pull request per release branch: the body is re-rendered on every run
and the existing PR is edited in place when there is one.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import NamedTuple

from .models import ChangeKind, PackageRelease, Repository
from .shell import gh

logger = logging.getLogger(__name__)

STATUS_CONTEXT = "monorelease/verify"


class PullRequest(NamedTuple):
    number: int
    head_sha: str


def release_line(release: PackageRelease) -> str:
    """One bullet of the pull request body.

    Examples:
        "- `@scope/core`: 1.2.3 → 1.3.0 (minor)"
        "- `@scope/util`: 2.0.0 (as-is)"
    """
    if release.change_kind is ChangeKind.AS_IS:
        return f"- `{release.name}`: {release.current_version} (as-is)"
    line = f"- `{release.name}`: {release.current_version} → {release.new_version}"
    line += f" ({release.bump_type.value})"
    if not release.has_direct_changes:
        line += ", dependency update"
    return line


def render_pull_request_body(template: str, releases: Sequence[PackageRelease]) -> str:
    """Substitute ``{packages}`` in the template with the release list."""
    packages = "\n".join(release_line(r) for r in sorted(releases, key=lambda r: r.name))
    return template.replace("{packages}", packages or "_No packages to release._")


def find_pull_request(root: Path, branch: str, base: str) -> PullRequest | None:
    """The open PR from ``branch`` into ``base``, if any."""
    output = gh(
        "pr",
        "list",
        "--head",
        branch,
        "--base",
        base,
        "--state",
        "open",
        "--json",
        "number,headRefOid",
        cwd=root,
    )
    prs = json.loads(output or "[]")
    if not prs:
        return None
    return PullRequest(prs[0]["number"], prs[0]["headRefOid"])


def sync_pull_request(
    root: Path,
    *,
    branch: str,
    base: str,
    title: str,
    body: str,
) -> int | None:
    """Create the release PR, or update the existing one.

    Returns:
        The PR number when it was updated, None when newly created (gh
        prints the URL of a new PR instead).
    """
    existing = find_pull_request(root, branch, base)
    if existing is not None:
        logger.debug("Updating pull request #%d", existing.number)
        gh("pr", "edit", str(existing.number), "--title", title, "--body", body, cwd=root)
        print(f"  Updated pull request #{existing.number}")
        return existing.number

    url = gh(
        "pr", "create", "--head", branch, "--base", base, "--title", title, "--body", body, cwd=root
    )
    print(f"  Created pull request {url}")
    return None


def set_commit_status(
    root: Path,
    sha: str,
    *,
    state: str,
    description: str,
    repository: Repository | None = None,
    target_url: str | None = None,
) -> None:
    """Set a commit status on ``sha`` through the GitHub REST API.

    Without a configured repository, gh fills in ``{owner}/{repo}`` from the
    checkout's remote.
    """
    slug = repository.slug if repository is not None else "{owner}/{repo}"
    args = [
        "api",
        f"repos/{slug}/statuses/{sha}",
        "-f",
        f"state={state}",
        "-f",
        f"context={STATUS_CONTEXT}",
        "-f",
        f"description={description}",
    ]
    if target_url:
        args.extend(["-f", f"target_url={target_url}"])
    logger.debug("Setting commit status on %s to %s", sha[:7], state)
    gh(*args, cwd=root)
