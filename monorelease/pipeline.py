"""Release pipeline: discover → commits → plan → write → commit → PR.

This module orchestrates the monorelease prepare process:
1. Check out the release branch from the default branch
2. Discover all packages in the workspace
3. Collect commits since each package's last release tag
4. Calculate the version plan (prompting when interactive)
5. Persist or remove the overrides file
6. Rewrite manifests, dependencies before dependents
7. Merge new entries into each package's CHANGELOG.md
8. Commit, push and open or update the release pull request

The plan is computed completely before anything is written, so a failure
while planning leaves the tree untouched.

verify_release() recomputes the plan on the default branch and checks it
against the manifests of the open release pull request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import NamedTuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .changelog import update_changelog
from .commits import (
    get_commits,
    global_commits_per_package,
    last_package_tag,
    last_stable_tag,
    package_commits,
    tag_version,
)
from .config import ReleaseConfig
from .errors import ParseError
from .graph import build_dependency_graph
from .manifest import apply_releases
from .models import (
    ChangeKind,
    Commit,
    Package,
    PackageRelease,
    RunContext,
    VersionOverride,
    VersionPlan,
)
from .plan import Prompter, calculate_plan
from .pull_request import (
    find_pull_request,
    render_pull_request_body,
    set_commit_status,
    sync_pull_request,
)
from .shell import step
from .vcs import (
    checkout,
    commit_files,
    current_branch,
    fetch_branch,
    is_clean,
    prepare_branch,
    push_branch,
    read_file_at_ref,
)
from .versions import compare_versions, prerelease_identifier
from .workspace import MANIFEST_FILENAME, discover_packages

logger = logging.getLogger(__name__)

RELEASE_COMMIT_MESSAGE = "chore: update release versions"

_OVERRIDES = TypeAdapter(dict[str, VersionOverride])


class PlanResult(NamedTuple):
    packages: list[Package]
    plan: VersionPlan
    package_commits: dict[str, list[Commit]]
    global_commits: dict[str, list[Commit]]


# Overrides file


def load_overrides(path: Path) -> dict[str, VersionOverride]:
    """Read the persisted overrides map; a missing file is an empty map.

    Raises:
        ParseError: If the file exists but is not a valid overrides map.
    """
    if not path.exists():
        logger.info("No existing version overrides file found")
        return {}
    return parse_overrides(path.read_text(encoding="utf-8"), str(path))


def parse_overrides(text: str, source: str) -> dict[str, VersionOverride]:
    try:
        return _OVERRIDES.validate_json(text)
    except PydanticValidationError as exc:
        raise ParseError(f"{source}: {exc}", operation="load-overrides") from exc


def save_overrides(
    path: Path,
    previous: Mapping[str, VersionOverride],
    overrides: Mapping[str, VersionOverride],
    releases: Sequence[PackageRelease],
) -> bool:
    """Write, keep or remove the overrides file. Returns True if it changed.

    - Non-empty and different from what was loaded: write it.
    - Empty, but the loaded map was not: remove the file once a planned
      release has moved past a recorded override version.
    """
    if overrides:
        if dict(overrides) == dict(previous):
            print("  Version overrides unchanged")
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {name: o.model_dump(mode="json") for name, o in overrides.items()}
        path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        print(f"  Wrote {len(overrides)} version override(s)")
        return True

    if not previous or not path.exists():
        return False

    obsolete = any(
        release.name in previous
        and compare_versions(release.new_version, previous[release.name].version) > 0
        for release in releases
    )
    if obsolete:
        path.unlink()
        print("  Removed obsolete version overrides file")
        return True
    return False


# Phases


def find_last_tags(root: Path, packages: Sequence[Package]) -> dict[str, str | None]:
    """Find each package's most recent ``<name>@<version>`` tag."""
    step("Finding last release tags")
    tags: dict[str, str | None] = {}
    for pkg in packages:
        tags[pkg.name] = last_package_tag(root, pkg.name)
        print(f"  {pkg.name}: {tags[pkg.name] or '<none>'}")
    return tags


def collect_commits(
    root: Path,
    packages: Sequence[Package],
    last_tags: Mapping[str, str | None],
    config: ReleaseConfig,
) -> tuple[dict[str, list[Commit]], dict[str, list[Commit]]]:
    """Return (package commits, global commits), both keyed by package name."""
    step("Reading commits")
    direct = package_commits(root, packages, last_tags)
    global_ = global_commits_per_package(root, packages, last_tags, config.global_commit_mode)
    for pkg in packages:
        count = len(direct.get(pkg.name, []))
        extra = len(global_.get(pkg.name, []))
        if count or extra:
            print(f"  {pkg.name}: {count} commits, {extra} global")
    return direct, global_


def compute_plan(
    context: RunContext,
    config: ReleaseConfig,
    prompter: Prompter | None = None,
    *,
    overrides: Mapping[str, VersionOverride] | None = None,
) -> PlanResult:
    """Discover packages and compute the plan without writing anything.

    ``overrides`` defaults to the contents of the configured overrides file.
    """
    root = context.cwd
    step("Discovering workspace packages")
    packages = discover_packages(root, config.workspace)
    for pkg in packages:
        deps = pkg.all_workspace_dependencies
        suffix = f" → [{', '.join(deps)}]" if deps else ""
        print(f"  {pkg.name} {pkg.version} ({pkg.path}){suffix}")

    last_tags = find_last_tags(root, packages)
    direct, global_ = collect_commits(root, packages, last_tags, config)
    if overrides is None:
        overrides = load_overrides(root / config.overrides_file)

    step("Calculating versions")
    interactive = context.interactive and config.prompts.versions
    plan = calculate_plan(
        packages,
        direct,
        global_commits=global_,
        overrides=overrides,
        context=context.model_copy(update={"interactive": interactive}),
        prompter=prompter,
    )
    return PlanResult(packages, plan, direct, global_)


def print_plan(plan: VersionPlan) -> None:
    step("Version updates")
    if not plan.releases:
        print("  Nothing to release")
        return
    print(f"  Updating {len(plan.releases)} packages (including dependents)")
    for release in plan.releases:
        suffix = " (as-is)" if release.change_kind is ChangeKind.AS_IS else ""
        print(f"  {release.name}: {release.current_version} → {release.new_version}{suffix}")


def changelog_commits(
    root: Path,
    release: PackageRelease,
    config: ReleaseConfig,
    packages: Sequence[Package],
    direct: Mapping[str, list[Commit]],
    global_: Mapping[str, list[Commit]],
) -> tuple[list[Commit], str | None]:
    """Commits to list for a release, and the version to compare against."""
    name = release.name
    previous = release.current_version if release.current_version != "0.0.0" else None
    commits = [*direct.get(name, []), *global_.get(name, [])]

    promoting = (
        prerelease_identifier(release.current_version) is not None
        and prerelease_identifier(release.new_version) is None
    )
    if config.changelog.combine_prerelease_into_first_stable and promoting:
        stable = last_stable_tag(root, name)
        if stable is not None:
            logger.debug("Combining prerelease entries for %s since %s", name, stable)
            own = get_commits(root, f"{stable}..HEAD", release.package.path)
            globals_since = global_commits_per_package(
                root, packages, {name: stable}, config.global_commit_mode
            )
            commits = [*own, *globals_since.get(name, [])]
            previous = tag_version(stable)

    return commits, previous


def write_changelogs(
    root: Path,
    plan: VersionPlan,
    config: ReleaseConfig,
    packages: Sequence[Package],
    direct: Mapping[str, list[Commit]],
    global_: Mapping[str, list[Commit]],
) -> list[Path]:
    step("Updating changelogs")
    written: list[Path] = []
    for release in plan.releases:
        if release.change_kind is ChangeKind.AS_IS:
            continue
        commits, previous = changelog_commits(root, release, config, packages, direct, global_)
        if not commits:
            logger.debug("No commits for %s, skipping changelog", release.name)
            continue
        path = update_changelog(
            release.package,
            release.new_version,
            commits,
            root=root,
            previous_version=previous,
            repository=config.repository,
            groups=config.changelog.groups,
            show_authors=config.changelog.authors,
            base_ref=config.branch.default,
        )
        print(f"  {release.name}: {path.relative_to(root)}")
        written.append(path)
    print(f"  Updated {len(written)} changelog(s)")
    return written


def prepare_release(
    context: RunContext,
    config: ReleaseConfig,
    prompter: Prompter | None = None,
    *,
    use_git: bool = True,
) -> VersionPlan:
    """Execute the full prepare pipeline.

    Args:
        context: Workspace root and run mode. With ``dry_run`` the plan is
            printed and nothing is written.
        config: Loaded settings.
        prompter: Used when ``context.interactive`` is True.
        use_git: Check out the release branch, commit, push and sync the
            pull request. When False only the working tree is modified.

    Returns:
        The computed plan.
    """
    root = context.cwd
    git_enabled = use_git and not context.dry_run

    if git_enabled:
        step(f"Preparing branch {config.branch.release}")
        if not is_clean(root):
            logger.warning("Working tree has uncommitted changes")
        prepare_branch(root, config.branch.release, config.branch.default)

    packages, plan, direct, global_ = compute_plan(context, config, prompter)
    print_plan(plan)

    if plan.aborted:
        print("\nPrompting cancelled; applying the releases decided so far.")
    if context.dry_run:
        print("\nDry run; nothing was written.")
        return plan
    if not any(release.has_direct_changes for release in plan.releases):
        logger.warning("No packages have changes requiring a release")
    if not plan.releases:
        return plan

    overrides_path = root / config.overrides_file
    previous = load_overrides(overrides_path)
    save_overrides(overrides_path, previous, plan.overrides, plan.releases)

    step("Updating manifests")
    graph = build_dependency_graph(packages)
    manifests = apply_releases(plan.releases, graph, root)
    for path in manifests:
        print(f"  {path.relative_to(root)}")

    changelogs: list[Path] = []
    if config.changelog.enabled:
        changelogs = write_changelogs(root, plan, config, packages, direct, global_)

    if not git_enabled:
        return plan

    step("Committing release changes")
    paths = [p.relative_to(root).as_posix() for p in [*manifests, *changelogs]]
    if overrides_path.exists() or previous:
        paths.append(config.overrides_file)
    if commit_files(root, paths, RELEASE_COMMIT_MESSAGE):
        push_branch(root, config.branch.release)
        print("  Committed and pushed")
    else:
        print("  No changes to commit")

    step("Syncing pull request")
    sync_pull_request(
        root,
        branch=config.branch.release,
        base=config.branch.default,
        title=config.pull_request.title,
        body=render_pull_request_body(config.pull_request.body, plan.releases),
    )

    print(f"\n{'=' * 60}\nDone!\n{'=' * 60}")
    return plan


def released_versions(
    root: Path, ref: str, packages: Sequence[Package]
) -> dict[str, str]:
    """Read each package's manifest version as committed at ``ref``."""
    versions: dict[str, str] = {}
    for pkg in packages:
        content = read_file_at_ref(root, ref, f"{pkg.path}/{MANIFEST_FILENAME}")
        if content is None:
            continue
        try:
            version = json.loads(content).get("version")
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"{pkg.path}/{MANIFEST_FILENAME} at {ref[:7]}: {exc}", operation="verify"
            ) from exc
        if version:
            versions[pkg.name] = version
    return versions


def out_of_sync(plan: VersionPlan, released: Mapping[str, str]) -> list[str]:
    """Names of packages whose planned version is ahead of the released one."""
    stale: list[str] = []
    for release in plan.releases:
        current = released.get(release.name)
        if current is None:
            logger.warning(
                "Package %s found on the default branch but not in the release PR, skipping",
                release.name,
            )
            continue
        if compare_versions(release.new_version, current) > 0:
            print(f"  {release.name}: expected >= {release.new_version}, PR has {current}")
            stale.append(release.name)
        else:
            print(f"  {release.name}: up to date ({current})")
    return stale


def verify_release(context: RunContext, config: ReleaseConfig) -> bool | None:
    """Check that the open release PR still matches the default branch.

    The non-interactive plan is recomputed from the default branch, using the
    overrides file committed on the PR head, and compared with the manifest
    versions at the PR head. The outcome is reported as a commit status on the
    head commit.

    Returns:
        True when the PR is up to date, False when it is out of sync, None
        when there is no open release PR.
    """
    root = context.cwd
    branch, base = config.branch.release, config.branch.default

    step(f"Finding release pull request from {branch}")
    pr = find_pull_request(root, branch, base)
    if pr is None:
        logger.warning("No open release pull request for %s; nothing to verify", branch)
        return None
    print(f"  #{pr.number} at {pr.head_sha[:7]}")
    fetch_branch(root, branch)

    original = current_branch(root)
    if original != base:
        checkout(root, base)
    try:
        content = read_file_at_ref(root, pr.head_sha, config.overrides_file)
        overrides = parse_overrides(content, config.overrides_file) if content else {}
        packages, plan, _, _ = compute_plan(
            context.model_copy(update={"interactive": False}),
            config,
            overrides=overrides,
        )
        released = released_versions(root, pr.head_sha, packages)
    finally:
        if original != base:
            checkout(root, original)

    step("Comparing versions")
    stale = out_of_sync(plan, released)

    if stale:
        set_commit_status(
            root,
            pr.head_sha,
            state="failure",
            description="Release PR is out of sync with the default branch. Re-run prepare.",
            repository=config.repository,
        )
        print(f"  {len(stale)} package(s) out of sync; status set to failure")
        return False

    target_url = (
        f"{config.repository.url}/pull/{pr.number}" if config.repository is not None else None
    )
    set_commit_status(
        root,
        pr.head_sha,
        state="success",
        description="Release PR is up to date.",
        repository=config.repository,
        target_url=target_url,
    )
    print("  Release PR is up to date; status set to success")
    return True
