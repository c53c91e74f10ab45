"""Version plan engine.

Turns per-package commits, cross-cutting ("global") commits, previously
recorded overrides and optional human input into a list of PackageRelease
records, then cascades patch releases onto every transitive dependent of a
changed package.

The engine never mutates its inputs. The override map it returns is a fresh
copy that the caller is responsible for persisting, so that a rerun with the
same commits and the returned overrides reproduces the same plan.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Protocol

from .bumps import aggregate
from .errors import PromptAborted, ValidationError
from .graph import affected_packages, build_dependency_graph
from .models import (
    BumpKind,
    ChangeKind,
    Commit,
    DependencyGraph,
    Package,
    PackageRelease,
    RunContext,
    VersionOverride,
    VersionPlan,
)
from .versions import bump_type_of, bump_version, compare_versions, is_valid_semver

logger = logging.getLogger(__name__)


class OverrideChoice(str, Enum):
    USE = "use"
    PICK = "pick"


class Prompter(Protocol):
    """Interactive collaborator consulted by the plan engine.

    Returning None from a prompt means "no selection" and drops only the
    package at hand. Raising PromptAborted stops all remaining prompting.
    """

    def show_commits(self, package: Package, commits: Sequence[Commit]) -> None: ...

    def confirm_override(
        self, package: Package, override: VersionOverride
    ) -> OverrideChoice | None: ...

    def select_version(
        self,
        package: Package,
        suggested: str,
        *,
        default: str,
        suggested_hint: str | None = None,
    ) -> str | None: ...


class _PlanState:
    def __init__(self, overrides: Mapping[str, VersionOverride]) -> None:
        self.overrides: dict[str, VersionOverride] = dict(overrides)
        self.releases: list[PackageRelease] = []
        self.excluded: set[str] = set()
        self.processed: set[str] = set()
        self.aborted = False

    def set_override(self, name: str, override: VersionOverride, reason: str) -> None:
        if self.overrides.get(name) != override:
            self.overrides[name] = override
            logger.info(
                "Override set for %s: %s (%s) %s",
                name,
                override.type.value,
                override.version,
                reason,
            )

    def clear_override(self, name: str) -> None:
        if self.overrides.pop(name, None) is not None:
            logger.info("Override cleared for %s", name)


def calculate_plan(
    packages: Sequence[Package],
    package_commits: Mapping[str, Sequence[Commit]],
    *,
    global_commits: Mapping[str, Sequence[Commit]] | None = None,
    overrides: Mapping[str, VersionOverride] | None = None,
    context: RunContext | None = None,
    prompter: Prompter | None = None,
) -> VersionPlan:
    """Compute the full release plan, cascade included.

    Args:
        packages: All workspace packages, in a stable order.
        package_commits: Map of package name → commits touching its directory.
        global_commits: Map of package name → cross-cutting commits attributed
            to it. Combined with the package's own commits before
            aggregation.
        overrides: Previously recorded human decisions, keyed by package.
        context: Run settings; prompts are only shown when
            ``context.interactive`` is True and a prompter is given.
        prompter: Interactive collaborator.

    Returns:
        A VersionPlan with the releases, the updated override map, the set of
        packages excluded from the cascade and whether prompting was aborted.
    """
    context = context or RunContext()
    active_prompter = prompter if context.interactive else None
    global_commits = global_commits or {}
    state = _PlanState(overrides or {})
    by_name = {pkg.name: pkg for pkg in packages}

    names = list(package_commits)
    names.extend(name for name in global_commits if name not in package_commits)
    logger.debug("Starting version inference for %d packages with commits", len(names))

    try:
        for name in names:
            pkg = by_name.get(name)
            if pkg is None:
                logger.warning("Package %s not found in workspace packages, skipping", name)
                continue

            commits = [*package_commits.get(name, ()), *global_commits.get(name, ())]
            if not commits:
                continue

            state.processed.add(name)
            release = _infer_release(pkg, commits, state, active_prompter)
            if release is not None:
                state.releases.append(release)

        if active_prompter is not None:
            for pkg in packages:
                if pkg.name in state.processed:
                    continue
                release = _prompt_manual_release(pkg, state, active_prompter)
                if release is not None:
                    state.releases.append(release)
    except PromptAborted:
        logger.warning("Prompt cancelled; remaining packages were not processed")
        state.aborted = True

    graph = build_dependency_graph(packages)
    excluded = state.excluded | {
        name
        for name, override in state.overrides.items()
        if override.type is BumpKind.NONE
    }
    releases = create_dependent_updates(graph, state.releases, excluded)

    return VersionPlan(
        releases=releases,
        overrides=state.overrides,
        excluded=excluded,
        aborted=state.aborted,
    )


def create_dependent_updates(
    graph: DependencyGraph,
    direct: Sequence[PackageRelease],
    excluded: set[str] | frozenset[str] = frozenset(),
) -> list[PackageRelease]:
    """Add patch releases for every transitive dependent of a change.

    A release seeds the cascade when its version changes, or when it is an
    ``as-is`` entry for a package that has commits of its own. Dependents that
    already have a release of their own, or that are excluded, are skipped.
    New entries are appended in name order.
    """
    updates = list(direct)
    direct_names = {release.name for release in direct}
    seeds = {
        release.name
        for release in direct
        if release.new_version != release.current_version
        or (release.change_kind is ChangeKind.AS_IS and release.has_direct_changes)
    }

    for name in sorted(affected_packages(graph, seeds) - direct_names):
        if name in excluded:
            logger.debug("Skipping %s, excluded from dependent updates", name)
            continue
        pkg = graph.packages.get(name)
        if pkg is None:
            continue
        logger.debug("Cascading patch release to %s", name)
        updates.append(
            PackageRelease(
                package=pkg,
                current_version=pkg.version,
                new_version=bump_version(pkg.version, BumpKind.PATCH),
                bump_type=BumpKind.PATCH,
                has_direct_changes=False,
                change_kind=ChangeKind.AUTO,
            )
        )

    return updates


def _as_is_release(pkg: Package, has_direct_changes: bool) -> PackageRelease:
    return PackageRelease(
        package=pkg,
        current_version=pkg.version,
        new_version=pkg.version,
        bump_type=BumpKind.NONE,
        has_direct_changes=has_direct_changes,
        change_kind=ChangeKind.AS_IS,
    )


def _override_version(pkg: Package, override: VersionOverride) -> str:
    """Version to use for an override, recomputed when it has gone stale."""
    if compare_versions(override.version, pkg.version) > 0:
        return override.version
    logger.warning(
        "Override %s for %s is not above current version %s; recomputing",
        override.version,
        pkg.name,
        pkg.version,
    )
    return bump_version(pkg.version, override.type)


def _infer_release(
    pkg: Package,
    commits: list[Commit],
    state: _PlanState,
    prompter: Prompter | None,
) -> PackageRelease | None:
    determined = aggregate(commits)
    override = state.overrides.get(pkg.name)
    if (
        override is not None
        and override.type is BumpKind.NONE
        and override.version != pkg.version
    ):
        # Released since the as-is decision was recorded
        logger.warning(
            "As-is override %s for %s no longer matches current version %s; ignoring",
            override.version,
            pkg.name,
            pkg.version,
        )
        state.clear_override(pkg.name)
        override = None
    effective = override.type if override is not None else determined

    if prompter is None:
        if override is not None and override.type is BumpKind.NONE:
            return _as_is_release(pkg, has_direct_changes=True)
        if effective is BumpKind.NONE:
            return None
        if override is not None:
            new_version = _override_version(pkg, override)
        else:
            new_version = bump_version(pkg.version, determined)
        return PackageRelease(
            package=pkg,
            current_version=pkg.version,
            new_version=new_version,
            bump_type=effective,
            has_direct_changes=True,
            change_kind=ChangeKind.AUTO,
        )

    auto_version = bump_version(pkg.version, determined)
    prompter.show_commits(pkg, commits)

    if override is not None:
        choice = prompter.confirm_override(pkg, override)
        if choice is None:
            return None
        if choice is OverrideChoice.USE:
            if override.type is BumpKind.NONE:
                return _as_is_release(pkg, has_direct_changes=True)
            return PackageRelease(
                package=pkg,
                current_version=pkg.version,
                new_version=_override_version(pkg, override),
                bump_type=override.type,
                has_direct_changes=True,
                change_kind=ChangeKind.MANUAL,
            )

    default = "suggested" if override is not None or auto_version != pkg.version else "skip"
    selected = prompter.select_version(
        pkg,
        auto_version,
        default=default,
        suggested_hint="auto" if override is not None else None,
    )
    if selected is None:
        return None
    _check_selected(pkg, selected)

    if selected == pkg.version:
        state.excluded.add(pkg.name)
        if determined is not BumpKind.NONE:
            state.set_override(
                pkg.name,
                VersionOverride(type=BumpKind.NONE, version=pkg.version),
                f"kept as-is instead of auto {determined.value}",
            )
        else:
            state.clear_override(pkg.name)
        return _as_is_release(pkg, has_direct_changes=True)

    user_bump = bump_type_of(pkg.version, selected)
    if user_bump.rank < determined.rank:
        state.set_override(
            pkg.name,
            VersionOverride(type=user_bump, version=selected),
            f"instead of auto {determined.value}",
        )
    else:
        state.clear_override(pkg.name)

    return PackageRelease(
        package=pkg,
        current_version=pkg.version,
        new_version=selected,
        bump_type=user_bump,
        has_direct_changes=True,
        change_kind=ChangeKind.MANUAL,
    )


def _prompt_manual_release(
    pkg: Package, state: _PlanState, prompter: Prompter
) -> PackageRelease | None:
    prompter.show_commits(pkg, [])
    selected = prompter.select_version(pkg, pkg.version, default="skip")
    if selected is None:
        return None
    _check_selected(pkg, selected)

    if selected == pkg.version:
        state.excluded.add(pkg.name)
        return None

    return PackageRelease(
        package=pkg,
        current_version=pkg.version,
        new_version=selected,
        bump_type=bump_type_of(pkg.version, selected),
        has_direct_changes=False,
        change_kind=ChangeKind.MANUAL,
    )


def _check_selected(pkg: Package, selected: str) -> None:
    if not is_valid_semver(selected):
        raise ValidationError(
            f"{pkg.name}: invalid version {selected!r}", operation="select-version"
        )
    if compare_versions(selected, pkg.version) < 0:
        raise ValidationError(
            f"{pkg.name}: {selected} is lower than current version {pkg.version}",
            operation="select-version",
        )
