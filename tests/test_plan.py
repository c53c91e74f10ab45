"""Tests for monorelease.plan."""

from __future__ import annotations

import logging

import pytest

from monorelease.errors import PromptAborted, ValidationError
from monorelease.graph import build_dependency_graph
from monorelease.models import (
    BumpKind,
    ChangeKind,
    PackageRelease,
    RunContext,
    VersionOverride,
)
from monorelease.plan import OverrideChoice, calculate_plan, create_dependent_updates

INTERACTIVE = RunContext(interactive=True)


class ScriptedPrompter:
    """Prompter returning canned answers, keyed by package name."""

    def __init__(
        self,
        versions: dict[str, object] | None = None,
        overrides: dict[str, OverrideChoice | None] | None = None,
    ) -> None:
        self.versions = versions or {}
        self.overrides = overrides or {}
        self.shown: list[str] = []
        self.defaults: dict[str, str] = {}

    def show_commits(self, package, commits) -> None:
        self.shown.append(package.name)

    def confirm_override(self, package, override):
        return self.overrides.get(package.name, OverrideChoice.USE)

    def select_version(self, package, suggested, *, default, suggested_hint=None):
        self.defaults[package.name] = default
        answer = self.versions.get(package.name, "suggested")
        if answer is PromptAborted:
            raise PromptAborted()
        if answer == "suggested":
            return suggested
        return answer


def by_name(plan) -> dict[str, PackageRelease]:
    return {release.name: release for release in plan.releases}


class TestNonInteractive:
    """calculate_plan() without prompts."""

    def test_feat_and_fix_is_minor(self, make_package, make_commit) -> None:
        """feat + fix against @scope/a 1.2.3 gives 1.3.0 (minor)."""
        pkg = make_package("@scope/a", "1.2.3")
        plan = calculate_plan(
            [pkg], {"@scope/a": [make_commit("feat: x"), make_commit("fix: y")]}
        )
        release = by_name(plan)["@scope/a"]
        assert release.new_version == "1.3.0"
        assert release.bump_type is BumpKind.MINOR
        assert release.has_direct_changes
        assert release.change_kind is ChangeKind.AUTO

    def test_major_cascades_patch_to_dependent(self, make_package, make_commit) -> None:
        """b depends on a; a gets a major bump, b has no commits of its own."""
        a = make_package("a", "1.0.0")
        b = make_package("b", "2.0.0", deps=["a"])
        plan = calculate_plan([a, b], {"a": [make_commit("feat!: rewrite")]})

        releases = by_name(plan)
        assert releases["a"].new_version == "2.0.0"
        assert releases["b"].new_version == "2.0.1"
        assert releases["b"].bump_type is BumpKind.PATCH
        assert not releases["b"].has_direct_changes

    def test_cascade_is_transitive(self, make_package, make_commit) -> None:
        packages = [
            make_package("a"),
            make_package("b", deps=["a"]),
            make_package("c", dev_deps=["b"]),
            make_package("d"),
        ]
        plan = calculate_plan(packages, {"a": [make_commit("fix: x")]})
        assert [r.name for r in plan.releases] == ["a", "b", "c"]

    def test_dependent_with_own_release_not_duplicated(self, make_package, make_commit) -> None:
        a = make_package("a")
        b = make_package("b", deps=["a"])
        plan = calculate_plan(
            [a, b], {"a": [make_commit("fix: x")], "b": [make_commit("feat: y")]}
        )
        assert [r.name for r in plan.releases] == ["a", "b"]
        assert by_name(plan)["b"].bump_type is BumpKind.MINOR

    def test_no_bump_commits_are_skipped(self, make_package, make_commit) -> None:
        pkg = make_package("a")
        plan = calculate_plan([pkg], {"a": [make_commit("chore: tidy"), make_commit("WIP")]})
        assert plan.releases == []

    def test_unknown_package_warns_and_continues(self, make_package, make_commit, caplog) -> None:
        pkg = make_package("a")
        with caplog.at_level(logging.WARNING, logger="monorelease.plan"):
            plan = calculate_plan(
                [pkg], {"ghost": [make_commit("feat: x")], "a": [make_commit("fix: y")]}
            )
        assert [r.name for r in plan.releases] == ["a"]
        assert "ghost" in caplog.text

    def test_global_commits_combined_before_aggregation(self, make_package, make_commit) -> None:
        pkg = make_package("a", "1.0.0")
        plan = calculate_plan(
            [pkg],
            {"a": [make_commit("fix: local")]},
            global_commits={"a": [make_commit("feat: shared tooling")]},
        )
        assert by_name(plan)["a"].new_version == "1.1.0"

    def test_global_commits_alone(self, make_package, make_commit) -> None:
        pkg = make_package("a", "1.0.0")
        plan = calculate_plan([pkg], {}, global_commits={"a": [make_commit("fix: lockfile")]})
        release = by_name(plan)["a"]
        assert release.new_version == "1.0.1"
        assert release.has_direct_changes

    def test_override_type_applies(self, make_package, make_commit) -> None:
        pkg = make_package("a", "1.0.0")
        overrides = {"a": VersionOverride(type=BumpKind.PATCH, version="1.0.1")}
        plan = calculate_plan([pkg], {"a": [make_commit("feat: x")]}, overrides=overrides)
        release = by_name(plan)["a"]
        assert release.new_version == "1.0.1"
        assert release.bump_type is BumpKind.PATCH
        assert plan.overrides == overrides

    def test_stale_override_is_recomputed(self, make_package, make_commit) -> None:
        pkg = make_package("a", "1.0.1")
        overrides = {"a": VersionOverride(type=BumpKind.PATCH, version="1.0.1")}
        plan = calculate_plan([pkg], {"a": [make_commit("feat: x")]}, overrides=overrides)
        assert by_name(plan)["a"].new_version == "1.0.2"

    def test_as_is_override_excludes_from_cascade(self, make_package, make_commit) -> None:
        a = make_package("a", "1.0.0")
        b = make_package("b", "1.0.0", deps=["a"])
        c = make_package("c", "1.0.0", deps=["b"])
        overrides = {"b": VersionOverride(type=BumpKind.NONE, version="1.0.0")}
        plan = calculate_plan(
            [a, b, c], {"a": [make_commit("fix: x")]}, overrides=overrides
        )
        names = [r.name for r in plan.releases]
        assert "b" not in names
        assert "b" in plan.excluded
        # exclusion blocks only b itself, traversal continues through it
        assert "c" in names

    def test_as_is_override_with_commits_is_recorded(self, make_package, make_commit) -> None:
        pkg = make_package("a", "1.0.0")
        overrides = {"a": VersionOverride(type=BumpKind.NONE, version="1.0.0")}
        plan = calculate_plan([pkg], {"a": [make_commit("feat: x")]}, overrides=overrides)
        release = by_name(plan)["a"]
        assert release.change_kind is ChangeKind.AS_IS
        assert release.new_version == release.current_version == "1.0.0"

    def test_as_is_override_from_older_release_is_ignored(self, make_package, make_commit) -> None:
        a = make_package("a", "1.1.0")
        b = make_package("b", "1.0.0", deps=["a"])
        overrides = {"a": VersionOverride(type=BumpKind.NONE, version="1.0.0")}

        plan = calculate_plan([a, b], {"a": [make_commit("fix: x")]}, overrides=overrides)

        release = by_name(plan)["a"]
        assert release.change_kind is ChangeKind.AUTO
        assert release.new_version == "1.1.1"
        assert plan.overrides == {}
        assert "a" not in plan.excluded
        assert by_name(plan)["b"].new_version == "1.0.1"

    def test_does_not_mutate_inputs(self, make_package, make_commit) -> None:
        pkg = make_package("a", "1.0.0")
        overrides = {"a": VersionOverride(type=BumpKind.PATCH, version="1.0.1")}
        commits = {"a": [make_commit("fix: x")]}
        snapshot = (dict(overrides), {k: list(v) for k, v in commits.items()}, pkg.model_copy())

        calculate_plan([pkg], commits, overrides=overrides)

        assert (overrides, commits, pkg) == snapshot

    def test_idempotent(self, make_package, make_commit) -> None:
        """Rerunning with the returned overrides reproduces the plan."""
        packages = [make_package("a"), make_package("b", deps=["a"])]
        commits = {"a": [make_commit("feat: x")]}
        first = calculate_plan(packages, commits)
        second = calculate_plan(packages, commits, overrides=first.overrides)
        assert first.releases == second.releases

    def test_versions_never_decrease(self, make_package, make_commit) -> None:
        from monorelease.versions import compare_versions

        packages = [make_package("a", "0.1.0"), make_package("b", "3.4.5-beta.1", deps=["a"])]
        plan = calculate_plan(packages, {"a": [make_commit("feat!: x")]})
        for release in plan.releases:
            assert compare_versions(release.new_version, release.current_version) > 0


class TestInteractive:
    """calculate_plan() with a prompter."""

    def test_prompter_ignored_when_not_interactive(self, make_package, make_commit) -> None:
        prompter = ScriptedPrompter()
        calculate_plan([make_package("a")], {"a": [make_commit("fix: x")]}, prompter=prompter)
        assert prompter.shown == []

    def test_accept_suggested(self, make_package, make_commit) -> None:
        prompter = ScriptedPrompter()
        plan = calculate_plan(
            [make_package("a", "1.0.0")],
            {"a": [make_commit("feat: x")]},
            context=INTERACTIVE,
            prompter=prompter,
        )
        release = by_name(plan)["a"]
        assert release.new_version == "1.1.0"
        assert release.change_kind is ChangeKind.MANUAL
        assert prompter.defaults["a"] == "suggested"
        assert plan.overrides == {}

    def test_default_is_skip_without_bump(self, make_package, make_commit) -> None:
        prompter = ScriptedPrompter(versions={"a": None})
        plan = calculate_plan(
            [make_package("a")],
            {"a": [make_commit("docs: x")]},
            context=INTERACTIVE,
            prompter=prompter,
        )
        assert prompter.defaults["a"] == "skip"
        assert plan.releases == []

    def test_downgrade_records_override(self, make_package, make_commit) -> None:
        prompter = ScriptedPrompter(versions={"a": "1.0.1"})
        plan = calculate_plan(
            [make_package("a", "1.0.0")],
            {"a": [make_commit("feat: x")]},
            context=INTERACTIVE,
            prompter=prompter,
        )
        assert plan.overrides == {"a": VersionOverride(type=BumpKind.PATCH, version="1.0.1")}
        assert by_name(plan)["a"].bump_type is BumpKind.PATCH

    def test_upgrade_clears_override(self, make_package, make_commit) -> None:
        prompter = ScriptedPrompter(
            versions={"a": "2.0.0"}, overrides={"a": OverrideChoice.PICK}
        )
        plan = calculate_plan(
            [make_package("a", "1.0.0")],
            {"a": [make_commit("fix: x")]},
            overrides={"a": VersionOverride(type=BumpKind.PATCH, version="1.0.1")},
            context=INTERACTIVE,
            prompter=prompter,
        )
        assert plan.overrides == {}
        assert by_name(plan)["a"].new_version == "2.0.0"

    def test_use_existing_override(self, make_package, make_commit) -> None:
        prompter = ScriptedPrompter(overrides={"a": OverrideChoice.USE})
        plan = calculate_plan(
            [make_package("a", "1.0.0")],
            {"a": [make_commit("feat: x")]},
            overrides={"a": VersionOverride(type=BumpKind.PATCH, version="1.0.1")},
            context=INTERACTIVE,
            prompter=prompter,
        )
        release = by_name(plan)["a"]
        assert release.new_version == "1.0.1"
        assert release.change_kind is ChangeKind.MANUAL
        assert "a" not in prompter.defaults

    def test_as_is_choice(self, make_package, make_commit) -> None:
        """Keeping the current version records an as-is override and blocks the cascade."""
        a = make_package("a", "1.0.0")
        b = make_package("b", "1.0.0", deps=["a"])
        prompter = ScriptedPrompter(versions={"a": "1.0.0"})
        plan = calculate_plan(
            [a, b], {"a": [make_commit("feat: x")]}, context=INTERACTIVE, prompter=prompter
        )
        release = by_name(plan)["a"]
        assert release.change_kind is ChangeKind.AS_IS
        assert plan.overrides["a"].type is BumpKind.NONE
        assert "a" in plan.excluded
        # as-is with direct changes still seeds the cascade
        assert by_name(plan)["b"].new_version == "1.0.1"

    def test_manual_pass_for_packages_without_commits(self, make_package, make_commit) -> None:
        a = make_package("a", "1.0.0")
        lonely = make_package("lonely", "0.3.0")
        prompter = ScriptedPrompter(versions={"lonely": "0.4.0"})
        plan = calculate_plan(
            [a, lonely], {"a": [make_commit("fix: x")]}, context=INTERACTIVE, prompter=prompter
        )
        release = by_name(plan)["lonely"]
        assert release.change_kind is ChangeKind.MANUAL
        assert not release.has_direct_changes
        assert prompter.defaults["lonely"] == "skip"

    def test_manual_pass_skip(self, make_package) -> None:
        prompter = ScriptedPrompter(versions={"a": None})
        plan = calculate_plan([make_package("a")], {}, context=INTERACTIVE, prompter=prompter)
        assert plan.releases == []
        assert not plan.aborted

    def test_abort_keeps_emitted_records(self, make_package, make_commit) -> None:
        packages = [make_package("a"), make_package("b"), make_package("c")]
        prompter = ScriptedPrompter(versions={"b": PromptAborted})
        plan = calculate_plan(
            packages,
            {"a": [make_commit("fix: x")], "b": [make_commit("fix: y")], "c": [make_commit("fix: z")]},
            context=INTERACTIVE,
            prompter=prompter,
        )
        assert plan.aborted
        assert [r.name for r in plan.releases] == ["a"]
        assert "c" not in prompter.shown

    def test_use_stale_override_matches_non_interactive(self, make_package, make_commit) -> None:
        """A recorded version at or below the current one is recomputed in both modes."""
        pkg = make_package("a", "1.2.0")
        commits = {"a": [make_commit("fix: x")]}
        overrides = {"a": VersionOverride(type=BumpKind.PATCH, version="1.0.1")}

        interactive = calculate_plan(
            [pkg],
            commits,
            overrides=overrides,
            context=INTERACTIVE,
            prompter=ScriptedPrompter(overrides={"a": OverrideChoice.USE}),
        )
        automatic = calculate_plan([pkg], commits, overrides=overrides)

        assert by_name(interactive)["a"].new_version == "1.2.1"
        assert by_name(automatic)["a"].new_version == "1.2.1"

    def test_use_as_is_override(self, make_package, make_commit) -> None:
        prompter = ScriptedPrompter(overrides={"a": OverrideChoice.USE})
        plan = calculate_plan(
            [make_package("a", "1.0.0")],
            {"a": [make_commit("feat: x")]},
            overrides={"a": VersionOverride(type=BumpKind.NONE, version="1.0.0")},
            context=INTERACTIVE,
            prompter=prompter,
        )
        assert by_name(plan)["a"].change_kind is ChangeKind.AS_IS

    def test_lower_version_from_prompter_is_rejected(self, make_package, make_commit) -> None:
        """Prompters must not hand back a version below the current one."""
        prompter = ScriptedPrompter(versions={"a": "0.9.0"})
        with pytest.raises(ValidationError):
            calculate_plan(
                [make_package("a", "1.0.0")],
                {"a": [make_commit("fix: x")]},
                context=INTERACTIVE,
                prompter=prompter,
            )


class TestCreateDependentUpdates:
    """Tests for create_dependent_updates()."""

    def test_unchanged_release_does_not_seed(self, make_package) -> None:
        a = make_package("a", "1.0.0")
        b = make_package("b", "1.0.0", deps=["a"])
        graph = build_dependency_graph([a, b])
        noop = PackageRelease(
            package=a,
            current_version="1.0.0",
            new_version="1.0.0",
            bump_type=BumpKind.NONE,
            has_direct_changes=False,
            change_kind=ChangeKind.AS_IS,
        )
        assert create_dependent_updates(graph, [noop]) == [noop]

    def test_excluded_dependents_skipped(self, make_package) -> None:
        a = make_package("a", "1.0.0")
        b = make_package("b", "1.0.0", deps=["a"])
        graph = build_dependency_graph([a, b])
        bump = PackageRelease(
            package=a,
            current_version="1.0.0",
            new_version="1.0.1",
            bump_type=BumpKind.PATCH,
            has_direct_changes=True,
        )
        assert create_dependent_updates(graph, [bump], {"b"}) == [bump]
