"""Interactive prompts, built on click.

ClickPrompter is the terminal implementation of the plan engine's Prompter
protocol. Ctrl+C or EOF at any prompt raises PromptAborted, which the plan
engine treats as "stop prompting, keep what has been decided so far".
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import NamedTuple, TypeVar

import click

from .errors import PromptAborted
from .models import BumpKind, Commit, Package, VersionOverride
from .plan import OverrideChoice
from .versions import (
    bump_version,
    compare_versions,
    is_valid_semver,
    next_prerelease,
    prerelease_identifier,
)

MAX_COMMITS_SHOWN = 10
PRERELEASE_IDS = ("beta", "alpha")

T = TypeVar("T")


class VersionChoice(NamedTuple):
    key: str
    label: str
    version: str | None


def version_choices(
    current: str, suggested: str, suggested_hint: str | None = None
) -> list[VersionChoice]:
    """Build the menu offered by the version prompt.

    ``version`` is None for "skip" (no release) and for "custom", which asks
    for a version separately.

    Example for current "1.2.3", suggested "1.3.0":
        skip, suggested (1.3.0), as-is (1.2.3), major (2.0.0),
        minor (1.3.0), patch (1.2.4), next-beta (1.2.4-beta.0), ...,
        premajor-alpha (2.0.0-alpha.0), custom
    """
    hint = f" [{suggested_hint}]" if suggested_hint else ""
    choices = [
        VersionChoice("skip", "skip this package", None),
        VersionChoice("suggested", f"suggested{hint}: {suggested}", suggested),
        VersionChoice("as-is", f"as-is: {current}", current),
    ]
    for bump in (BumpKind.MAJOR, BumpKind.MINOR, BumpKind.PATCH):
        version = bump_version(current, bump)
        choices.append(VersionChoice(bump.value, f"{bump.value}: {version}", version))

    identifier = prerelease_identifier(current)
    prerelease: list[tuple[str, str, str]] = []
    if identifier is not None:
        prerelease.append(("next", f"next {identifier}", next_prerelease(current, "next", identifier)))
    for pre_id in PRERELEASE_IDS:
        if pre_id != identifier:
            prerelease.append(
                (f"next-{pre_id}", f"next {pre_id}", next_prerelease(current, "next", pre_id))
            )
    for strategy in ("prepatch", "preminor", "premajor"):
        for pre_id in PRERELEASE_IDS:
            version = next_prerelease(current, strategy, pre_id)
            prerelease.append((f"{strategy}-{pre_id}", f"{strategy} {pre_id}", version))

    # Switching identifier can sort below the current prerelease
    for key, label, version in prerelease:
        if compare_versions(version, current) > 0:
            choices.append(VersionChoice(key, f"{label}: {version}", version))

    choices.append(VersionChoice("custom", "custom version", None))
    return choices


def _semver(value: str) -> str:
    value = value.strip()
    if not is_valid_semver(value):
        raise click.BadParameter(f"{value!r} is not a valid semantic version")
    return value


def _semver_at_least(current: str) -> Callable[[str], str]:
    """value_proc accepting a valid version not below ``current``.

    click re-prompts when the value_proc raises BadParameter.
    """

    def convert(value: str) -> str:
        value = _semver(value)
        if compare_versions(value, current) < 0:
            raise click.BadParameter(f"{value} is lower than current version {current}")
        return value

    return convert


def _ask(fn: Callable[..., T], *args, **kwargs) -> T:
    try:
        return fn(*args, **kwargs)
    except click.Abort as exc:
        raise PromptAborted() from exc


class ClickPrompter:
    """Terminal prompter."""

    def show_commits(self, package: Package, commits: Sequence[Commit]) -> None:
        click.echo()
        click.secho(f"{package.name} ({package.version})", bold=True)
        if not commits:
            click.echo("  no commits since last release")
            return
        for commit in commits[:MAX_COMMITS_SHOWN]:
            prefix = commit.type or ""
            if commit.scope:
                prefix += f"({commit.scope})"
            if commit.is_breaking:
                prefix += "!"
            line = f"{prefix}: {commit.description}" if prefix else commit.description
            click.echo(f"  {commit.short_hash} {line}")
        if len(commits) > MAX_COMMITS_SHOWN:
            click.echo(f"  ... and {len(commits) - MAX_COMMITS_SHOWN} more")

    def confirm_override(
        self, package: Package, override: VersionOverride
    ) -> OverrideChoice | None:
        click.echo(
            f"  override on record: {override.type.value} ({override.version})"
        )
        answer = _ask(
            click.prompt,
            "  Use it or pick another version?",
            type=click.Choice([choice.value for choice in OverrideChoice]),
            default=OverrideChoice.USE.value,
        )
        return OverrideChoice(answer)

    def select_version(
        self,
        package: Package,
        suggested: str,
        *,
        default: str,
        suggested_hint: str | None = None,
    ) -> str | None:
        choices = version_choices(package.version, suggested, suggested_hint)
        for choice in choices:
            click.echo(f"    {choice.key:<16} {choice.label}")

        key = _ask(
            click.prompt,
            f"  Version for {package.name}",
            type=click.Choice([choice.key for choice in choices]),
            default=default,
            show_choices=False,
        )
        if key == "custom":
            return _ask(
                click.prompt, "  Custom version", value_proc=_semver_at_least(package.version)
            )
        return next(choice.version for choice in choices if choice.key == key)
