"""CLI entry point for monorelease."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
from pathlib import Path

import click

from monorelease.config import load_config
from monorelease.errors import ReleaseError
from monorelease.models import RunContext
from monorelease.pipeline import compute_plan, prepare_release, verify_release
from monorelease.prompts import ClickPrompter


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _is_interactive() -> bool:
    """Prompts are only shown on a terminal and never in CI."""
    return sys.stdin.isatty() and not os.environ.get("CI")


root_option = click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Workspace root.",
)
verbose_option = click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")


@click.group()
@click.version_option(package_name="monorelease")
def cli() -> None:
    """Commit-driven release management for package.json monorepos."""


@cli.command()
@root_option
@verbose_option
def plan(root: Path, verbose: bool) -> None:
    """Print the release plan as JSON, without prompting or writing."""
    _configure_logging(verbose)
    context = RunContext(cwd=root.resolve(), interactive=False, dry_run=True)
    try:
        config = load_config(context.cwd)
        # Progress output goes to stderr so stdout stays valid JSON
        with contextlib.redirect_stdout(sys.stderr):
            result = compute_plan(context, config)
    except ReleaseError as exc:
        raise click.ClickException(str(exc)) from exc

    payload = {
        "releases": [
            {
                "name": release.name,
                "path": release.package.path,
                "currentVersion": release.current_version,
                "newVersion": release.new_version,
                "bumpType": release.bump_type.value,
                "hasDirectChanges": release.has_direct_changes,
                "changeKind": release.change_kind.value,
            }
            for release in result.plan.releases
        ],
        "excluded": sorted(result.plan.excluded),
    }
    click.echo(json.dumps(payload, indent=2))


@cli.command()
@root_option
@click.option("--dry-run", is_flag=True, help="Compute and print the plan, write nothing.")
@click.option("--no-prompt", is_flag=True, help="Never prompt, even on a terminal.")
@click.option("--no-git", is_flag=True, help="Only modify the working tree; no branch, commit or PR.")
@verbose_option
def prepare(root: Path, dry_run: bool, no_prompt: bool, no_git: bool, verbose: bool) -> None:
    """Update versions and changelogs, then open or update the release PR."""
    _configure_logging(verbose)
    context = RunContext(
        cwd=root.resolve(),
        interactive=not no_prompt and _is_interactive(),
        dry_run=dry_run,
    )
    try:
        config = load_config(context.cwd)
        prepare_release(context, config, ClickPrompter(), use_git=not no_git)
    except ReleaseError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@root_option
@verbose_option
def verify(root: Path, verbose: bool) -> None:
    """Check that the open release PR is in sync with the default branch."""
    _configure_logging(verbose)
    context = RunContext(cwd=root.resolve(), interactive=False)
    try:
        config = load_config(context.cwd)
        in_sync = verify_release(context, config)
    except ReleaseError as exc:
        raise click.ClickException(str(exc)) from exc
    if in_sync is False:
        raise click.ClickException("release pull request is out of sync; re-run prepare")
