"""Shell, git and gh utilities.

Thin wrappers around subprocess calls for the version-control and GitHub
command line tools, plus the terminal output helpers used by the pipeline.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from .errors import VersionControlError


def _capture(program: str, args: tuple[str, ...], cwd: Path | None, check: bool) -> str:
    try:
        result = subprocess.run(
            [program, *args], cwd=cwd, capture_output=True, text=True, check=check
        )
    except FileNotFoundError as exc:
        raise VersionControlError(f"{program} executable not found", operation=program) from exc
    except subprocess.CalledProcessError as exc:
        raise VersionControlError(
            f"command failed with exit code {exc.returncode}: {program} {' '.join(args)}",
            operation=f"{program} {args[0]}",
            stderr=exc.stderr,
        ) from exc
    return result.stdout.strip()


def git(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "status", "--short").
        cwd: Directory to run in; defaults to the current directory.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., tag lookup).

    Returns:
        Stripped stdout from the git command.

    Raises:
        VersionControlError: If the command fails and ``check`` is True.
    """
    return _capture("git", args, cwd, check)


def gh(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a GitHub CLI command and return stdout.

    Same contract as git().
    """
    return _capture("gh", args, cwd, check)


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of the release pipeline in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")

