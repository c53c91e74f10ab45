"""Error types for monorelease.

Every failure the pipeline can surface derives from ReleaseError, which
carries the name of the operation that failed so the CLI can print
"<operation>: <message>". Prompt cancellation is not a
ReleaseError: it is a normal early exit.
"""

from __future__ import annotations


class ReleaseError(Exception):
    """Base class for all monorelease failures."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class VersionControlError(ReleaseError):
    """A git or gh command failed."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.stderr = stderr

    def __str__(self) -> str:
        text = super().__str__()
        if self.stderr:
            return f"{text}\n{self.stderr.strip()}"
        return text


class ParseError(ReleaseError):
    """A manifest, config file or changelog could not be parsed."""


class ValidationError(ReleaseError):
    """Invalid semver, bump kind, package name or config value."""


class PromptAborted(Exception):
    """The user interrupted an interactive prompt (Ctrl+C / EOF)."""
