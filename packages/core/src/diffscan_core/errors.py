"""Fatal run errors.

Inner components raise these and never exit the process themselves; the CLI
catches :class:`FatalRunError` and turns ``exit_status`` into the process exit
code.
"""

from __future__ import annotations

EXIT_SYSTEM_PROBLEM = 250
EXIT_GITREPO_PROBLEM = 253


class FatalRunError(Exception):
    exit_status: int = EXIT_SYSTEM_PROBLEM


class RepositoryMissingError(FatalRunError):
    exit_status = EXIT_GITREPO_PROBLEM

    def __init__(self, repo_path: str):
        super().__init__(f"Local git repository not found at {repo_path!r}.")
        self.repo_path = repo_path


class CheckoutMismatchError(FatalRunError):
    exit_status = EXIT_GITREPO_PROBLEM

    def __init__(self, repo_path: str, expected: str, actual: str | None):
        super().__init__(
            f"Local git repository {repo_path!r} is not checked out at {expected} (HEAD is {actual or 'unknown'})."
        )
        self.repo_path = repo_path
        self.expected = expected
        self.actual = actual


class ScannerUnavailableError(FatalRunError):
    """The configured scanner cannot be executed at all."""
