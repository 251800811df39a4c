"""Error taxonomy shared by the remediation and guardrail flows.

Every error raised on purpose by depguard_core derives from DepguardError so
the remediation API boundary can turn it into a structured result with a
single ``except`` clause.
"""

from __future__ import annotations


class DepguardError(Exception):
    """Base class for all expected depguard failures."""


class InvalidRequestError(DepguardError):
    pass


class PackageUnknownError(DepguardError):
    def __init__(self, name: str):
        super().__init__(f"Package not found in dependencies: {name}")
        self.name = name


class NotDirectDependencyError(DepguardError):
    def __init__(self, name: str):
        super().__init__(
            f"{name} is transitive; only direct dependencies can be bumped via PR."
        )
        self.name = name


class DependencyNotFoundError(DepguardError):
    def __init__(self, name: str):
        super().__init__(
            f"{name} was not found in package.json. It may be transitive or already removed."
        )
        self.name = name


class ManifestNotFoundError(DepguardError):
    def __init__(self, path: str, ref: str | None = None):
        where = f" at {ref}" if ref else ""
        super().__init__(f"Manifest not found: {path}{where}")
        self.path = path
        self.ref = ref


class InvalidManifestError(DepguardError):
    def __init__(self, reason: str = "Invalid package.json"):
        super().__init__(reason)


class NoVcsConnectedError(DepguardError):
    pass


class OrphanedBranchError(DepguardError):
    """A remediation branch exists on GitHub without an open PR and retries are exhausted.

    Not retryable: somebody has to delete the branch (or open the PR by hand).
    """

    def __init__(self, branch: str):
        super().__init__(
            f"A branch '{branch}' already exists on GitHub but no open PR was found. "
            "Delete the branch on GitHub and try again."
        )
        self.branch = branch


class VcsApiError(DepguardError):
    """Non-2xx response from the GitHub API."""

    def __init__(self, status: int | None, body=None, message: str | None = None):
        super().__init__(message or f"GitHub API error {status}: {body}")
        self.status = status
        self.body = body


class BranchAlreadyExistsError(VcsApiError):
    pass


class TransientNetworkError(DepguardError):
    """Timeout or connection failure talking to GitHub or a data source."""


class AdvisorySourceError(DepguardError):
    """A vulnerability database rejected the query (4xx)."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
