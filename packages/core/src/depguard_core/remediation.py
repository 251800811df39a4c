"""Remediation PRs: bump or remove a direct dependency through a pull request.

At most one open remediation PR may exist per (project, dependency, change
type, target). Nothing here holds a lock across the GitHub calls. Duplicates
are prevented optimistically instead:

1. a stored RemediationRecord with the same key short-circuits the request;
2. branch creation is a compare-and-swap on the ref namespace, so a second
   request for the same branch gets "Reference already exists" and adopts
   the PR opened on that branch;
3. the record's uniqueness constraint rejects a second insert, in which case
   the stored record wins and our freshly opened PR is closed.

Residual race: if request B sees the branch created by request A before A
has opened its PR, B treats the branch as orphaned. A bump then retries on a
suffixed branch, and step 3 closes whichever PR persists second.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from depguard_core.config import get_project, resolve_binding
from depguard_core.diff import workspace_paths
from depguard_core.errors import (
    BranchAlreadyExistsError,
    DepguardError,
    InvalidRequestError,
    ManifestNotFoundError,
    NoVcsConnectedError,
    OrphanedBranchError,
    PackageUnknownError,
    VcsApiError,
)
from depguard_core.manifest import bump_dependency, remove_dependency, strip_range_prefix
from depguard_store.models import BUMP, REMOVE, REMOVE_TARGET, RemediationRecord

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass
class RemediationRequest:
    project_id: str
    dependency_name: str
    change_type: str  # "bump" | "remove"
    target_version: str | None = None
    current_version: str | None = None

    def __post_init__(self):
        if self.change_type not in (BUMP, REMOVE):
            raise InvalidRequestError(f"Unknown change type: {self.change_type!r}")
        if self.change_type == BUMP:
            # The manifest keeps its own range prefix, so the target is stored bare.
            self.target_version = strip_range_prefix(self.target_version or "")
            if not self.target_version:
                raise InvalidRequestError("A bump request needs a target_version.")

    @property
    def record_target(self) -> str:
        return self.target_version if self.change_type == BUMP else REMOVE_TARGET


@dataclass
class RemediationResult:
    pr_url: str | None = None
    pr_number: int | None = None
    already_exists: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"error": self.error}
        out = {"pr_url": self.pr_url, "pr_number": self.pr_number}
        if self.already_exists:
            out["already_exists"] = True
        return out


def _base36(number: int) -> str:
    digits = ""
    while number:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def sanitize_package_name(name: str) -> str:
    return name.replace("@", "-").replace("/", "-")


def branch_name(prefix: str, change_type: str, package_name: str, target_version: str | None = None) -> str:
    """Deterministic remediation branch, e.g. ``depguard/bump--types-node-20.1.0``."""
    if change_type == BUMP:
        target = sanitize_package_name(strip_range_prefix(target_version))
        return f"{prefix}/bump-{sanitize_package_name(package_name)}-{target}"
    return f"{prefix}/remove-{sanitize_package_name(package_name)}"


def _pr_text(request: RemediationRequest) -> tuple[str, str, str]:
    """Return (commit message, PR title, PR body)."""
    name = request.dependency_name
    if request.change_type == BUMP:
        target = request.target_version
        if request.current_version:
            body = f"Updates `{name}` from `{request.current_version}` to `{target}`."
        else:
            body = f"Updates `{name}` to `{target}`."
        body += "\n\nRun `npm install` (or your package manager) to update the lockfile."
        return f"chore(deps): bump {name} to {target}", f"Bump `{name}` to `{target}`", body
    body = (
        f"Removes `{name}` from package.json. It was detected as unused in this project.\n\n"
        "Run `npm install` (or your package manager) to update the lockfile."
    )
    return f"chore(deps): remove unused dependency {name}", f"Remove unused dependency `{name}`", body


class StaleRemediationReconciler:
    """Retires bump PRs superseded by a newer target version.

    Best effort: a failed fetch or close is logged and the record is deleted
    anyway, so the project lists at most one active bump target.
    """

    def __init__(self, store, client):
        self._store = store
        self._client = client

    def reconcile(self, repo_full_name: str, project_id: str, dependency_id: str, target_version: str) -> list[int]:
        """Close and forget older bump PRs. Returns the PR numbers that were closed."""
        closed: list[int] = []
        for record in self._store.list_remediations(project_id, dependency_id=dependency_id, type=BUMP):
            if record.target_version == target_version:
                continue
            try:
                if self._client.get_pull_request_state(repo_full_name, record.pr_number) == "open":
                    self._client.close_pull_request(repo_full_name, record.pr_number)
                    closed.append(record.pr_number)
                    logger.info("Closed superseded bump PR #%d (%s)", record.pr_number, record.target_version)
            except DepguardError as e:
                logger.warning("Could not close old bump PR #%d: %s", record.pr_number, e)
            try:
                self._store.delete_remediation(project_id, dependency_id, BUMP, record.target_version)
            except Exception as e:
                logger.warning("Could not delete bump record for %s: %s", record.target_version, e)
        return closed


class RemediationService:
    """Opens, reuses and retires remediation PRs for configured projects."""

    def __init__(self, config: dict, store, client_factory: Callable, clock: Callable[[], float] = time.time):
        self._config = config
        self._store = store
        self._client_factory = client_factory
        self._clock = clock

    def run(self, request: RemediationRequest) -> RemediationResult:
        """Execute a remediation request and report the outcome without raising."""
        try:
            return self._remediate(request)
        except DepguardError as e:
            logger.warning(
                "%s of %s for project %s failed: %s", request.change_type, request.dependency_name, request.project_id, e
            )
            return RemediationResult(error=str(e))

    def bump(self, project_id: str, package: str, target_version: str, current_version: str | None = None):
        return self._submit(project_id, package, BUMP, target_version, current_version)

    def remove(self, project_id: str, package: str):
        return self._submit(project_id, package, REMOVE)

    def _submit(self, *args) -> RemediationResult:
        try:
            request = RemediationRequest(*args)
        except InvalidRequestError as e:
            logger.warning("Rejected remediation request: %s", e)
            return RemediationResult(error=str(e))
        return self.run(request)

    def _remediate(self, request: RemediationRequest) -> RemediationResult:
        dependency = self._store.get_dependency(request.dependency_name)
        if dependency is None:
            raise PackageUnknownError(request.dependency_name)

        existing = self._store.find_remediation(
            request.project_id, dependency.id, request.change_type, request.record_target
        )
        if existing is not None:
            logger.info("Reusing recorded PR #%d for %s", existing.pr_number, request.dependency_name)
            return RemediationResult(existing.pr_url, existing.pr_number, already_exists=True)

        try:
            project = get_project(self._config, request.project_id)
        except KeyError as e:
            raise NoVcsConnectedError(str(e.args[0])) from e
        binding = resolve_binding(self._config, project)
        client = self._client_factory(binding.installation_id)
        repo = binding.repo_full_name
        manifest_path = workspace_paths(binding.manifest_subpath)[0]

        # Patch before any write, so an invalid request leaves the repository untouched.
        from_sha = client.get_branch_sha(repo, binding.default_branch)
        try:
            content, blob_sha = client.get_file_with_sha(repo, manifest_path, from_sha)
        except VcsApiError as e:
            if e.status == 404:
                raise ManifestNotFoundError(manifest_path, binding.default_branch) from e
            raise
        if request.change_type == BUMP:
            patched = bump_dependency(content, request.dependency_name, request.target_version)
            StaleRemediationReconciler(self._store, client).reconcile(
                repo, request.project_id, dependency.id, request.target_version
            )
        else:
            patched = remove_dependency(content, request.dependency_name)

        prefix = self._config.get("branch_prefix", "depguard")
        branch = branch_name(prefix, request.change_type, request.dependency_name, request.target_version)
        for attempt in range(2):
            try:
                client.create_branch(repo, branch, from_sha)
                break
            except BranchAlreadyExistsError:
                open_prs = client.list_pull_requests_by_head(repo, branch)
                if open_prs:
                    pr_url, pr_number = open_prs[0]
                    logger.info("Branch %s already has PR #%d; adopting it", branch, pr_number)
                    self._store.upsert_remediation(self._record(request, dependency.id, pr_url, pr_number, branch))
                    return RemediationResult(pr_url, pr_number, already_exists=True)
                if request.change_type == REMOVE or attempt == 1:
                    raise OrphanedBranchError(branch)
                branch = f"{branch}-{_base36(int(self._clock() * 1000))}"
                logger.info("Orphaned remediation branch; retrying as %s", branch)

        commit_message, title, body = _pr_text(request)
        # The branch points at from_sha, so the blob read there is the current one.
        client.create_or_update_file(repo, branch, manifest_path, patched, commit_message, blob_sha)
        pr_url, pr_number = client.create_pull_request(repo, binding.default_branch, branch, title, body)
        logger.info("Opened PR #%d: %s", pr_number, title)

        record, created = self._store.create_or_fetch(self._record(request, dependency.id, pr_url, pr_number, branch))
        if not created and record.pr_number != pr_number:
            logger.warning(
                "PR #%d duplicates recorded PR #%d for %s; closing it",
                pr_number,
                record.pr_number,
                request.dependency_name,
            )
            try:
                client.close_pull_request(repo, pr_number)
            except DepguardError as e:
                logger.warning("Could not close duplicate PR #%d: %s", pr_number, e)
            return RemediationResult(record.pr_url, record.pr_number, already_exists=True)
        return RemediationResult(pr_url, pr_number)

    @staticmethod
    def _record(
        request: RemediationRequest, dependency_id: str, pr_url: str, pr_number: int, branch: str
    ) -> RemediationRecord:
        return RemediationRecord(
            project_id=request.project_id,
            dependency_id=dependency_id,
            type=request.change_type,
            target_version=request.record_target,
            pr_url=pr_url,
            pr_number=pr_number,
            branch_name=branch,
        )
