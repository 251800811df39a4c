"""PR guardrail evaluation.

event received -> workspaces resolved -> (none matched: no-op)
-> per-workspace evaluation -> reports composed -> comments + check run published

Workspaces are evaluated independently on a bounded thread pool. A workspace
that fails is logged and left out of the report; it never stops its siblings
or the check run.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from depguard_core.config import effective_accepted_licenses, projects_for_repo
from depguard_core.diff import PackageVersion, affected_workspaces, diff_workspace, workspace_paths
from depguard_core.errors import DepguardError, InvalidManifestError, ManifestNotFoundError, VcsApiError
from depguard_core.report import EvaluationVerdict, WorkspaceReport, publish_verdict, render_workspace_report

if TYPE_CHECKING:
    from depguard_core.config import ProjectConfig
    from depguard_core.gh.client import GitHubClient
    from depguard_core.policy import PolicyEvaluator

logger = logging.getLogger(__name__)

GUARDRAIL_ACTIONS = frozenset({"opened", "synchronize", "reopened"})


@dataclass
class PullRequestEvent:
    repo_full_name: str
    base_sha: str
    head_sha: str
    pr_number: int
    installation_id: int | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> PullRequestEvent | None:
        """Build an event from a GitHub ``pull_request`` webhook payload, or None if fields are missing."""
        pr = payload.get("pull_request") or {}
        repo = (payload.get("repository") or {}).get("full_name")
        base_sha = (pr.get("base") or {}).get("sha")
        head_sha = (pr.get("head") or {}).get("sha")
        number = pr.get("number")
        installation_id = (payload.get("installation") or {}).get("id")
        if not (repo and base_sha and head_sha and number):
            return None
        return cls(repo, base_sha, head_sha, int(number), installation_id)


def _load_json(client: GitHubClient, repo: str, path: str, ref: str, required: bool = False) -> dict | None:
    try:
        text = client.get_file_content(repo, path, ref)
    except VcsApiError as e:
        if e.status != 404:
            raise
        if required:
            raise ManifestNotFoundError(path, ref) from e
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        if required:
            raise InvalidManifestError(f"Invalid JSON in {path} at {ref[:7]}")
        logger.warning("Ignoring unparsable %s at %s", path, ref[:7])
        return None
    if not isinstance(data, dict):
        if required:
            raise InvalidManifestError(f"{path} at {ref[:7]} is not a JSON object")
        return None
    return data


class GuardrailEngine:
    def __init__(self, config: dict, client_factory: Callable, evaluator: PolicyEvaluator):
        self._config = config
        self._client_factory = client_factory
        self._evaluator = evaluator

    @property
    def check_run_name(self) -> str:
        return self._config.get("check_run_name", "Depguard PR guardrails")

    def evaluate(self, event: PullRequestEvent, client: GitHubClient | None = None) -> EvaluationVerdict | None:
        """Evaluate every affected workspace. Returns None when no configured workspace changed."""
        client = client or self._client_factory(event.installation_id)
        changed = client.get_changed_files(event.repo_full_name, event.base_sha, event.head_sha)
        workspaces = affected_workspaces(changed)
        if not workspaces:
            logger.info("No package.json or package-lock.json changed in %s#%d", event.repo_full_name, event.pr_number)
            return None

        projects = projects_for_repo(self._config, event.repo_full_name, workspaces)
        if not projects:
            logger.info("No projects linked to %s for workspaces %s", event.repo_full_name, workspaces)
            return None

        max_workers = min(max(1, self._config.get("max_workers", 4)), len(projects))
        verdict = EvaluationVerdict()
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [(p, executor.submit(self.evaluate_workspace, client, event, p)) for p in projects]
            for project, future in futures:
                label = project.workspace or "Root"
                try:
                    report = future.result()
                except DepguardError as e:
                    logger.warning("Skipping %s (%s): %s", project.name, label, e)
                    continue
                except Exception:
                    logger.exception("Guardrail evaluation failed for %s (%s)", project.name, label)
                    continue
                if report is not None:
                    verdict.per_workspace.append(report)
        return verdict

    def evaluate_workspace(
        self, client: GitHubClient, event: PullRequestEvent, project: ProjectConfig
    ) -> WorkspaceReport | None:
        guardrails = project.guardrails
        if not guardrails.enabled:
            logger.debug("Guardrails disabled for %s", project.name)
            return None

        repo = event.repo_full_name
        manifest_path, lock_path = workspace_paths(project.workspace)
        head_manifest = _load_json(client, repo, manifest_path, event.head_sha, required=True)
        base_manifest = _load_json(client, repo, manifest_path, event.base_sha)
        base_lock = _load_json(client, repo, lock_path, event.base_sha)
        head_lock = _load_json(client, repo, lock_path, event.head_sha)

        diff = diff_workspace(
            base_manifest,
            head_manifest,
            base_lock,
            head_lock,
            include_transitive=guardrails.block_transitive_vulns,
        )
        if diff.is_empty:
            logger.info("No dependency changes in %s (%s)", project.name, project.workspace or "Root")
            return None
        accepted = effective_accepted_licenses(self._config, project)
        packages = (
            [PackageVersion(b.name, b.new_version) for b in diff.direct_bumped]
            + diff.direct_added
            + diff.transitive_added
        )
        evaluations = self._evaluator.evaluate_all(packages, guardrails, accepted)

        n_bumped, n_added = len(diff.direct_bumped), len(diff.direct_added)
        bumped = list(zip(diff.direct_bumped, evaluations[:n_bumped]))
        added = evaluations[n_bumped : n_bumped + n_added]
        transitive = evaluations[n_bumped + n_added :]
        blocked = any(e.blocked for e in evaluations)

        return WorkspaceReport(
            project_id=project.id,
            project_name=project.name,
            workspace=project.workspace,
            report_text=render_workspace_report(project.name, project.workspace, bumped, added, transitive, blocked),
            blocked=blocked,
        )

    def run(self, event: PullRequestEvent, dry_run: bool = False) -> EvaluationVerdict | None:
        """Evaluate a PR and publish the verdict (unless ``dry_run``)."""
        client = self._client_factory(event.installation_id)
        verdict = self.evaluate(event, client=client)
        if verdict is None:
            return None
        if not dry_run:
            publish_verdict(client, event.repo_full_name, event.pr_number, event.head_sha, verdict, self.check_run_name)
        return verdict


class GuardrailRunner:
    """Runs guardrail evaluations in the background.

    Webhook deliveries are acknowledged immediately; every submitted evaluation
    gets a done-callback that logs its failure, so none can fail silently.
    """

    def __init__(self, engine: GuardrailEngine, max_workers: int = 2):
        self._engine = engine
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="depguard-guardrails")

    def submit(self, event: PullRequestEvent) -> Future:
        future = self._executor.submit(self._engine.run, event)
        future.add_done_callback(lambda f: self._log_failure(event, f))
        return future

    @staticmethod
    def _log_failure(event: PullRequestEvent, future: Future) -> None:
        if future.cancelled():
            logger.warning("Guardrail evaluation for %s#%d was cancelled", event.repo_full_name, event.pr_number)
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "Guardrail evaluation for %s#%d failed: %s",
                event.repo_full_name,
                event.pr_number,
                exc,
                exc_info=exc,
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def handle_github_event(event_name: str, payload: dict, runner: GuardrailRunner) -> dict:
    """Dispatch a webhook delivery. Always acknowledges; evaluation happens in the background."""
    if event_name != "pull_request":
        logger.debug("Ignoring GitHub event %s", event_name)
        return {"received": True}
    action = payload.get("action")
    if action not in GUARDRAIL_ACTIONS:
        logger.debug("Ignoring pull_request action %s", action)
        return {"received": True}

    event = PullRequestEvent.from_payload(payload)
    if event is None:
        logger.info("Missing repository, base or head sha, or PR number in pull_request payload; skipping.")
        return {"received": True}
    try:
        runner.submit(event)
    except RuntimeError as e:
        logger.error("Could not schedule guardrail evaluation: %s", e)
        return {"received": True, "error": str(e)}
    return {"received": True}
