"""Guardrail reports: one PR comment per workspace plus a single check run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from depguard_core.errors import DepguardError

if TYPE_CHECKING:
    from depguard_core.diff import PackageBump
    from depguard_core.gh.client import GitHubClient
    from depguard_core.policy import PackageEvaluation

logger = logging.getLogger(__name__)

BLOCKED_NOTICE = "**This PR cannot be merged until the above issues are resolved.**"
POLICY_NOTICE = " **(does not comply with project policy)**"


@dataclass
class WorkspaceReport:
    project_id: str
    project_name: str
    workspace: str
    report_text: str
    blocked: bool

    @property
    def workspace_label(self) -> str:
        return self.workspace or "Root"


@dataclass
class EvaluationVerdict:
    per_workspace: list[WorkspaceReport] = field(default_factory=list)

    @property
    def overall_blocked(self) -> bool:
        return any(r.blocked for r in self.per_workspace)

    @property
    def conclusion(self) -> str:
        return "failure" if self.overall_blocked else "success"


def _package_line(evaluation: PackageEvaluation) -> str:
    license_name = evaluation.license or "Unknown"
    policy = POLICY_NOTICE if evaluation.policy_violation else ""
    return (
        f"- **{evaluation.name}** `{evaluation.version}`: license: {license_name}; "
        f"{evaluation.vulns.summary()}{policy}"
    )


def render_workspace_report(
    project_name: str,
    workspace: str,
    bumped: list[tuple[PackageBump, PackageEvaluation]],
    added: list[PackageEvaluation],
    transitive: list[PackageEvaluation],
    blocked: bool,
) -> str:
    """Build the Markdown comment for one workspace."""
    lines = [f"## Depguard: {project_name} ({workspace or 'Root'})", ""]

    if bumped:
        lines.append("### Packages updated")
        for bump, evaluation in bumped:
            lines.append(
                f"- **{bump.name}** `{bump.old_version}` → `{bump.new_version}`: {evaluation.vulns.summary()}"
            )
        lines.append("")

    if added:
        lines.append("### Packages added")
        lines.extend(_package_line(e) for e in added)
        lines.append("")

    if transitive:
        lines.append("### Transitive dependencies (new/updated)")
        lines.extend(_package_line(e) for e in transitive)
        lines.append("")

    if blocked:
        lines.append("---")
        lines.append(BLOCKED_NOTICE)

    return "\n".join(lines)


def check_run_output(blocked: bool) -> dict:
    if blocked:
        return {
            "title": "PR guardrails failed",
            "summary": "One or more dependencies do not meet this project's guardrails (vulnerabilities or policy).",
        }
    return {
        "title": "PR guardrails passed",
        "summary": "All checked dependencies meet this project's guardrails.",
    }


def publish_verdict(
    client: GitHubClient,
    repo_full_name: str,
    pr_number: int,
    head_sha: str,
    verdict: EvaluationVerdict,
    check_run_name: str,
) -> None:
    """Post one comment per workspace, then create or update the check run on ``head_sha``.

    A failed comment never prevents the check run from being published.
    """
    for report in verdict.per_workspace:
        try:
            client.create_issue_comment(repo_full_name, pr_number, report.report_text)
        except DepguardError as e:
            logger.error("Failed to post guardrail comment for %s: %s", report.workspace_label, e)

    output = check_run_output(verdict.overall_blocked)
    try:
        existing = client.list_check_runs_for_ref(repo_full_name, head_sha, check_run_name)
        if existing:
            client.update_check_run(repo_full_name, existing[0], verdict.conclusion, output)
        else:
            client.create_check_run(repo_full_name, head_sha, check_run_name, verdict.conclusion, output)
    except DepguardError as e:
        logger.error("Failed to create/update check run: %s", e)
        return
    logger.info("Check run %r on %s: %s", check_run_name, head_sha[:7], verdict.conclusion)
