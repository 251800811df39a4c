"""Tests for PR guardrail evaluation, the background runner and webhook dispatch."""

import json
import logging
import threading
from unittest.mock import MagicMock

import pytest

from depguard_core.errors import TransientNetworkError, VcsApiError
from depguard_core.guardrails import GuardrailEngine, GuardrailRunner, PullRequestEvent, handle_github_event
from depguard_core.policy import PolicyEvaluator, VulnCounts
from depguard_core.sources.base import AdvisorySource, LicenseSource

REPO = "acme/mono"
EVENT = PullRequestEvent(REPO, "base-sha", "head-sha", 42, 111)


class StubAdvisories(AdvisorySource):
    def __init__(self, counts=None, fail_for=()):
        self._counts = counts or {}
        self._fail_for = set(fail_for)

    def get_vuln_counts(self, name, version):
        if name in self._fail_for:
            raise TransientNetworkError(f"lookup for {name} timed out")
        return self._counts.get(name, VulnCounts())


class StubLicenses(LicenseSource):
    def __init__(self, licenses):
        self._licenses = licenses

    def get_license(self, name):
        return self._licenses.get(name)


def _lock(packages):
    return {"lockfileVersion": 3, "packages": {"": {}, **{f"node_modules/{k}": {"version": v} for k, v in packages.items()}}}


def _config(**web_guardrails):
    return {
        "check_run_name": "Depguard PR guardrails",
        "max_workers": 4,
        "organizations": {"acme": {"accepted_licenses": ["MIT"]}},
        "projects": [
            {
                "id": "web",
                "name": "Web",
                "organization_id": "acme",
                "repo": REPO,
                "workspace": "apps/web",
                "guardrails": web_guardrails or {"block_policy_violations": True},
            },
            {
                "id": "api",
                "name": "API",
                "organization_id": "acme",
                "repo": REPO,
                "workspace": "apps/api",
                "guardrails": {"block_critical": True},
            },
        ],
    }


def _client(files, changed):
    """A client whose get_file_content serves ``files`` keyed by (path, ref)."""
    client = MagicMock()
    client.get_changed_files.return_value = changed

    def get_file_content(repo, path, ref):
        if (path, ref) not in files:
            raise VcsApiError(404, {"message": "Not Found"}, "GitHub API error 404: Not Found")
        value = files[(path, ref)]
        return value if isinstance(value, str) else json.dumps(value)

    client.get_file_content.side_effect = get_file_content
    client.list_check_runs_for_ref.return_value = []
    return client


def _engine(config, client, advisories=None, licenses=None):
    evaluator = PolicyEvaluator(advisories or StubAdvisories(), [StubLicenses(licenses or {})])
    return GuardrailEngine(config, MagicMock(return_value=client), evaluator)


def _left_pad_files(prefix="apps/web"):
    return {
        (f"{prefix}/package.json", "base-sha"): {"dependencies": {"express": "^4.18.0"}},
        (f"{prefix}/package.json", "head-sha"): {"dependencies": {"express": "^4.18.0", "left-pad": "^1.3.0"}},
        (f"{prefix}/package-lock.json", "base-sha"): _lock({"express": "4.18.2"}),
        (f"{prefix}/package-lock.json", "head-sha"): _lock({"express": "4.18.2", "left-pad": "1.3.0"}),
    }


class TestPullRequestEvent:
    def test_from_payload(self):
        payload = {
            "action": "opened",
            "repository": {"full_name": REPO},
            "installation": {"id": 111},
            "pull_request": {"number": 42, "base": {"sha": "b"}, "head": {"sha": "h"}},
        }
        assert PullRequestEvent.from_payload(payload) == PullRequestEvent(REPO, "b", "h", 42, 111)

    def test_missing_fields(self):
        assert PullRequestEvent.from_payload({"repository": {"full_name": REPO}}) is None


class TestGuardrailEngine:
    def test_disallowed_license_blocks_workspace(self):
        client = _client(_left_pad_files(), ["apps/web/package.json", "apps/web/package-lock.json"])
        engine = _engine(_config(), client, licenses={"express": "MIT", "left-pad": "WTFPL"})

        verdict = engine.run(EVENT)

        assert verdict.overall_blocked is True
        (report,) = verdict.per_workspace
        assert report.project_id == "web"
        assert "**left-pad** `1.3.0`: license: WTFPL" in report.report_text
        assert "does not comply with project policy" in report.report_text
        client.create_issue_comment.assert_called_once_with(REPO, 42, report.report_text)
        args = client.create_check_run.call_args.args
        assert args[:4] == (REPO, "head-sha", "Depguard PR guardrails", "failure")
        assert args[4]["title"] == "PR guardrails failed"

    def test_allowed_license_passes(self):
        client = _client(_left_pad_files(), ["apps/web/package.json"])
        engine = _engine(_config(), client, licenses={"left-pad": "MIT"})

        verdict = engine.run(EVENT)

        assert verdict.overall_blocked is False
        assert client.create_check_run.call_args.args[3] == "success"

    def test_no_manifest_changes_is_a_no_op(self):
        client = _client({}, ["src/index.ts", "README.md"])
        engine = _engine(_config(), client)

        assert engine.run(EVENT) is None
        client.create_issue_comment.assert_not_called()
        client.create_check_run.assert_not_called()

    def test_unconfigured_workspace_is_a_no_op(self):
        client = _client({}, ["apps/docs/package.json"])
        assert _engine(_config(), client).run(EVENT) is None
        client.create_check_run.assert_not_called()

    def test_workspaces_evaluated_independently(self):
        files = {**_left_pad_files("apps/web"), **_left_pad_files("apps/api")}
        client = _client(files, ["apps/web/package.json", "apps/api/package.json"])
        advisories = StubAdvisories({"left-pad": VulnCounts(critical=1)})
        engine = _engine(_config(block_policy_violations=True), client, advisories, {"left-pad": "MIT"})

        verdict = engine.run(EVENT)

        blocked = {r.project_id: r.blocked for r in verdict.per_workspace}
        assert blocked == {"web": False, "api": True}
        assert client.create_issue_comment.call_count == 2
        assert client.create_check_run.call_args.args[3] == "failure"

    def test_failing_workspace_skipped_and_check_run_still_published(self):
        files = {**_left_pad_files("apps/web"), **_left_pad_files("apps/api")}
        client = _client(files, ["apps/web/package.json", "apps/api/package.json"])
        config = _config(block_policy_violations=True)

        # Each workspace looks up left-pad once; only the first lookup fails.
        class PerWorkspaceFailure(StubAdvisories):
            calls = 0
            lock = threading.Lock()

            def get_vuln_counts(self, name, version):
                with self.lock:
                    type(self).calls += 1
                    n = type(self).calls
                if n == 1:
                    raise TransientNetworkError("osv timed out")
                return VulnCounts()

        engine = _engine(config, client, PerWorkspaceFailure(), {"left-pad": "MIT"})

        verdict = engine.run(EVENT)

        assert len(verdict.per_workspace) == 1
        assert client.create_issue_comment.call_count == 1
        client.create_check_run.assert_called_once()
        assert client.create_check_run.call_args.args[3] == "success"

    def test_every_workspace_failing_still_publishes_check_run(self):
        client = _client(_left_pad_files(), ["apps/web/package.json"])
        engine = _engine(_config(block_high=True), client, StubAdvisories(fail_for={"left-pad"}))

        verdict = engine.run(EVENT)

        assert verdict.per_workspace == []
        client.create_issue_comment.assert_not_called()
        client.create_check_run.assert_called_once()

    def test_head_manifest_missing_skips_workspace(self):
        files = {("apps/web/package.json", "base-sha"): {"dependencies": {}}}
        client = _client(files, ["apps/web/package.json"])

        verdict = _engine(_config(), client).run(EVENT)

        assert verdict.per_workspace == []

    def test_new_workspace_without_base_manifest(self):
        files = {
            ("apps/web/package.json", "head-sha"): {"dependencies": {"left-pad": "1.3.0"}},
            ("apps/web/package-lock.json", "head-sha"): _lock({"left-pad": "1.3.0"}),
        }
        client = _client(files, ["apps/web/package.json", "apps/web/package-lock.json"])

        verdict = _engine(_config(), client, licenses={"left-pad": "WTFPL"}).run(EVENT)

        assert verdict.overall_blocked is True
        assert "### Packages added" in verdict.per_workspace[0].report_text

    def test_added_pin_without_lockfile_reports_nothing(self):
        files = {
            ("apps/web/package.json", "base-sha"): {"dependencies": {}},
            ("apps/web/package.json", "head-sha"): {"dependencies": {"left-pad": "1.3.0"}},
        }
        client = _client(files, ["apps/web/package.json"])

        verdict = _engine(_config(), client, licenses={"left-pad": "WTFPL"}).run(EVENT)

        assert verdict.per_workspace == []
        client.create_issue_comment.assert_not_called()

    def test_guardrails_disabled_project_skipped(self):
        config = _config()
        config["projects"][0]["guardrails"] = {}
        client = _client(_left_pad_files(), ["apps/web/package.json"])

        verdict = _engine(config, client).run(EVENT)

        assert verdict.per_workspace == []
        client.get_file_content.assert_not_called()

    def test_transitive_packages_checked_when_enabled(self):
        files = _left_pad_files()
        files[("apps/web/package-lock.json", "head-sha")] = _lock(
            {"express": "4.18.2", "left-pad": "1.3.0", "qs": "6.11.0"}
        )
        client = _client(files, ["apps/web/package-lock.json"])
        advisories = StubAdvisories({"qs": VulnCounts(high=2)})
        engine = _engine(_config(block_high=True, block_transitive_vulns=True), client, advisories)

        verdict = engine.run(EVENT)

        text = verdict.per_workspace[0].report_text
        assert "### Transitive dependencies (new/updated)" in text
        assert "**qs** `6.11.0`" in text
        assert verdict.overall_blocked is True

    def test_existing_check_run_updated_in_place(self):
        client = _client(_left_pad_files(), ["apps/web/package.json"])
        client.list_check_runs_for_ref.return_value = [77]

        _engine(_config(), client, licenses={"left-pad": "MIT"}).run(EVENT)

        client.update_check_run.assert_called_once()
        assert client.update_check_run.call_args.args[:3] == (REPO, 77, "success")
        client.create_check_run.assert_not_called()

    def test_dry_run_publishes_nothing(self):
        client = _client(_left_pad_files(), ["apps/web/package.json"])

        verdict = _engine(_config(), client, licenses={"left-pad": "WTFPL"}).run(EVENT, dry_run=True)

        assert verdict.overall_blocked is True
        client.create_issue_comment.assert_not_called()
        client.create_check_run.assert_not_called()

    def test_comment_failure_does_not_stop_check_run(self):
        client = _client(_left_pad_files(), ["apps/web/package.json"])
        client.create_issue_comment.side_effect = VcsApiError(403, None, "forbidden")

        _engine(_config(), client, licenses={"left-pad": "MIT"}).run(EVENT)

        client.create_check_run.assert_called_once()


class TestRunnerAndWebhook:
    def _payload(self, action="opened"):
        return {
            "action": action,
            "repository": {"full_name": REPO},
            "installation": {"id": 111},
            "pull_request": {"number": 42, "base": {"sha": "base-sha"}, "head": {"sha": "head-sha"}},
        }

    def test_pull_request_event_scheduled(self):
        runner = MagicMock()
        assert handle_github_event("pull_request", self._payload(), runner) == {"received": True}
        runner.submit.assert_called_once_with(EVENT)

    @pytest.mark.parametrize("action", ["closed", "edited", "labeled"])
    def test_other_actions_ignored(self, action):
        runner = MagicMock()
        assert handle_github_event("pull_request", self._payload(action), runner) == {"received": True}
        runner.submit.assert_not_called()

    def test_other_events_ignored(self):
        runner = MagicMock()
        handle_github_event("push", {}, runner)
        runner.submit.assert_not_called()

    def test_incomplete_payload_ignored(self, caplog):
        runner = MagicMock()
        with caplog.at_level(logging.INFO, logger="depguard_core.guardrails"):
            assert handle_github_event("pull_request", {"action": "opened"}, runner) == {"received": True}
        runner.submit.assert_not_called()
        assert "Missing repository, base or head sha, or PR number" in caplog.text
        assert "installation" not in caplog.text

    def test_payload_without_installation_scheduled(self):
        payload = self._payload()
        del payload["installation"]
        runner = MagicMock()

        handle_github_event("pull_request", payload, runner)

        event = runner.submit.call_args.args[0]
        assert (event.pr_number, event.installation_id) == (42, None)

    def test_runner_runs_engine_in_background(self):
        engine = MagicMock()
        runner = GuardrailRunner(engine)
        runner.submit(EVENT).result(timeout=5)
        runner.shutdown()
        engine.run.assert_called_once_with(EVENT)

    def test_runner_logs_failures(self, caplog):
        engine = MagicMock()
        engine.run.side_effect = RuntimeError("boom")
        runner = GuardrailRunner(engine)

        future = runner.submit(EVENT)
        runner.shutdown(wait=True)

        assert isinstance(future.exception(), RuntimeError)
        assert "Guardrail evaluation for acme/mono#42 failed" in caplog.text

    def test_submit_after_shutdown_reported(self):
        runner = GuardrailRunner(MagicMock())
        runner.shutdown()
        ack = handle_github_event("pull_request", self._payload(), runner)
        assert ack["received"] is True
        assert "error" in ack
