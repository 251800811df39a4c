"""Thin PyGithub adapter exposing the repository operations depguard needs.

Every call goes through ``_call`` so that PyGithub / requests failures surface
as depguard errors: GithubException -> VcsApiError (422 "Reference already
exists" -> BranchAlreadyExistsError) and timeouts / connection failures ->
TransientNetworkError.
"""

from __future__ import annotations

import logging
import subprocess
import threading

import requests
from github import Auth, Github, GithubException, GithubIntegration

from depguard_core.errors import (
    BranchAlreadyExistsError,
    InvalidManifestError,
    NoVcsConnectedError,
    TransientNetworkError,
    VcsApiError,
)

logger = logging.getLogger(__name__)

_REF_EXISTS = "reference already exists"


def _error_message(e: GithubException) -> str:
    data = e.data if isinstance(e.data, dict) else {}
    return str(data.get("message") or e.data or "")


def _call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except GithubException as e:
        raise VcsApiError(e.status, e.data, f"GitHub API error {e.status}: {_error_message(e)}") from e
    except (requests.Timeout, requests.ConnectionError) as e:
        raise TransientNetworkError(f"GitHub request failed: {e}") from e


class GitHubClient:
    def __init__(self, token: str, timeout: float = 15, pool_size: int | None = None):
        self._gh = Github(auth=Auth.Token(token), timeout=int(timeout), pool_size=pool_size)
        self._repos: dict = {}

    def repo(self, repo_full_name: str):
        if repo_full_name not in self._repos:
            self._repos[repo_full_name] = self._gh.get_repo(repo_full_name, lazy=True)
        return self._repos[repo_full_name]

    # --- branches and content ---

    def get_branch_sha(self, repo_full_name: str, branch: str) -> str:
        return _call(lambda: self.repo(repo_full_name).get_branch(branch).commit.sha)

    def create_branch(self, repo_full_name: str, branch: str, from_sha: str) -> None:
        try:
            self.repo(repo_full_name).create_git_ref(ref=f"refs/heads/{branch}", sha=from_sha)
        except GithubException as e:
            if e.status == 422 and _REF_EXISTS in _error_message(e).lower():
                raise BranchAlreadyExistsError(e.status, e.data, f"Branch already exists: {branch}") from e
            raise VcsApiError(e.status, e.data, f"GitHub API error {e.status}: {_error_message(e)}") from e
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientNetworkError(f"GitHub request failed: {e}") from e

    def get_file_with_sha(self, repo_full_name: str, path: str, ref: str) -> tuple[str, str]:
        """Return (decoded text, blob sha) of a file at ``ref``."""
        content = _call(self.repo(repo_full_name).get_contents, path, ref=ref)
        if isinstance(content, list):
            raise VcsApiError(None, None, f"{path} is a directory")
        try:
            text = content.decoded_content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidManifestError(f"{path} is not valid UTF-8") from e
        return text, content.sha

    def get_file_content(self, repo_full_name: str, path: str, ref: str) -> str:
        return self.get_file_with_sha(repo_full_name, path, ref)[0]

    def create_or_update_file(
        self,
        repo_full_name: str,
        branch: str,
        path: str,
        content: str,
        message: str,
        sha: str | None = None,
    ) -> None:
        repo = self.repo(repo_full_name)
        if sha:
            _call(repo.update_file, path, message, content, sha, branch=branch)
        else:
            _call(repo.create_file, path, message, content, branch=branch)

    def get_changed_files(self, repo_full_name: str, base_sha: str, head_sha: str) -> list[str]:
        """Paths touched between two commits, including the old path of renamed files."""
        comparison = _call(self.repo(repo_full_name).compare, base_sha, head_sha)
        paths: list[str] = []
        for f in comparison.files:
            for path in (f.filename, getattr(f, "previous_filename", None)):
                if path and path not in paths:
                    paths.append(path)
        return paths

    # --- pull requests ---

    def create_pull_request(
        self, repo_full_name: str, base: str, head: str, title: str, body: str
    ) -> tuple[str, int]:
        pr = _call(self.repo(repo_full_name).create_pull, base=base, head=head, title=title, body=body)
        return pr.html_url, pr.number

    def list_pull_requests_by_head(self, repo_full_name: str, branch: str) -> list[tuple[str, int]]:
        """Open PRs whose head is ``branch`` in the same repository."""
        owner = repo_full_name.split("/", 1)[0]
        pulls = _call(lambda: list(self.repo(repo_full_name).get_pulls(state="open", head=f"{owner}:{branch}")))
        return [(pr.html_url, pr.number) for pr in pulls]

    def get_pull_request_shas(self, repo_full_name: str, number: int) -> tuple[str, str]:
        """Return (base sha, head sha) of a pull request."""
        pr = _call(self.repo(repo_full_name).get_pull, number)
        return pr.base.sha, pr.head.sha

    def get_pull_request_state(self, repo_full_name: str, number: int) -> str:
        return _call(lambda: self.repo(repo_full_name).get_pull(number).state)

    def close_pull_request(self, repo_full_name: str, number: int) -> None:
        _call(lambda: self.repo(repo_full_name).get_pull(number).edit(state="closed"))

    def create_issue_comment(self, repo_full_name: str, number: int, body: str) -> None:
        _call(lambda: self.repo(repo_full_name).get_issue(number).create_comment(body))

    # --- check runs ---

    def list_check_runs_for_ref(self, repo_full_name: str, ref: str, name: str) -> list[int]:
        """Ids of the check runs called ``name`` on commit ``ref``."""
        runs = _call(lambda: list(self.repo(repo_full_name).get_commit(ref).get_check_runs(check_name=name)))
        return [run.id for run in runs]

    def create_check_run(
        self, repo_full_name: str, head_sha: str, name: str, conclusion: str, output: dict
    ) -> None:
        _call(
            self.repo(repo_full_name).create_check_run,
            name=name,
            head_sha=head_sha,
            status="completed",
            conclusion=conclusion,
            output=output,
        )

    def update_check_run(self, repo_full_name: str, check_run_id: int, conclusion: str, output: dict) -> None:
        _call(
            lambda: self.repo(repo_full_name)
            .get_check_run(check_run_id)
            .edit(status="completed", conclusion=conclusion, output=output)
        )


def gh_cli_token(timeout: float = 5) -> str | None:
    """Token of the local GitHub CLI session (`gh auth token`), or None."""
    try:
        result = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=timeout)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    token = result.stdout.strip() if result.returncode == 0 else ""
    return token or None


class GitHubClientFactory:
    """Builds a GitHubClient for an installation.

    With GitHub App credentials an installation access token is minted per
    call. Otherwise the account token is used as is: ``GITHUB_TOKEN`` first,
    then the GitHub CLI session when ``gh_cli_fallback`` is on. The session
    is looked up at most once, and only when a client is actually built.
    """

    def __init__(self, config: dict):
        self._config = config
        self._lock = threading.Lock()
        self._session_checked = False
        self._session_token: str | None = None

    def account_token(self) -> str | None:
        token = self._config.get("github_token")
        if token or not self._config.get("gh_cli_fallback", True):
            return token
        with self._lock:
            if not self._session_checked:
                self._session_token = gh_cli_token()
                self._session_checked = True
                if self._session_token:
                    logger.debug("Using the GitHub CLI session token.")
        return self._session_token

    def create_installation_token(self, installation_id: int) -> str:
        app_id = self._config.get("github_app_id")
        private_key = self._config.get("github_app_private_key")
        if not app_id or not private_key:
            token = self.account_token()
            if not token:
                raise NoVcsConnectedError("No GitHub App credentials, GITHUB_TOKEN or gh session available.")
            return token
        integration = GithubIntegration(auth=Auth.AppAuth(int(app_id), private_key))
        return _call(lambda: integration.get_access_token(int(installation_id)).token)

    def __call__(self, installation_id: int | None) -> GitHubClient:
        if installation_id:
            token = self.create_installation_token(installation_id)
        else:
            token = self.account_token()
            if not token:
                raise NoVcsConnectedError("Organization has no GitHub App connected.")
        return GitHubClient(
            token,
            timeout=self._config.get("request_timeout", 15),
            pool_size=self._config.get("max_workers"),
        )
