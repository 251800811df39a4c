import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from depguard_core.errors import NoVcsConnectedError
from depguard_core.policy import GuardrailConfig

DEFAULT_CONFIG: dict = {
    "store": "sqlite",  # "sqlite" | "memory"
    "store_path": ".depguard.db",
    "branch_prefix": "depguard",
    "check_run_name": "Depguard PR guardrails",
    "request_timeout": 15,  # seconds, every GitHub / OSV / npm call
    "max_workers": 4,  # bound for per-workspace and per-package fan-out
    "ecosystem": "npm",
    "gh_cli_fallback": True,  # use `gh auth token` when GITHUB_TOKEN is unset
    "organizations": {},
    "projects": [],
}


@dataclass
class RepositoryBinding:
    repo_full_name: str
    default_branch: str
    installation_id: Optional[int]
    manifest_subpath: str = ""


@dataclass
class ProjectConfig:
    id: str
    name: str
    organization_id: Optional[str]
    repo: Optional[str] = None
    default_branch: Optional[str] = None
    installation_id: Optional[int] = None
    workspace: str = ""
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    accepted_licenses: Optional[list] = None


def load_config(config_path: str = ".depguard.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .depguard.yml in the current directory
      3. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "organizations": dict(DEFAULT_CONFIG["organizations"]),
        "projects": list(DEFAULT_CONFIG["projects"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["github_app_id"] = os.environ.get("GITHUB_APP_ID")
    config["github_app_private_key"] = _read_private_key()

    return config


def _read_private_key() -> Optional[str]:
    key = os.environ.get("GITHUB_APP_PRIVATE_KEY")
    if key:
        return key.replace("\\n", "\n")
    key_path = os.environ.get("GITHUB_APP_PRIVATE_KEY_PATH")
    if key_path and Path(key_path).exists():
        return Path(key_path).read_text()
    return None


def get_projects(config: dict) -> list[ProjectConfig]:
    projects = []
    for raw in config.get("projects") or []:
        projects.append(
            ProjectConfig(
                id=str(raw["id"]),
                name=raw.get("name") or str(raw["id"]),
                organization_id=raw.get("organization_id"),
                repo=raw.get("repo"),
                default_branch=raw.get("default_branch"),
                installation_id=raw.get("installation_id"),
                workspace=(raw.get("workspace") or "").strip().strip("/"),
                guardrails=GuardrailConfig.from_dict(raw.get("guardrails")),
                accepted_licenses=raw.get("accepted_licenses"),
            )
        )
    return projects


def get_project(config: dict, project_id: str) -> ProjectConfig:
    for project in get_projects(config):
        if project.id == project_id:
            return project
    raise KeyError(f"Unknown project: {project_id!r}")


def projects_for_repo(config: dict, repo_full_name: str, workspaces: list[str]) -> list[ProjectConfig]:
    """Projects linked to ``repo_full_name`` whose workspace is one of ``workspaces``."""
    wanted = set(workspaces)
    return [
        p
        for p in get_projects(config)
        if p.repo and p.repo.lower() == repo_full_name.lower() and p.workspace in wanted
    ]


def _organization(config: dict, organization_id: Optional[str]) -> dict:
    if not organization_id:
        return {}
    return (config.get("organizations") or {}).get(organization_id) or {}


def effective_accepted_licenses(config: dict, project: ProjectConfig) -> list[str]:
    """Project allow-list when set, else the organization's."""
    if project.accepted_licenses is not None:
        return list(project.accepted_licenses)
    return list(_organization(config, project.organization_id).get("accepted_licenses") or [])


def resolve_installation_id(config: dict, project: ProjectConfig) -> Optional[int]:
    return project.installation_id or _organization(config, project.organization_id).get("installation_id")


def resolve_binding(config: dict, project: ProjectConfig) -> RepositoryBinding:
    """Return the repository a project's remediation PRs are opened against.

    Raises NoVcsConnectedError when the project has no repository. A missing
    installation is allowed here; GitHubClientFactory then falls back to the
    account token and raises NoVcsConnectedError if there is none.
    """
    installation_id = resolve_installation_id(config, project)
    if not project.repo or not project.default_branch:
        raise NoVcsConnectedError("Project has no GitHub repository connected.")
    return RepositoryBinding(
        repo_full_name=project.repo,
        default_branch=project.default_branch,
        installation_id=installation_id,
        manifest_subpath=project.workspace,
    )
