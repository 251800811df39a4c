"""Dependency diff between a PR's base and head snapshots of one workspace.

A workspace is a package.json / package-lock.json pair at a repository
subpath ("" for the repository root). Manifests tell us which packages are
direct; lockfiles tell us which versions were actually resolved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from depguard_core.manifest import DEPENDENCY_SECTIONS

MANIFEST_FILENAME = "package.json"
LOCKFILE_FILENAME = "package-lock.json"

_WORKSPACE_FILE_RE = re.compile(r"^(.+)/(?:package\.json|package-lock\.json)$")


@dataclass(frozen=True)
class PackageVersion:
    name: str
    version: str


@dataclass(frozen=True)
class PackageBump:
    name: str
    old_version: str
    new_version: str


@dataclass
class ManifestDiffResult:
    direct_added: list[PackageVersion] = field(default_factory=list)
    direct_bumped: list[PackageBump] = field(default_factory=list)
    transitive_added: list[PackageVersion] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.direct_added or self.direct_bumped or self.transitive_added)


def workspace_paths(subpath: str) -> tuple[str, str]:
    """Return (manifest path, lockfile path) for a workspace subpath."""
    subpath = subpath.strip().strip("/")
    if not subpath:
        return MANIFEST_FILENAME, LOCKFILE_FILENAME
    return f"{subpath}/{MANIFEST_FILENAME}", f"{subpath}/{LOCKFILE_FILENAME}"


def affected_workspaces(changed_files: list[str]) -> list[str]:
    """Return the distinct workspace subpaths touched by a list of changed paths."""
    workspaces: set[str] = set()
    for path in changed_files:
        if path in (MANIFEST_FILENAME, LOCKFILE_FILENAME):
            workspaces.add("")
            continue
        match = _WORKSPACE_FILE_RE.match(path)
        if match:
            workspaces.add(match.group(1))
    return sorted(workspaces)


def direct_dependencies(manifest: dict | None) -> dict[str, str]:
    """Union of ``dependencies`` and ``devDependencies``; regular entries win."""
    out: dict[str, str] = {}
    if not manifest:
        return out
    for section_name in DEPENDENCY_SECTIONS:
        section = manifest.get(section_name)
        if not isinstance(section, dict):
            continue
        for name, spec in section.items():
            if name not in out:
                out[name] = spec
    return out


def resolved_version(lockfile: dict | None, name: str) -> str | None:
    """Version of ``name`` installed at the top of node_modules.

    Looks in the lockfile v2/v3 ``packages`` map first, then the legacy v1
    ``dependencies`` map.
    """
    if not lockfile:
        return None
    packages = lockfile.get("packages")
    if isinstance(packages, dict):
        entry = packages.get(f"node_modules/{name}")
        if isinstance(entry, dict) and entry.get("version"):
            return entry["version"]
    legacy = lockfile.get("dependencies")
    if isinstance(legacy, dict):
        entry = legacy.get(name)
        if isinstance(entry, dict) and entry.get("version"):
            return entry["version"]
    return None


def _walk_legacy(dependencies: dict, out: set[tuple[str, str]]) -> None:
    for name, entry in dependencies.items():
        if not isinstance(entry, dict):
            continue
        version = entry.get("version")
        if version:
            out.add((name, version))
        nested = entry.get("dependencies")
        if isinstance(nested, dict):
            _walk_legacy(nested, out)


def lockfile_packages(lockfile: dict | None) -> set[tuple[str, str]]:
    """Every (name, version) pair installed by a lockfile, excluding the root project."""
    out: set[tuple[str, str]] = set()
    if not lockfile:
        return out
    packages = lockfile.get("packages")
    if isinstance(packages, dict) and packages:
        for path_key, entry in packages.items():
            if path_key == "" or "node_modules/" not in path_key or not isinstance(entry, dict):
                continue
            name = entry.get("name") or path_key.rsplit("node_modules/", 1)[-1]
            version = entry.get("version")
            if name and version:
                out.add((name, version))
        return out
    legacy = lockfile.get("dependencies")
    if isinstance(legacy, dict):
        _walk_legacy(legacy, out)
    return out


def diff_workspace(
    base_manifest: dict | None,
    head_manifest: dict | None,
    base_lockfile: dict | None = None,
    head_lockfile: dict | None = None,
    include_transitive: bool = False,
) -> ManifestDiffResult:
    """Classify the dependency changes between two snapshots of a workspace."""
    base_direct = direct_dependencies(base_manifest)
    head_direct = direct_dependencies(head_manifest)
    result = ManifestDiffResult()

    for name in head_direct:
        new_version = resolved_version(head_lockfile, name)
        if not new_version:
            continue
        if name not in base_direct:
            result.direct_added.append(PackageVersion(name, new_version))
            continue
        old_version = resolved_version(base_lockfile, name)
        if old_version and old_version != new_version:
            result.direct_bumped.append(PackageBump(name, old_version, new_version))

    if include_transitive and base_lockfile and head_lockfile:
        direct_names = set(base_direct) | set(head_direct)
        added = lockfile_packages(head_lockfile) - lockfile_packages(base_lockfile)
        for name, version in sorted(added):
            if name in direct_names or not version:
                continue
            result.transitive_added.append(PackageVersion(name, version))

    return result
