"""Persisted records.

Decoupled from depguard_core so the store layer can be used (and tested)
without any GitHub or policy code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

BUMP = "bump"
REMOVE = "remove"

# target_version stored on remove records; the uniqueness key needs a non-null value.
REMOVE_TARGET = "remove"


@dataclass
class TrackedDependency:
    """A package known to depguard; remediation PRs can only be opened for these."""

    id: str
    name: str
    license: str | None = None


@dataclass
class RemediationRecord:
    """A remediation PR opened (or adopted) by depguard.

    Unique per (project_id, dependency_id, type, target_version). Records are
    never updated in place: superseded bump records are deleted and a new one
    is written for the new target.
    """

    project_id: str
    dependency_id: str
    type: str  # "bump" | "remove"
    target_version: str
    pr_url: str
    pr_number: int
    branch_name: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.project_id, self.dependency_id, self.type, self.target_version)
