"""Abstract store interface.

The remediation flow depends on BaseStore, not on a concrete backend, so
SQLite, in-memory and any team-specific database are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from depguard_store.models import RemediationRecord, TrackedDependency


class RecordConflict(Exception):
    """A record with the same (project, dependency, type, target) key already exists."""

    def __init__(self, key: tuple):
        super().__init__(f"Remediation record already exists for {key}")
        self.key = key


class BaseStore(ABC):
    """Persistence for tracked dependencies and remediation records.

    There is no transaction spanning the GitHub calls of a remediation; the
    uniqueness constraint on remediation records is the only guard against two
    concurrent requests persisting the same PR twice.
    """

    # --- tracked dependencies ---

    @abstractmethod
    def get_dependency(self, name: str) -> TrackedDependency | None:
        """Return the tracked dependency with this package name, or None."""

    @abstractmethod
    def save_dependency(self, name: str, license: str | None = None) -> TrackedDependency:
        """Track a package (idempotent). An existing entry keeps its id; a given license replaces the old one."""

    @abstractmethod
    def list_dependencies(self) -> list[TrackedDependency]:
        """Return every tracked dependency, ordered by name."""

    # --- remediation records ---

    @abstractmethod
    def find_remediation(
        self, project_id: str, dependency_id: str, type: str, target_version: str
    ) -> RemediationRecord | None:
        """Return the record with this exact key, or None."""

    @abstractmethod
    def list_remediations(
        self, project_id: str, dependency_id: str | None = None, type: str | None = None
    ) -> list[RemediationRecord]:
        """Return a project's records, optionally filtered. Never raises for an empty result."""

    @abstractmethod
    def insert_remediation(self, record: RemediationRecord) -> None:
        """Insert a new record. Raises RecordConflict if the key already exists."""

    @abstractmethod
    def upsert_remediation(self, record: RemediationRecord) -> None:
        """Insert a record or overwrite the PR identity of the existing one with the same key."""

    @abstractmethod
    def delete_remediation(self, project_id: str, dependency_id: str, type: str, target_version: str) -> bool:
        """Delete a record. Returns False if there was nothing to delete."""

    def create_or_fetch(self, record: RemediationRecord) -> tuple[RemediationRecord, bool]:
        """Optimistically insert ``record``; on a key conflict return the record already stored.

        Returns (record, created).
        """
        try:
            self.insert_remediation(record)
            return record, True
        except RecordConflict:
            existing = self.find_remediation(*record.key)
            if existing is None:
                # Deleted between the failed insert and the read.
                self.upsert_remediation(record)
                return record, True
            return existing, False

    def close(self) -> None:
        """Release any resources held by the store. Default is a no-op."""
