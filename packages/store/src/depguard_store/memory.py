"""In-memory store: the backend for `store: memory` and for tests.

Enforces the same uniqueness rules as SQLiteStore, but everything is lost
when the process exits.
"""

from __future__ import annotations

import dataclasses
import threading
import uuid
from typing import TYPE_CHECKING

from depguard_store.base import BaseStore, RecordConflict
from depguard_store.models import TrackedDependency

if TYPE_CHECKING:
    from depguard_store.models import RemediationRecord


class MemoryStore(BaseStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._dependencies: dict[str, TrackedDependency] = {}
        self._records: dict[tuple, RemediationRecord] = {}

    def get_dependency(self, name: str) -> TrackedDependency | None:
        with self._lock:
            dependency = self._dependencies.get(name)
        return dataclasses.replace(dependency) if dependency else None

    def save_dependency(self, name: str, license: str | None = None) -> TrackedDependency:
        with self._lock:
            existing = self._dependencies.get(name)
            if existing is None:
                existing = TrackedDependency(id=str(uuid.uuid4()), name=name, license=license)
                self._dependencies[name] = existing
            elif license:
                existing.license = license
            return dataclasses.replace(existing)

    def list_dependencies(self) -> list[TrackedDependency]:
        with self._lock:
            return [dataclasses.replace(d) for _, d in sorted(self._dependencies.items())]

    def find_remediation(
        self, project_id: str, dependency_id: str, type: str, target_version: str
    ) -> RemediationRecord | None:
        with self._lock:
            record = self._records.get((project_id, dependency_id, type, target_version))
        return dataclasses.replace(record) if record else None

    def list_remediations(
        self, project_id: str, dependency_id: str | None = None, type: str | None = None
    ) -> list[RemediationRecord]:
        with self._lock:
            records = list(self._records.values())
        return [
            dataclasses.replace(r)
            for r in records
            if r.project_id == project_id
            and (dependency_id is None or r.dependency_id == dependency_id)
            and (type is None or r.type == type)
        ]

    def insert_remediation(self, record: RemediationRecord) -> None:
        with self._lock:
            if record.key in self._records:
                raise RecordConflict(record.key)
            self._records[record.key] = dataclasses.replace(record)

    def upsert_remediation(self, record: RemediationRecord) -> None:
        with self._lock:
            existing = self._records.get(record.key)
            if existing is None:
                self._records[record.key] = dataclasses.replace(record)
            else:
                self._records[record.key] = dataclasses.replace(
                    existing, pr_url=record.pr_url, pr_number=record.pr_number, branch_name=record.branch_name
                )

    def delete_remediation(self, project_id: str, dependency_id: str, type: str, target_version: str) -> bool:
        with self._lock:
            return self._records.pop((project_id, dependency_id, type, target_version), None) is not None
