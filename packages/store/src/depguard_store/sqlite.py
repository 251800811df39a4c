"""SQLiteStore: local file-based store for CLI and CI use.

Schema:
  dependencies: tracked packages (name is unique).
  remediation_prs: one row per remediation PR; UNIQUE on
    (project_id, dependency_id, type, target_version).
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid

from depguard_store.base import BaseStore, RecordConflict
from depguard_store.models import RemediationRecord, TrackedDependency

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS dependencies (
    id       TEXT PRIMARY KEY,
    name     TEXT NOT NULL UNIQUE,
    license  TEXT
);
CREATE TABLE IF NOT EXISTS remediation_prs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT NOT NULL,
    dependency_id   TEXT NOT NULL,
    type            TEXT NOT NULL CHECK (type IN ('bump', 'remove')),
    target_version  TEXT NOT NULL,
    pr_url          TEXT NOT NULL,
    pr_number       INTEGER NOT NULL,
    branch_name     TEXT NOT NULL,
    created_at      TEXT,
    UNIQUE (project_id, dependency_id, type, target_version)
);
CREATE INDEX IF NOT EXISTS idx_remediation_prs_dep ON remediation_prs (project_id, dependency_id, type);
"""


class SQLiteStore(BaseStore):
    """Stores tracked dependencies and remediation PRs in a SQLite database file.

    The path defaults to `.depguard.db` in the working directory. Configure via
    .depguard.yml: `store_path: /path/to/depguard.db`.
    """

    def __init__(self, db_path: str = ".depguard.db"):
        # Guardrail evaluation reads from worker threads.
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def get_dependency(self, name: str) -> TrackedDependency | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM dependencies WHERE name=?", (name,)).fetchone()
        return TrackedDependency(id=row["id"], name=row["name"], license=row["license"]) if row else None

    def save_dependency(self, name: str, license: str | None = None) -> TrackedDependency:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO dependencies (id, name, license) VALUES (?, ?, ?)
                ON CONFLICT (name) DO UPDATE SET license = COALESCE(excluded.license, dependencies.license)
                """,
                (str(uuid.uuid4()), name, license),
            )
            self._conn.commit()
        return self.get_dependency(name)

    def list_dependencies(self) -> list[TrackedDependency]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM dependencies ORDER BY name").fetchall()
        return [TrackedDependency(id=r["id"], name=r["name"], license=r["license"]) for r in rows]

    def find_remediation(
        self, project_id: str, dependency_id: str, type: str, target_version: str
    ) -> RemediationRecord | None:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT * FROM remediation_prs
                WHERE project_id=? AND dependency_id=? AND type=? AND target_version=?
                """,
                (project_id, dependency_id, type, target_version),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_remediations(
        self, project_id: str, dependency_id: str | None = None, type: str | None = None
    ) -> list[RemediationRecord]:
        query = "SELECT * FROM remediation_prs WHERE project_id=?"
        params: list = [project_id]
        if dependency_id is not None:
            query += " AND dependency_id=?"
            params.append(dependency_id)
        if type is not None:
            query += " AND type=?"
            params.append(type)
        query += " ORDER BY created_at, id"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_record(r) for r in rows]

    def insert_remediation(self, record: RemediationRecord) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO remediation_prs
                      (project_id, dependency_id, type, target_version,
                       pr_url, pr_number, branch_name, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._record_params(record),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                logger.debug("Remediation record conflict on %s", record.key)
                raise RecordConflict(record.key) from e

    def upsert_remediation(self, record: RemediationRecord) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO remediation_prs
                  (project_id, dependency_id, type, target_version,
                   pr_url, pr_number, branch_name, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (project_id, dependency_id, type, target_version) DO UPDATE SET
                  pr_url = excluded.pr_url,
                  pr_number = excluded.pr_number,
                  branch_name = excluded.branch_name
                """,
                self._record_params(record),
            )
            self._conn.commit()

    def delete_remediation(self, project_id: str, dependency_id: str, type: str, target_version: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                """
                DELETE FROM remediation_prs
                WHERE project_id=? AND dependency_id=? AND type=? AND target_version=?
                """,
                (project_id, dependency_id, type, target_version),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _record_params(record: RemediationRecord) -> tuple:
        return (
            record.project_id,
            record.dependency_id,
            record.type,
            record.target_version,
            record.pr_url,
            record.pr_number,
            record.branch_name,
            record.created_at,
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> RemediationRecord:
        return RemediationRecord(
            project_id=row["project_id"],
            dependency_id=row["dependency_id"],
            type=row["type"],
            target_version=row["target_version"],
            pr_url=row["pr_url"],
            pr_number=row["pr_number"],
            branch_name=row["branch_name"],
            created_at=row["created_at"] or "",
        )
