"""Vulnerability counts from the OSV database (https://osv.dev)."""

from __future__ import annotations

import logging

import requests

from depguard_core.errors import AdvisorySourceError, TransientNetworkError
from depguard_core.policy import VulnCounts, normalize_severity
from depguard_core.sources.base import AdvisorySource

logger = logging.getLogger(__name__)

OSV_QUERY_URL = "https://api.osv.dev/v1/query"

# OSV pages large result sets; no real package needs more than this.
_MAX_PAGES = 10


class OSVAdvisorySource(AdvisorySource):
    def __init__(self, ecosystem: str = "npm", timeout: float = 15, url: str = OSV_QUERY_URL):
        self._ecosystem = ecosystem
        self._timeout = timeout
        self._url = url

    def _query(self, name: str, version: str) -> list[dict]:
        vulns: list[dict] = []
        payload: dict = {"version": version, "package": {"name": name, "ecosystem": self._ecosystem}}
        for _ in range(_MAX_PAGES):
            try:
                resp = requests.post(self._url, json=payload, timeout=self._timeout)
            except requests.RequestException as e:
                raise TransientNetworkError(f"OSV query for {name}@{version} failed: {e}") from e
            if resp.status_code >= 500:
                raise TransientNetworkError(f"OSV query for {name}@{version} failed: HTTP {resp.status_code}")
            if resp.status_code >= 400:
                raise AdvisorySourceError(
                    resp.status_code, f"OSV rejected query for {name}@{version}: HTTP {resp.status_code}"
                )
            data = resp.json() or {}
            vulns.extend(data.get("vulns") or [])
            token = data.get("next_page_token")
            if not token:
                break
            payload["page_token"] = token
        return vulns

    def get_vuln_counts(self, name: str, version: str) -> VulnCounts:
        counts = {"critical": 0, "high": 0, "medium": 0, "low": 0}
        seen: set[str] = set()
        for vuln in self._query(name, version):
            ids = {vuln.get("id", "")} | set(vuln.get("aliases") or [])
            if ids & seen:
                continue
            seen |= ids
            severity = (vuln.get("database_specific") or {}).get("severity")
            counts[normalize_severity(severity)] += 1
        logger.debug("OSV %s@%s: %s", name, version, counts)
        return VulnCounts(**counts)
