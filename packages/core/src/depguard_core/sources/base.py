"""Interfaces for the vulnerability and license data sources.

The guardrail evaluator depends on these, not on a concrete backend, so the
OSV / npm registry implementations can be swapped for a database or a test
double.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from depguard_core.policy import VulnCounts


class AdvisorySource(ABC):
    @abstractmethod
    def get_vuln_counts(self, name: str, version: str) -> VulnCounts:
        """Return the number of known advisories affecting ``name@version``, by severity.

        Raises TransientNetworkError when the source cannot be reached.
        """


class LicenseSource(ABC):
    @abstractmethod
    def get_license(self, name: str) -> str | None:
        """Return the declared license of a package, or None if it is not known here."""
