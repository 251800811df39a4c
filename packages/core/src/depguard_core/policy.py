"""Guardrail policy: severity thresholds, license allow-lists and per-package evaluation."""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from depguard_core.diff import PackageVersion
    from depguard_core.sources.base import AdvisorySource, LicenseSource

logger = logging.getLogger(__name__)

SEVERITIES = ("critical", "high", "medium", "low")


@dataclass(frozen=True)
class VulnCounts:
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low

    def summary(self) -> str:
        if not self.total:
            return "0 vulnerabilities"
        return (
            f"{self.critical} critical, {self.high} high, "
            f"{self.medium} medium, {self.low} low vulnerabilities"
        )


@dataclass(frozen=True)
class GuardrailConfig:
    block_critical: bool = False
    block_high: bool = False
    block_medium: bool = False
    block_low: bool = False
    block_policy_violations: bool = False
    block_transitive_vulns: bool = False
    block_unknown_licenses: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> GuardrailConfig:
        data = data or {}
        return cls(**{name: bool(data.get(name, False)) for name in cls.__dataclass_fields__})

    @property
    def blocks_on_severity(self) -> bool:
        return self.block_critical or self.block_high or self.block_medium or self.block_low

    @property
    def enabled(self) -> bool:
        return self.blocks_on_severity or self.block_policy_violations or self.block_transitive_vulns

    def severity_flags(self) -> dict[str, bool]:
        return {
            "critical": self.block_critical,
            "high": self.block_high,
            "medium": self.block_medium,
            "low": self.block_low,
        }


def normalize_severity(severity: str | None) -> str:
    """Map an advisory severity label onto one of SEVERITIES (unknown -> medium)."""
    s = (severity or "").strip().lower()
    if s in ("critical", "high", "low"):
        return s
    return "medium"


def exceeds_threshold(counts: VulnCounts, severity: str) -> bool:
    """True if ``counts`` has any advisory at or above ``severity``.

    Thresholds are cumulative: "high" trips on critical + high, "low" on anything.
    """
    levels = SEVERITIES[: SEVERITIES.index(severity) + 1]
    return sum(getattr(counts, level) for level in levels) > 0


def severity_blocked(counts: VulnCounts, guardrails: GuardrailConfig) -> bool:
    return any(enabled and exceeds_threshold(counts, sev) for sev, enabled in guardrails.severity_flags().items())


# --- license allow-list matching ---------------------------------------------

_LICENSE_FAMILIES = [
    ("apache", ("apache",)),
    ("mit", ("mit",)),
    ("isc", ("isc",)),
    ("gpl", ("gpl", "general public")),
    ("agpl", ("agpl", "affero")),
    ("lgpl", ("lgpl", "lesser general")),
    ("mpl", ("mpl", "mozilla")),
    ("epl", ("epl", "eclipse")),
    ("cc0", ("cc0", "creative commons zero")),
    ("ccby", ("cc by", "creative commons attribution")),
    ("unlicense", ("unlicense",)),
    ("boost", ("boost", "bsl")),
    ("blueoak", ("blue oak", "blueoak")),
    ("python", ("python",)),
]


def _normalize_license(license_name: str) -> str:
    s = re.sub(r"[-_]", " ", license_name.lower())
    s = re.sub(r"['\"()]", "", s)
    return re.sub(r"\s+", " ", s).strip()


def _license_key(license_name: str) -> str:
    normalized = _normalize_license(license_name)
    parts: list[str] = []

    if "0bsd" in normalized or "0 bsd" in normalized or "zero clause" in normalized:
        parts.append("0bsd")
    elif "bsd" in normalized:
        parts.append("bsd")
        clause = re.search(r"(\d)\s*clause", normalized)
        if clause:
            parts.append(clause.group(1) + "clause")

    for key, needles in _LICENSE_FAMILIES:
        if any(needle in normalized for needle in needles):
            parts.append(key)

    if "0bsd" not in parts:
        version = re.search(r"(\d+\.?\d*)", normalized)
        if version:
            parts.append(version.group(1))

    return "-".join(parts)


def _contains_word(text: str, phrase: str) -> bool:
    return text == phrase or text.startswith(phrase + " ") or text.endswith(" " + phrase) or f" {phrase} " in text


def _single_license_allowed(license_name: str, accepted: Sequence[str]) -> bool:
    key = _license_key(license_name)
    normalized = _normalize_license(license_name)
    for allowed in accepted:
        allowed_key = _license_key(allowed)
        if key and allowed_key and key == allowed_key:
            return True
        # Whole words only, so "GPL-3.0" is not accepted by "LGPL-3.0".
        allowed_normalized = _normalize_license(allowed)
        if _contains_word(normalized, allowed_normalized) or _contains_word(allowed_normalized, normalized):
            return True
    return False


def is_license_allowed(license_name: str | None, accepted: Sequence[str]) -> bool | None:
    """Check a license (``A OR B`` expressions included) against an allow-list.

    Returns None when the license is unknown.
    """
    if not license_name or license_name == "Unknown":
        return None
    parts = [re.sub(r"[()]", "", p).strip() for p in re.split(r"\s+or\s+", license_name, flags=re.IGNORECASE)]
    return any(_single_license_allowed(p, accepted) for p in parts if p)


def violates_policy(license_name: str | None, guardrails: GuardrailConfig, accepted: Sequence[str]) -> bool:
    if not guardrails.block_policy_violations or not accepted:
        return False
    allowed = is_license_allowed(license_name, accepted)
    if allowed is None:
        return guardrails.block_unknown_licenses
    return not allowed


# --- evaluation --------------------------------------------------------------


@dataclass
class PackageEvaluation:
    name: str
    version: str
    vulns: VulnCounts
    license: str | None
    policy_violation: bool
    blocked: bool


class PolicyEvaluator:
    """Resolves advisories and licenses for packages and applies a project's guardrails.

    Lookups for different packages are independent and fan out over a bounded
    thread pool; results come back in input order.
    """

    def __init__(
        self,
        advisories: AdvisorySource,
        licenses: Sequence[LicenseSource] = (),
        max_workers: int = 4,
    ):
        self._advisories = advisories
        self._licenses = list(licenses)
        self._max_workers = max(1, max_workers)

    def resolve_license(self, name: str) -> str | None:
        for source in self._licenses:
            license_name = source.get_license(name)
            if license_name:
                return license_name
        return None

    def evaluate(
        self,
        name: str,
        version: str,
        guardrails: GuardrailConfig,
        accepted_licenses: Sequence[str] = (),
    ) -> PackageEvaluation:
        vulns = self._advisories.get_vuln_counts(name, version)
        license_name = self.resolve_license(name)
        policy_violation = violates_policy(license_name, guardrails, accepted_licenses)
        blocked = policy_violation or severity_blocked(vulns, guardrails)
        if blocked:
            logger.info("%s@%s violates guardrails (%s)", name, version, vulns.summary())
        return PackageEvaluation(
            name=name,
            version=version,
            vulns=vulns,
            license=license_name,
            policy_violation=policy_violation,
            blocked=blocked,
        )

    def evaluate_all(
        self,
        packages: Sequence[PackageVersion],
        guardrails: GuardrailConfig,
        accepted_licenses: Sequence[str] = (),
    ) -> list[PackageEvaluation]:
        if not packages:
            return []
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(packages))) as executor:
            futures = [
                executor.submit(self.evaluate, p.name, p.version, guardrails, accepted_licenses) for p in packages
            ]
            return [f.result() for f in futures]
