"""License lookups against the public npm registry."""

from __future__ import annotations

import logging
from urllib.parse import quote

import requests

from depguard_core.sources.base import LicenseSource

logger = logging.getLogger(__name__)

NPM_REGISTRY_URL = "https://registry.npmjs.org"


class NpmRegistryLicenseSource(LicenseSource):
    """Fallback license source. Registry failures are logged and read as "unknown"."""

    def __init__(self, timeout: float = 15, registry_url: str = NPM_REGISTRY_URL):
        self._timeout = timeout
        self._registry_url = registry_url.rstrip("/")

    def get_license(self, name: str) -> str | None:
        url = f"{self._registry_url}/{quote(name, safe='@')}"
        try:
            resp = requests.get(
                url,
                headers={"Accept": "application/json", "User-Agent": "depguard"},
                timeout=self._timeout,
            )
            if not resp.ok:
                return None
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("npm registry lookup for %s failed: %s", name, e)
            return None

        license_field = data.get("license") if isinstance(data, dict) else None
        if isinstance(license_field, str):
            return license_field
        if isinstance(license_field, dict) and license_field.get("type"):
            return license_field["type"]
        return None
