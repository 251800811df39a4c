from __future__ import annotations

from typing import TYPE_CHECKING

from depguard_core.sources.base import LicenseSource

if TYPE_CHECKING:
    from depguard_store.base import BaseStore


class TrackedLicenseSource(LicenseSource):
    """Licenses recorded on the store's tracked-dependency catalog."""

    def __init__(self, store: BaseStore):
        self._store = store

    def get_license(self, name: str) -> str | None:
        dependency = self._store.get_dependency(name)
        return dependency.license if dependency else None
