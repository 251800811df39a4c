"""package.json patching for remediation PRs.

Edits are made on a ManifestDocument, which keeps the parsed JSON object in
insertion order and re-serialises it with 2-space indentation, so the only
lines that change in the generated diff are the dependency being edited.
"""

from __future__ import annotations

import json
import re

from depguard_core.errors import DependencyNotFoundError, InvalidManifestError, NotDirectDependencyError

# Direct-dependency search order.
DEPENDENCY_SECTIONS = ("dependencies", "devDependencies")

_RANGE_PREFIX_RE = re.compile(r"^[\^~]")


class ManifestDocument:
    """An ordered key/value view over a package.json document."""

    def __init__(self, data: dict, trailing_newline: bool = False):
        self._data = data
        self._trailing_newline = trailing_newline

    @classmethod
    def parse(cls, text: str) -> ManifestDocument:
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            raise InvalidManifestError()
        if not isinstance(data, dict):
            raise InvalidManifestError("package.json must contain a JSON object")
        return cls(data, trailing_newline=text.endswith("\n"))

    @property
    def data(self) -> dict:
        return self._data

    def section(self, name: str) -> dict | None:
        value = self._data.get(name)
        return value if isinstance(value, dict) else None

    def find(self, package_name: str) -> tuple[str, str] | None:
        """Return (section, declared range) of the first section declaring the package."""
        for section_name in DEPENDENCY_SECTIONS:
            section = self.section(section_name)
            if section is not None and package_name in section:
                return section_name, section[package_name]
        return None

    def dumps(self) -> str:
        text = json.dumps(self._data, indent=2, ensure_ascii=False)
        return text + "\n" if self._trailing_newline else text


def strip_range_prefix(version: str) -> str:
    """``"^4.18.0" -> "4.18.0"``."""
    return _RANGE_PREFIX_RE.sub("", version.strip())


def apply_range_prefix(current_range: str, target_version: str) -> str:
    """Carry the ``^``/``~`` prefix of the current range over to the target version.

    ``("^4.17.0", "4.18.0") -> "^4.18.0"`` and ``("4.17.0", "^4.18.0") -> "4.18.0"``.
    """
    current_range = str(current_range).strip()
    if current_range.startswith("^"):
        prefix = "^"
    elif current_range.startswith("~"):
        prefix = "~"
    else:
        prefix = ""
    return prefix + strip_range_prefix(target_version)


def bump_dependency(manifest_text: str, package_name: str, target_version: str) -> str:
    """Return the manifest with ``package_name`` bumped to ``target_version``.

    The entry is rewritten in whichever section declared it. Raises
    NotDirectDependencyError if neither section declares the package.
    """
    doc = ManifestDocument.parse(manifest_text)
    found = doc.find(package_name)
    if found is None:
        raise NotDirectDependencyError(package_name)
    section_name, current_range = found
    doc.section(section_name)[package_name] = apply_range_prefix(current_range, target_version)
    return doc.dumps()


def remove_dependency(manifest_text: str, package_name: str) -> str:
    """Return the manifest with ``package_name`` deleted from every section that declares it."""
    doc = ManifestDocument.parse(manifest_text)
    removed = False
    for section_name in DEPENDENCY_SECTIONS:
        section = doc.section(section_name)
        if section is not None and package_name in section:
            del section[package_name]
            removed = True
    if not removed:
        raise DependencyNotFoundError(package_name)
    return doc.dumps()
