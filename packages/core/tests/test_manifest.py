"""Tests for package.json patching."""

import json

import pytest

from depguard_core.errors import DependencyNotFoundError, InvalidManifestError, NotDirectDependencyError
from depguard_core.manifest import ManifestDocument, apply_range_prefix, bump_dependency, remove_dependency

MANIFEST = (
    json.dumps(
        {
            "name": "web",
            "version": "1.0.0",
            "dependencies": {"express": "^4.17.0", "lodash": "~4.17.20", "zod": "3.22.0"},
            "devDependencies": {"jest": "^29.0.0", "@types/node": "^20.1.0"},
        },
        indent=2,
    )
    + "\n"
)


class TestApplyRangePrefix:
    @pytest.mark.parametrize(
        "current, target, expected",
        [
            ("^4.17.0", "4.18.0", "^4.18.0"),
            ("~4.17.20", "4.17.21", "~4.17.21"),
            ("4.17.0", "4.18.0", "4.18.0"),
            ("4.17.0", "^4.18.0", "4.18.0"),
            ("^1.0.0", "~2.0.0", "^2.0.0"),
        ],
    )
    def test_prefix_follows_current_range(self, current, target, expected):
        assert apply_range_prefix(current, target) == expected


class TestBumpDependency:
    def test_keeps_caret_prefix(self):
        out = json.loads(bump_dependency(MANIFEST, "express", "4.18.0"))
        assert out["dependencies"]["express"] == "^4.18.0"

    def test_bumps_dev_dependency_in_place(self):
        out = json.loads(bump_dependency(MANIFEST, "jest", "29.7.0"))
        assert out["devDependencies"]["jest"] == "^29.7.0"
        assert "jest" not in out["dependencies"]

    def test_exact_pin_stays_exact(self):
        out = json.loads(bump_dependency(MANIFEST, "zod", "3.23.8"))
        assert out["dependencies"]["zod"] == "3.23.8"

    def test_only_the_bumped_line_changes(self):
        patched = bump_dependency(MANIFEST, "express", "4.18.0")
        changed = [(a, b) for a, b in zip(MANIFEST.splitlines(), patched.splitlines()) if a != b]
        assert changed == [('    "express": "^4.17.0",', '    "express": "^4.18.0",')]
        assert patched.endswith("\n")

    def test_transitive_package_raises(self):
        with pytest.raises(NotDirectDependencyError):
            bump_dependency(MANIFEST, "qs", "6.11.0")

    def test_invalid_json_raises(self):
        with pytest.raises(InvalidManifestError):
            bump_dependency("{not json", "express", "4.18.0")

    def test_non_object_raises(self):
        with pytest.raises(InvalidManifestError):
            bump_dependency("[]", "express", "4.18.0")


class TestRemoveDependency:
    def test_removes_from_dependencies(self):
        out = json.loads(remove_dependency(MANIFEST, "lodash"))
        assert "lodash" not in out["dependencies"]
        assert out["dependencies"]["express"] == "^4.17.0"

    def test_removes_from_every_section(self):
        text = json.dumps({"dependencies": {"a": "1.0.0"}, "devDependencies": {"a": "1.0.0", "b": "2.0.0"}})
        out = json.loads(remove_dependency(text, "a"))
        assert out == {"dependencies": {}, "devDependencies": {"b": "2.0.0"}}

    def test_absent_package_raises(self):
        with pytest.raises(DependencyNotFoundError):
            remove_dependency(MANIFEST, "left-pad")


class TestManifestDocument:
    def test_find_prefers_dependencies(self):
        text = json.dumps({"dependencies": {"a": "^1.0.0"}, "devDependencies": {"a": "^2.0.0"}})
        assert ManifestDocument.parse(text).find("a") == ("dependencies", "^1.0.0")

    def test_find_missing(self):
        assert ManifestDocument.parse(MANIFEST).find("qs") is None

    def test_no_trailing_newline_preserved(self):
        text = json.dumps({"name": "x"}, indent=2)
        assert ManifestDocument.parse(text).dumps() == text

    def test_non_ascii_kept(self):
        text = json.dumps({"description": "héllo"}, indent=2, ensure_ascii=False)
        assert "héllo" in ManifestDocument.parse(text).dumps()
