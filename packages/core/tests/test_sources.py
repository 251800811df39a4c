"""Tests for the OSV, npm registry and tracked-catalog data sources."""

from unittest.mock import MagicMock

import pytest
import requests

from depguard_core.errors import AdvisorySourceError, TransientNetworkError
from depguard_core.policy import VulnCounts
from depguard_core.sources.npm import NpmRegistryLicenseSource
from depguard_core.sources.osv import OSVAdvisorySource
from depguard_core.sources.tracked import TrackedLicenseSource
from depguard_store.memory import MemoryStore


def _response(data, ok=True, status=200):
    resp = MagicMock()
    resp.ok = ok
    resp.json.return_value = data
    resp.status_code = status
    return resp


class TestOSVAdvisorySource:
    def test_counts_by_severity(self, mocker):
        post = mocker.patch(
            "depguard_core.sources.osv.requests.post",
            return_value=_response(
                {
                    "vulns": [
                        {"id": "GHSA-1", "database_specific": {"severity": "CRITICAL"}},
                        {"id": "GHSA-2", "database_specific": {"severity": "HIGH"}},
                        {"id": "GHSA-3", "database_specific": {"severity": "MODERATE"}},
                        {"id": "GHSA-4"},
                        {"id": "GHSA-5", "database_specific": {"severity": "LOW"}},
                    ]
                }
            ),
        )
        counts = OSVAdvisorySource(timeout=3).get_vuln_counts("lodash", "4.17.20")

        assert counts == VulnCounts(critical=1, high=1, medium=2, low=1)
        kwargs = post.call_args.kwargs
        assert kwargs["json"] == {"version": "4.17.20", "package": {"name": "lodash", "ecosystem": "npm"}}
        assert kwargs["timeout"] == 3

    def test_aliases_counted_once(self, mocker):
        mocker.patch(
            "depguard_core.sources.osv.requests.post",
            return_value=_response(
                {
                    "vulns": [
                        {"id": "GHSA-1", "aliases": ["CVE-2021-1"], "database_specific": {"severity": "HIGH"}},
                        {"id": "CVE-2021-1", "database_specific": {"severity": "HIGH"}},
                    ]
                }
            ),
        )
        assert OSVAdvisorySource().get_vuln_counts("a", "1.0.0") == VulnCounts(high=1)

    def test_follows_page_token(self, mocker):
        post = mocker.patch(
            "depguard_core.sources.osv.requests.post",
            side_effect=[
                _response({"vulns": [{"id": "A", "database_specific": {"severity": "LOW"}}], "next_page_token": "t"}),
                _response({"vulns": [{"id": "B", "database_specific": {"severity": "LOW"}}]}),
            ],
        )
        assert OSVAdvisorySource().get_vuln_counts("a", "1.0.0") == VulnCounts(low=2)
        assert post.call_args_list[1].kwargs["json"]["page_token"] == "t"

    def test_no_vulns(self, mocker):
        mocker.patch("depguard_core.sources.osv.requests.post", return_value=_response({}))
        assert OSVAdvisorySource().get_vuln_counts("a", "1.0.0").total == 0

    def test_network_failure_is_transient(self, mocker):
        mocker.patch("depguard_core.sources.osv.requests.post", side_effect=requests.Timeout("slow"))
        with pytest.raises(TransientNetworkError):
            OSVAdvisorySource().get_vuln_counts("a", "1.0.0")

    def test_server_error_is_transient(self, mocker):
        mocker.patch("depguard_core.sources.osv.requests.post", return_value=_response({}, ok=False, status=503))
        with pytest.raises(TransientNetworkError, match="HTTP 503"):
            OSVAdvisorySource().get_vuln_counts("a", "1.0.0")

    def test_rejected_query_is_not_transient(self, mocker):
        mocker.patch("depguard_core.sources.osv.requests.post", return_value=_response({}, ok=False, status=400))
        with pytest.raises(AdvisorySourceError) as exc:
            OSVAdvisorySource().get_vuln_counts("a", "not-a-version")
        assert exc.value.status == 400
        assert not isinstance(exc.value, TransientNetworkError)


class TestNpmRegistryLicenseSource:
    def test_string_license(self, mocker):
        get = mocker.patch("depguard_core.sources.npm.requests.get", return_value=_response({"license": "MIT"}))
        assert NpmRegistryLicenseSource().get_license("@types/node") == "MIT"
        assert get.call_args.args[0] == "https://registry.npmjs.org/@types%2Fnode"

    def test_object_license(self, mocker):
        mocker.patch(
            "depguard_core.sources.npm.requests.get", return_value=_response({"license": {"type": "ISC"}})
        )
        assert NpmRegistryLicenseSource().get_license("a") == "ISC"

    def test_not_found_is_unknown(self, mocker):
        mocker.patch("depguard_core.sources.npm.requests.get", return_value=_response({}, ok=False))
        assert NpmRegistryLicenseSource().get_license("a") is None

    def test_network_failure_is_unknown(self, mocker):
        mocker.patch("depguard_core.sources.npm.requests.get", side_effect=requests.ConnectionError("down"))
        assert NpmRegistryLicenseSource().get_license("a") is None


class TestTrackedLicenseSource:
    def test_reads_catalog(self):
        store = MemoryStore()
        store.save_dependency("express", license="MIT")
        source = TrackedLicenseSource(store)
        assert source.get_license("express") == "MIT"
        assert source.get_license("left-pad") is None
