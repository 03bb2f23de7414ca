import json

import httpx

from pkgwatch.analyzers.npm_advisories import NpmAdvisoryFetcher
from pkgwatch.analyzers.versions import affects
from pkgwatch.models.schemas import Severity

ADVISORY = {
    "id": 1523,
    "url": "https://github.com/advisories/GHSA-p6mc-m468-83gw",
    "title": "Prototype Pollution in lodash",
    "severity": "moderate",
    "vulnerable_versions": "<4.17.19",
    "patched_versions": ">=4.17.19, >=5.0.0",
    "cwe": ["CWE-1321", "400"],
}


def _fetcher(handler) -> NpmAdvisoryFetcher:
    return NpmAdvisoryFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_empty_versions_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await _fetcher(handler).fetch("lodash", []) == []


async def test_fetch_posts_bulk_body_and_reads_object_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"lodash": {"1523": ADVISORY}})

    items = await _fetcher(handler).fetch("lodash", ["4.17.15"])

    assert seen["body"] == {"lodash": ["4.17.15"]}
    assert items == [("1523", ADVISORY)]


async def test_fetch_reads_list_shape():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"lodash": [ADVISORY]})

    items = await _fetcher(handler).fetch("lodash", ["4.17.15"])
    assert items == [("1523", ADVISORY)]


async def test_not_found_and_bad_request_mean_no_advisories():
    for status in (400, 404):
        fetcher = _fetcher(lambda request, status=status: httpx.Response(status))
        assert await fetcher.fetch("lodash", ["1.0.0"]) == []


async def test_server_error_returns_empty():
    fetcher = _fetcher(lambda request: httpx.Response(503))
    assert await fetcher.fetch("lodash", ["1.0.0"]) == []


def test_process_advisory():
    vuln = NpmAdvisoryFetcher().process_advisory("1523", ADVISORY)

    assert vuln.osv_id == "npm-1523"
    assert vuln.severity == Severity.MEDIUM
    assert vuln.fixed_versions == [">=4.17.19", ">=5.0.0"]
    assert vuln.aliases == [ADVISORY["url"], "CWE-1321", "CWE-400"]
    assert vuln.affected_versions[0].vulnerable_range == "<4.17.19"
    assert vuln.summary == "Prototype Pollution in lodash"


def test_unknown_severity_is_medium():
    vuln = NpmAdvisoryFetcher().process_advisory("1", {"severity": "info"})
    assert vuln.severity == Severity.MEDIUM
    assert vuln.fixed_versions == []


async def test_fetch_processed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"lodash": {"1523": ADVISORY}})

    vulns = await _fetcher(handler).fetch_processed("lodash", ["4.17.15"])
    assert [v.osv_id for v in vulns] == ["npm-1523"]


def test_patched_versions_are_not_affected():
    vuln = NpmAdvisoryFetcher().process_advisory(
        "1179", {"vulnerable_versions": "<1.2.3", "patched_versions": ">=1.2.3"}
    )
    assert affects(vuln, "1.2.2") is True
    assert affects(vuln, "1.2.3") is False
    assert affects(vuln, "9.0.0") is False


async def test_fetch_processed_skips_malformed_advisories(caplog):
    broken = {"severity": "high", "patched_versions": [">=1.0.0"]}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"lodash": {"1": broken, "1523": ADVISORY}})

    vulns = await _fetcher(handler).fetch_processed("lodash", ["4.17.15"])

    assert [v.osv_id for v in vulns] == ["npm-1523"]
    assert "Skipping malformed npm advisory 1" in caplog.text
