import json
import logging

import httpx
import pytest

from pkgwatch.analyzers.ghsa import GHSAFetcher, GhsaVuln, ghsa_severity
from pkgwatch.models.schemas import Severity


def _node(ghsa_id, patched=None, severity="HIGH"):
    return {
        "advisory": {
            "ghsaId": ghsa_id,
            "summary": f"Advisory {ghsa_id}",
            "description": "Details",
            "severity": severity,
            "publishedAt": "2024-01-01T00:00:00Z",
            "updatedAt": "2024-02-01T00:00:00Z",
            "identifiers": [
                {"type": "GHSA", "value": ghsa_id},
                {"type": "CVE", "value": "CVE-2024-0001"},
            ],
        },
        "vulnerableVersionRange": "< 1.2.3",
        "firstPatchedVersion": {"identifier": patched} if patched else None,
    }


def _fetcher(handler, token="test-token") -> GHSAFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GHSAFetcher(token=token, client=client)


async def test_fetch_batch_maps_aliases_back_to_names():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["query"] = json.loads(request.content)["query"]
        return httpx.Response(
            200,
            json={
                "data": {
                    "p0": {"nodes": [_node("GHSA-aaaa-bbbb-cccc", patched="1.2.3")]},
                    "p1": {"nodes": []},
                }
            },
        )

    result = await _fetcher(handler).fetch_batch(["lodash", "@scope/pkg"])

    assert seen["auth"] == "Bearer test-token"
    assert 'p1: securityVulnerabilities(package: "@scope/pkg", ecosystem: NPM, first: 30)' in seen["query"]
    assert list(result) == ["lodash", "@scope/pkg"]
    assert result["lodash"][0].ghsa_id == "GHSA-aaaa-bbbb-cccc"
    assert result["lodash"][0].first_patched_version == "1.2.3"
    assert result["@scope/pkg"] == []


async def test_batch_is_capped_at_100_names(caplog):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["query"] = json.loads(request.content)["query"]
        return httpx.Response(200, json={"data": {}})

    names = [f"pkg-{i}" for i in range(105)]
    with caplog.at_level(logging.WARNING):
        result = await _fetcher(handler).fetch_batch(names)

    assert len(result) == 100
    assert "p99:" in seen["query"] and "p100:" not in seen["query"]
    assert "ignoring 5" in caplog.text


async def test_graphql_errors_return_empty_mapping():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": "rate limited"}]})

    assert await _fetcher(handler).fetch_batch(["lodash"]) == {}


async def test_http_failure_returns_empty_mapping():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Bad credentials"})

    assert await _fetcher(handler).fetch_batch(["lodash"]) == {}


async def test_missing_token_warns(monkeypatch, caplog):
    for name in ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_PAT"):
        monkeypatch.delenv(name, raising=False)

    def handler(request: httpx.Request) -> httpx.Response:
        assert "Authorization" not in request.headers
        return httpx.Response(200, json={"data": {"p0": {"nodes": []}}})

    with caplog.at_level(logging.WARNING):
        result = await _fetcher(handler, token=None).fetch_batch(["lodash"])

    assert result == {"lodash": []}
    assert "No GitHub token" in caplog.text


def test_token_read_from_environment(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.setenv("GH_TOKEN", "from-env")
    assert GHSAFetcher()._headers()["Authorization"] == "Bearer from-env"


def test_to_insert_with_patched_version():
    vuln = GhsaVuln(
        ghsa_id="GHSA-aaaa-bbbb-cccc",
        severity="MODERATE",
        first_patched_version="1.2.3",
        identifiers=[{"type": "CVE", "value": "CVE-2024-0001"}, {"type": "GHSA", "value": "x"}],
    )
    row = GHSAFetcher(token="t").to_insert("dep-1", vuln)

    assert row.key == ("dep-1", "GHSA-aaaa-bbbb-cccc")
    assert row.severity == Severity.MEDIUM
    assert row.aliases == ["CVE-2024-0001"]
    assert row.fixed_versions == ["1.2.3"]
    events = row.affected_versions[0].ranges[0].events
    assert (events[0].introduced, events[0].fixed) == ("0.0.0", "1.2.3")


def test_to_insert_without_patch():
    row = GHSAFetcher(token="t").to_insert("dep-1", GhsaVuln(ghsa_id="GHSA-x"))
    assert row.fixed_versions == []
    assert row.affected_versions is None


@pytest.mark.parametrize(
    "raw, expected",
    [("CRITICAL", Severity.CRITICAL), ("high", Severity.HIGH), ("MODERATE", Severity.MEDIUM), ("LOW", Severity.LOW), (None, Severity.MEDIUM), ("weird", Severity.MEDIUM)],
)
def test_ghsa_severity(raw, expected):
    assert ghsa_severity(raw) == expected
