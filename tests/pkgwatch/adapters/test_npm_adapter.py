import httpx
import pytest

from pkgwatch.adapters.base import PackageNotFoundError
from pkgwatch.adapters.npm import NpmAdapter, resolve_latest_stable

REACT_DOC = {
    "name": "react",
    "dist-tags": {"latest": "19.1.0-canary-abc", "next": "19.1.0-canary-abc"},
    "versions": {
        "18.3.1": {},
        "19.0.0": {"repository": {"type": "git", "url": "git+https://github.com/facebook/react.git"}},
        "19.1.0-canary-abc": {},
    },
    "time": {
        "created": "2011-10-26T17:46:21.942Z",
        "modified": "2025-01-10T00:00:00.000Z",
        "18.3.1": "2024-04-26T16:42:00.000Z",
        "19.0.0": "2024-12-05T18:10:00.000Z",
        "19.1.0-canary-abc": "2025-01-09T00:00:00.000Z",
    },
}


def _adapter(handler) -> NpmAdapter:
    return NpmAdapter(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_prerelease_latest_falls_back_to_newest_stable():
    adapter = _adapter(lambda request: httpx.Response(200, json=REACT_DOC))
    info = await adapter.get_latest_version("react")

    assert info.latest_version == "19.0.0"
    assert info.published_at == "2024-12-05T18:10:00.000Z"


async def test_stable_latest_is_used_as_is():
    doc = {**REACT_DOC, "dist-tags": {"latest": "18.3.1"}}
    info = await _adapter(lambda request: httpx.Response(200, json=doc)).get_latest_version("react")
    assert info.latest_version == "18.3.1"


async def test_scoped_names_are_encoded():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.raw_path
        return httpx.Response(200, json={"dist-tags": {"latest": "1.0.0"}, "time": {}})

    await _adapter(handler).get_latest_version("@babel/core")
    assert seen["path"] == b"/@babel%2Fcore"


async def test_missing_package_returns_empty_info():
    info = await _adapter(lambda request: httpx.Response(404)).get_latest_version("nope")
    assert info.latest_version is None and info.published_at is None


async def test_get_document_raises_for_missing_package():
    with pytest.raises(PackageNotFoundError):
        await _adapter(lambda request: httpx.Response(404)).get_document("nope")


async def test_repository_url_falls_back_to_version_manifest():
    doc = {**REACT_DOC, "dist-tags": {"latest": "19.0.0"}}
    adapter = _adapter(lambda request: httpx.Response(200, json=doc))

    assert await adapter.get_repository_url("react") == "git+https://github.com/facebook/react.git"
    assert await adapter.get_clone_url("react") == "https://github.com/facebook/react.git"


def test_resolve_latest_stable_ignores_prereleases_and_bad_times():
    versions = {"1.0.0": {}, "1.1.0": {}, "2.0.0-beta.1": {}}
    times = {
        "1.0.0": "2024-03-01T00:00:00Z",
        "1.1.0": "not a date",
        "2.0.0-beta.1": "2024-05-01T00:00:00Z",
    }
    assert resolve_latest_stable(versions, times) == "1.0.0"
    assert resolve_latest_stable({}, times) is None
    assert resolve_latest_stable(versions, None) is None
