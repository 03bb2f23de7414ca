import pytest

from pkgwatch.adapters.base import normalize_repository_url, parse_repo_url
from pkgwatch.models.schemas import Platform

EXPECTED = "https://github.com/lodash/lodash.git"


@pytest.mark.parametrize(
    "raw",
    [
        "https://github.com/lodash/lodash",
        "https://github.com/lodash/lodash.git",
        "http://github.com/lodash/lodash",
        "git+https://github.com/lodash/lodash.git",
        "git://github.com/lodash/lodash.git",
        "git+ssh://git@github.com/lodash/lodash.git",
        "git@github.com:lodash/lodash.git",
        "github:lodash/lodash",
        "lodash/lodash",
        "github.com/lodash/lodash",
        "https://github.com/lodash/lodash/tree/main/packages/core",
        "https://github.com/lodash/lodash#readme",
        {"type": "git", "url": "git+https://github.com/lodash/lodash.git"},
        '{"type": "git", "url": "https://github.com/lodash/lodash.git"}',
    ],
)
def test_normalizes_common_forms(raw):
    assert normalize_repository_url(raw) == EXPECTED


def test_other_supported_hosts():
    assert normalize_repository_url("gitlab:group/project") == "https://gitlab.com/group/project.git"
    assert (
        normalize_repository_url("git@bitbucket.org:team/repo.git")
        == "https://bitbucket.org/team/repo.git"
    )


def test_dotted_repository_names():
    assert normalize_repository_url("github:vercel/next.js") == "https://github.com/vercel/next.js.git"


@pytest.mark.parametrize(
    "raw",
    [None, "", {}, "https://example.com/o/r.git", "{not json", "just-a-name"],
)
def test_unsupported_references(raw):
    assert normalize_repository_url(raw) is None


def test_parse_repo_url():
    ref = parse_repo_url("https://gitlab.com/group/project")
    assert ref.platform == Platform.GITLAB
    assert (ref.owner, ref.repo) == ("group", "project")
    assert ref.url == "https://gitlab.com/group/project"
