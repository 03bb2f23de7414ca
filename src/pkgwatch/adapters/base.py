"""Abstract base class for package registry adapters and repository URL helpers."""

import json
import logging
import re
from abc import ABC, abstractmethod

from pkgwatch.models.schemas import Ecosystem, NpmVersionInfo, Platform, RepoRef

logger = logging.getLogger(__name__)

_HOST_PLATFORMS = {
    "github.com": Platform.GITHUB,
    "gitlab.com": Platform.GITLAB,
    "bitbucket.org": Platform.BITBUCKET,
}

_SHORTHAND_HOSTS = {
    "github:": "github.com",
    "gitlab:": "gitlab.com",
    "bitbucket:": "bitbucket.org",
}

# https://host/owner/repo[.git][/tree/main/sub][#fragment]
_HTTPS_PATTERN = re.compile(
    r"^https?://(?:www\.)?(github\.com|gitlab\.com|bitbucket\.org)"
    r"/([^/\s]+)/([^/\s#?]+?)(?:\.git)?/?(?:[/#?].*)?$",
    re.IGNORECASE,
)

# git@host:owner/repo.git
_SCP_PATTERN = re.compile(r"^[\w.-]+@([\w.-]+):(.+)$")

# owner/repo
_SHORTHAND_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class BaseAdapter(ABC):
    """Base class for package registry adapters.

    Each adapter normalizes data from a specific registry into the
    common schema used by the vulnerability aggregator.
    """

    @property
    @abstractmethod
    def ecosystem(self) -> Ecosystem:
        """Return the ecosystem this adapter handles."""
        ...

    @abstractmethod
    async def get_latest_version(self, name: str) -> NpmVersionInfo:
        """Resolve the latest stable release of a package.

        Args:
            name: Package name.

        Returns:
            Version info; fields are None when the registry lookup fails.
        """
        ...

    @abstractmethod
    async def get_repository_url(self, name: str) -> str | None:
        """Return the raw repository URL declared by a package, if any."""
        ...

    async def get_clone_url(self, name: str) -> str | None:
        """Return the canonical clone URL of a package's source repository."""
        return normalize_repository_url(await self.get_repository_url(name))


def parse_repo_url(url: str) -> RepoRef | None:
    """Parse an https repository URL into a RepoRef.

    Supports GitHub, GitLab, and Bitbucket URLs.

    Args:
        url: Repository URL to parse.

    Returns:
        RepoRef if the URL can be parsed, None otherwise.
    """
    if not url:
        return None

    match = _HTTPS_PATTERN.match(url.strip())
    if not match:
        return None

    host, owner, repo = match.groups()
    return RepoRef(platform=_HOST_PLATFORMS[host.lower()], owner=owner, repo=repo)


def normalize_repository_url(raw: str | dict | None) -> str | None:
    """Normalize a repository reference into a canonical https clone URL.

    Handles the shapes found in npm metadata:
    - {"type": "git", "url": "git+https://github.com/owner/repo.git"}
    - the same object serialized as a JSON string
    - "git://github.com/owner/repo.git", "git@github.com:owner/repo.git"
    - "github:owner/repo", "gitlab:owner/repo", "bitbucket:owner/repo"
    - "owner/repo" (GitHub)

    Args:
        raw: Repository field value.

    Returns:
        "https://<host>/<owner>/<repo>.git", or None if the reference does not
        resolve to GitHub, GitLab or Bitbucket.
    """
    if isinstance(raw, dict):
        raw = raw.get("url")
    if not raw or not isinstance(raw, str):
        return None

    url = raw.strip()

    # Object format that was stringified
    if url.startswith("{"):
        try:
            parsed = json.loads(url)
        except ValueError:
            return None
        url = str(parsed.get("url") or "").strip() if isinstance(parsed, dict) else ""
        if not url:
            return None

    if url.startswith("git+"):
        url = url[4:]

    if url.startswith("git://"):
        url = "https://" + url[6:]
    elif url.startswith("ssh://"):
        url = "https://" + url[6:].split("@", 1)[-1]
    elif url.startswith("http://"):
        url = "https://" + url[7:]

    for prefix, host in _SHORTHAND_HOSTS.items():
        if url.startswith(prefix):
            url = f"https://{host}/{url[len(prefix):]}"
            break

    scp = _SCP_PATTERN.match(url)
    if scp and not url.startswith("https://"):
        url = f"https://{scp.group(1)}/{scp.group(2)}"

    if url.lower().startswith(("github.com/", "gitlab.com/", "bitbucket.org/", "www.")):
        url = f"https://{url}"

    if _SHORTHAND_PATTERN.match(url):
        url = f"https://github.com/{url}"

    ref = parse_repo_url(url)
    if ref is None:
        logger.warning(f"Repository URL is not on a supported host: {raw}")
        return None
    return ref.clone_url


class PackageNotFoundError(Exception):
    """Raised when a package cannot be found."""

    def __init__(self, ecosystem: Ecosystem, name: str) -> None:
        self.ecosystem = ecosystem
        self.name = name
        super().__init__(f"Package '{name}' not found in {ecosystem.value}")
