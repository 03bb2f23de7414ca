"""NPM package registry adapter."""

import logging
from datetime import datetime
from urllib.parse import quote

import httpx

from pkgwatch import config
from pkgwatch.adapters.base import BaseAdapter, PackageNotFoundError
from pkgwatch.analyzers.versions import is_stable
from pkgwatch.models.schemas import Ecosystem, NpmVersionInfo


def _parse_time(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None


def resolve_latest_stable(
    versions: dict | None,
    times: dict[str, str] | None,
) -> str | None:
    """Pick the most recently published stable version.

    Args:
        versions: Registry "versions" object (keys are version strings).
        times: Registry "time" object (version -> ISO publish timestamp).

    Returns:
        The stable version with the latest publish time, or None.
    """
    if not versions or not times:
        return None

    candidates = []
    for version in versions:
        if not is_stable(version):
            continue
        published = _parse_time(times.get(version, ""))
        if published is not None:
            candidates.append((published, version))

    if not candidates:
        return None
    candidates.sort(key=lambda c: c[0], reverse=True)
    return candidates[0][1]


class NpmAdapter(BaseAdapter):
    """Adapter for NPM package registry.

    Data sources:
    - Package metadata: https://registry.npmjs.org/{package}
    """

    REGISTRY_URL = "https://registry.npmjs.org"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            client: Optional httpx client for making requests.
            logger: Optional logger. Defaults to the module logger.
        """
        self._client = client
        self._log = logger or logging.getLogger(__name__)

    @property
    def ecosystem(self) -> Ecosystem:
        return Ecosystem.NPM

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)

    async def _fetch_json(self, url: str, headers: dict | None = None) -> dict | list:
        """Fetch JSON from a URL."""
        client = await self._get_client()
        try:
            response = await client.get(url, headers=headers or {})
            response.raise_for_status()
            return response.json()
        finally:
            if self._client is None:
                await client.aclose()

    async def get_document(self, name: str) -> dict:
        """Fetch the full registry document of a package.

        Args:
            name: Package name (supports scoped packages like @org/pkg).

        Returns:
            Registry document.

        Raises:
            PackageNotFoundError: If the package doesn't exist.
            httpx.HTTPError: On other transport or status failures.
        """
        url = f"{self.REGISTRY_URL}/{quote(name, safe='@')}"
        headers = {"Accept": "application/json", "User-Agent": config.USER_AGENT}

        try:
            data = await self._fetch_json(url, headers=headers)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise PackageNotFoundError(Ecosystem.NPM, name) from e
            raise

        if not isinstance(data, dict):
            raise ValueError(f"Unexpected registry response for {name}")
        return data

    async def get_latest_version(self, name: str) -> NpmVersionInfo:
        """Resolve the latest stable version (no canary/rc/beta).

        If dist-tags.latest is a pre-release or not a valid version, the most
        recently published stable version is used instead.

        Args:
            name: Package name.

        Returns:
            NpmVersionInfo; both fields are None when the lookup fails.
        """
        try:
            data = await self.get_document(name)
        except PackageNotFoundError:
            self._log.warning(f"npm registry has no package {name}")
            return NpmVersionInfo()
        except (httpx.HTTPError, ValueError) as e:
            self._log.warning(f"Failed to fetch npm info for {name}: {e}")
            return NpmVersionInfo()

        dist_tags = data.get("dist-tags") or {}
        times = data.get("time") or {}
        latest = dist_tags.get("latest") or None

        if latest and not is_stable(latest):
            latest = resolve_latest_stable(data.get("versions"), times)

        published_at = times.get(latest) if latest else None
        return NpmVersionInfo(latest_version=latest, published_at=published_at)

    async def get_repository_url(self, name: str) -> str | None:
        """Return the repository URL declared in the package metadata.

        Falls back to the latest version's manifest when the top-level
        document has no repository field.
        """
        try:
            data = await self.get_document(name)
        except (PackageNotFoundError, httpx.HTTPError, ValueError) as e:
            self._log.warning(f"Failed to fetch repository for {name}: {e}")
            return None

        repository = data.get("repository")
        if not repository:
            latest = (data.get("dist-tags") or {}).get("latest", "")
            repository = ((data.get("versions") or {}).get(latest) or {}).get("repository")

        if isinstance(repository, dict):
            return repository.get("url") or None
        if isinstance(repository, str):
            return repository or None
        return None
