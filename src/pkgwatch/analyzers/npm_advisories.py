"""npm registry bulk advisory fetcher (the endpoint behind `npm audit`)."""

from __future__ import annotations

import logging

import httpx

from pkgwatch import config
from pkgwatch.models.schemas import AffectedPackage, ProcessedVulnerability, Severity

# Advisory ids from this source are namespaced so they never collide with
# OSV/GHSA ids describing the same vulnerability.
ID_PREFIX = "npm-"

_SEVERITY_MAP = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "moderate": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "low": Severity.LOW,
}


class NpmAdvisoryFetcher:
    """Fetches security advisories for specific package versions from npm.

    Data source:
    - POST https://registry.npmjs.org/-/npm/v1/security/advisories/bulk
      with body {package_name: [versions...]}
    """

    BULK_URL = "https://registry.npmjs.org/-/npm/v1/security/advisories/bulk"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._log = logger or logging.getLogger(__name__)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)

    async def fetch(self, package_name: str, versions: list[str]) -> list[tuple[str, dict]]:
        """Fetch advisories affecting any of the given versions.

        Args:
            package_name: npm package name.
            versions: Versions to check. An empty list returns [] without a request.

        Returns:
            List of (advisory_id, advisory) pairs.
        """
        if not versions:
            return []

        client = await self._get_client()
        try:
            response = await client.post(
                self.BULK_URL,
                json={package_name: list(versions)},
                headers={"Accept": "application/json", "User-Agent": config.USER_AGENT},
            )
            if response.status_code in (400, 404):
                return []
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._log.warning(
                f"npm advisory API returned {e.response.status_code} for {package_name}"
            )
            return []
        except (httpx.HTTPError, ValueError) as e:
            self._log.warning(f"npm advisories for {package_name} failed: {e}")
            return []
        finally:
            if self._client is None:
                await client.aclose()

        if not isinstance(data, dict):
            return []
        by_package = data.get(package_name)
        if not by_package:
            return []

        if isinstance(by_package, list):
            return [
                (str(adv.get("id") or adv.get("url") or i), adv)
                for i, adv in enumerate(by_package)
                if isinstance(adv, dict)
            ]
        if isinstance(by_package, dict):
            return [(str(k), v) for k, v in by_package.items() if isinstance(v, dict)]
        return []

    def process_advisory(self, advisory_id: str, advisory: dict) -> ProcessedVulnerability:
        """Normalize one npm advisory into a ProcessedVulnerability."""
        level = str(advisory.get("severity") or "moderate").lower()
        patched = advisory.get("patched_versions") or ""
        fixed_versions = [part.strip() for part in patched.split(",") if part.strip()]

        aliases = []
        if advisory.get("url"):
            aliases.append(advisory["url"])
        for cwe in advisory.get("cwe") or []:
            cwe = str(cwe)
            aliases.append(cwe if cwe.upper().startswith("CWE-") else f"CWE-{cwe}")

        affected = None
        if advisory.get("vulnerable_versions"):
            affected = [AffectedPackage(vulnerable_range=advisory["vulnerable_versions"])]

        details = advisory.get("overview") or advisory.get("recommendation") or None
        if details:
            details = details[: config.MAX_DETAILS_LENGTH]

        return ProcessedVulnerability(
            osv_id=f"{ID_PREFIX}{advisory_id}",
            severity=_SEVERITY_MAP.get(level, Severity.MEDIUM),
            summary=advisory.get("title") or advisory.get("overview") or None,
            details=details,
            aliases=aliases,
            affected_versions=affected,
            fixed_versions=fixed_versions,
        )

    async def fetch_processed(
        self,
        package_name: str,
        versions: list[str],
    ) -> list[ProcessedVulnerability]:
        """Fetch and normalize advisories, skipping ones that fail to parse."""
        processed = []
        for advisory_id, adv in await self.fetch(package_name, versions):
            try:
                processed.append(self.process_advisory(advisory_id, adv))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                self._log.warning(f"Skipping malformed npm advisory {advisory_id}: {e}")
        return processed
