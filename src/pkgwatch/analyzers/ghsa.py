"""GitHub Security Advisory (GHSA) batch fetcher using the GraphQL API."""

from __future__ import annotations

import json
import logging

import httpx
from pydantic import BaseModel, Field

from pkgwatch import config
from pkgwatch.models.schemas import AffectedPackage, Severity, VulnerabilityInsert

_SEVERITY_MAP = {
    "CRITICAL": Severity.CRITICAL,
    "HIGH": Severity.HIGH,
    "MODERATE": Severity.MEDIUM,
    "MEDIUM": Severity.MEDIUM,
    "LOW": Severity.LOW,
}

_NODE_FIELDS = (
    "nodes { advisory { ghsaId summary description severity publishedAt updatedAt "
    "identifiers { type value } } vulnerableVersionRange firstPatchedVersion { identifier } }"
)


class GhsaVuln(BaseModel):
    """One vulnerable-range node of a GitHub security advisory."""

    ghsa_id: str
    summary: str | None = None
    description: str | None = None
    severity: str | None = None
    vulnerable_version_range: str = ""
    first_patched_version: str | None = None
    published_at: str | None = None
    updated_at: str | None = None
    identifiers: list[dict[str, str]] = Field(default_factory=list)


def ghsa_severity(severity: str | None) -> Severity:
    """Map the GHSA severity enum onto our levels (default medium)."""
    if not severity:
        return Severity.MEDIUM
    return _SEVERITY_MAP.get(severity.upper(), Severity.MEDIUM)


class GHSAFetcher:
    """Fetches GitHub security advisories for many npm packages at once.

    Up to 100 packages are packed into a single GraphQL request, one
    aliased ``securityVulnerabilities`` selection per package.

    Requires a GitHub token for reasonable rate limits. Set GITHUB_TOKEN
    (or GH_TOKEN / GITHUB_PAT) or pass a token to the constructor; without
    one the request is sent unauthenticated.
    """

    GRAPHQL_URL = "https://api.github.com/graphql"

    def __init__(
        self,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            token: GitHub token. If not provided, read from the environment.
            client: Optional httpx client. If not provided, a new client is created.
            logger: Optional logger. Defaults to the module logger.
        """
        self._token = token or config.github_token_from_env()
        self._client = client
        self._log = logger or logging.getLogger(__name__)

    def _headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": config.USER_AGENT,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)

    def build_query(self, names: list[str]) -> str:
        """Build the batched GraphQL query; alias p<i> maps back to names[i]."""
        selections = " ".join(
            f"p{i}: securityVulnerabilities(package: {json.dumps(name)}, ecosystem: NPM, "
            f"first: {config.GHSA_FIRST_PER_PACKAGE}) {{ {_NODE_FIELDS} }}"
            for i, name in enumerate(names)
        )
        return f"query {{ {selections} }}"

    async def fetch_batch(self, package_names: list[str]) -> dict[str, list[GhsaVuln]]:
        """Fetch advisories for up to 100 npm packages in one request.

        Args:
            package_names: Package names. Names beyond the first 100 are ignored.

        Returns:
            Mapping of package name to its advisory nodes. Empty on any failure.
        """
        result: dict[str, list[GhsaVuln]] = {}
        if not package_names:
            return result

        names = package_names[: config.GHSA_MAX_PACKAGES]
        if len(package_names) > len(names):
            self._log.warning(
                f"GHSA batch limited to {len(names)} packages, "
                f"ignoring {len(package_names) - len(names)}"
            )

        if not self._token:
            self._log.warning(
                "No GitHub token. Set GITHUB_TOKEN, GH_TOKEN, or GITHUB_PAT for advisory sync."
            )

        client = await self._get_client()
        try:
            response = await client.post(
                self.GRAPHQL_URL,
                json={"query": self.build_query(names)},
                headers=self._headers(),
            )
            if response.status_code != 200:
                self._log.warning(
                    f"GHSA GraphQL request failed: {response.status_code} {response.text[:200]}"
                )
                return result
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self._log.warning(f"GHSA fetch failed: {e}")
            return result
        finally:
            if self._client is None:
                await client.aclose()

        if not isinstance(payload, dict):
            self._log.warning("GHSA response is not a JSON object")
            return result
        if payload.get("errors"):
            self._log.warning(f"GHSA GraphQL errors: {json.dumps(payload['errors'])[:500]}")
            return result

        data = payload.get("data") or {}
        try:
            for i, name in enumerate(names):
                slot = data.get(f"p{i}") or {}
                result[name] = [self._parse_node(node) for node in slot.get("nodes") or []]
        except (KeyError, TypeError, AttributeError) as e:
            self._log.warning(f"GHSA response could not be parsed: {e}")
            return {}

        return result

    def _parse_node(self, node: dict) -> GhsaVuln:
        advisory = node["advisory"]
        patched = node.get("firstPatchedVersion") or {}
        return GhsaVuln(
            ghsa_id=advisory["ghsaId"],
            summary=advisory.get("summary"),
            description=advisory.get("description"),
            severity=advisory.get("severity"),
            vulnerable_version_range=node.get("vulnerableVersionRange") or "",
            first_patched_version=patched.get("identifier"),
            published_at=advisory.get("publishedAt"),
            updated_at=advisory.get("updatedAt"),
            identifiers=advisory.get("identifiers") or [],
        )

    def to_insert(self, dependency_id: str, vuln: GhsaVuln) -> VulnerabilityInsert:
        """Convert an advisory node into an insert-ready vulnerability row."""
        fixed = vuln.first_patched_version
        affected = None
        if fixed:
            affected = [
                AffectedPackage.model_validate(
                    {"ranges": [{"events": [{"introduced": "0.0.0", "fixed": fixed}]}]}
                )
            ]
        details = vuln.description[: config.MAX_DETAILS_LENGTH] if vuln.description else None

        return VulnerabilityInsert(
            dependency_id=dependency_id,
            osv_id=vuln.ghsa_id,
            severity=ghsa_severity(vuln.severity),
            summary=vuln.summary or None,
            details=details,
            aliases=[i["value"] for i in vuln.identifiers if i.get("type") == "CVE" and i.get("value")],
            affected_versions=affected,
            fixed_versions=[fixed] if fixed else [],
            published_at=vuln.published_at,
            modified_at=vuln.updated_at,
        )
