"""OSV (Open Source Vulnerabilities) fetcher for advisory data."""

from __future__ import annotations

import logging

import httpx

from pkgwatch import config
from pkgwatch.models.schemas import AffectedPackage, ProcessedVulnerability, Severity


def severity_from_cvss(score: float) -> Severity:
    """Map a CVSS base score onto our severity levels."""
    if score >= config.CVSS_CRITICAL:
        return Severity.CRITICAL
    if score >= config.CVSS_HIGH:
        return Severity.HIGH
    if score >= config.CVSS_MEDIUM:
        return Severity.MEDIUM
    return Severity.LOW


class OSVFetcher:
    """Fetches vulnerability data from OSV (Open Source Vulnerabilities) database.

    OSV is a distributed vulnerability database for open source:
    https://osv.dev/

    No authentication required. Failures never propagate: every query
    returns an empty list when the API is unreachable or answers with an
    error.
    """

    BASE_URL = "https://api.osv.dev/v1"
    ECOSYSTEM = "npm"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Optional httpx client. If not provided, creates one per request.
            logger: Optional logger. Defaults to the module logger.
        """
        self._client = client
        self._log = logger or logging.getLogger(__name__)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)

    async def _query(self, body: dict, label: str) -> list[dict]:
        """Query OSV API.

        Args:
            body: Request body for OSV query.
            label: Package (and version) description for log messages.

        Returns:
            List of raw vulnerability records.
        """
        client = await self._get_client()
        url = f"{self.BASE_URL}/query"

        try:
            response = await client.post(
                url, json=body, headers={"User-Agent": config.USER_AGENT}
            )
            response.raise_for_status()
            data = response.json()
            vulns = data.get("vulns") or []
            return [v for v in vulns if isinstance(v, dict) and v.get("id")]
        except httpx.HTTPStatusError as e:
            self._log.warning(f"OSV API returned {e.response.status_code} for {label}")
            return []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            self._log.warning(f"Failed to fetch OSV vulnerabilities for {label}: {e}")
            return []
        finally:
            if self._client is None:
                await client.aclose()

    async def fetch_by_package(self, package_name: str) -> list[dict]:
        """Fetch all known vulnerabilities for a package (any version).

        Args:
            package_name: npm package name.

        Returns:
            List of raw OSV vulnerability records.
        """
        body = {"package": {"ecosystem": self.ECOSYSTEM, "name": package_name}}
        return await self._query(body, package_name)

    async def fetch_by_version(self, package_name: str, version: str) -> list[dict]:
        """Fetch vulnerabilities affecting one specific version of a package."""
        body = {
            "package": {"ecosystem": self.ECOSYSTEM, "name": package_name},
            "version": version,
        }
        return await self._query(body, f"{package_name}@{version}")

    def classify_severity(self, vuln: dict) -> Severity:
        """Classify severity from the CVSS score embedded in an OSV record.

        Falls back to severity keywords in the advisory id, then to medium.
        """
        for entry in vuln.get("severity") or []:
            if not isinstance(entry, dict):
                continue
            if entry.get("type") not in ("CVSS_V3", "CVSS_V2"):
                continue
            score = _parse_score(entry.get("score"))
            if score is not None:
                return severity_from_cvss(score)

        vuln_id = str(vuln.get("id", "")).upper()
        if "CRITICAL" in vuln_id:
            return Severity.CRITICAL
        if "HIGH" in vuln_id:
            return Severity.HIGH
        return Severity.MEDIUM

    def _parse_fixed_versions(self, vuln: dict) -> list[str]:
        """Flatten every "fixed" event across all affected ranges."""
        fixed = []
        for affected in vuln.get("affected") or []:
            for rng in affected.get("ranges") or []:
                for event in rng.get("events") or []:
                    if event.get("fixed"):
                        fixed.append(str(event["fixed"]))
        return fixed

    def _parse_affected(self, vuln: dict) -> list[AffectedPackage] | None:
        """Convert the raw affected list into typed descriptors."""
        raw = vuln.get("affected")
        if not raw:
            return None
        affected = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            affected.append(
                AffectedPackage.model_validate(
                    {
                        "package": entry.get("package"),
                        "ranges": entry.get("ranges") or [],
                        "versions": entry.get("versions") or [],
                    }
                )
            )
        return affected or None

    def process_vulnerability(self, vuln: dict) -> ProcessedVulnerability:
        """Normalize a raw OSV record.

        Args:
            vuln: OSV vulnerability record.

        Returns:
            ProcessedVulnerability with severity, fixed versions and ranges.
        """
        details = vuln.get("details") or None
        if details:
            details = details[: config.MAX_DETAILS_LENGTH]

        return ProcessedVulnerability(
            osv_id=vuln["id"],
            severity=self.classify_severity(vuln),
            summary=vuln.get("summary") or None,
            details=details,
            aliases=list(vuln.get("aliases") or []),
            affected_versions=self._parse_affected(vuln),
            fixed_versions=self._parse_fixed_versions(vuln),
            published_at=vuln.get("published"),
            modified_at=vuln.get("modified"),
        )

    def process_all(self, vulns: list[dict]) -> list[ProcessedVulnerability]:
        """Normalize a batch of raw records, skipping ones that fail to parse."""
        processed = []
        for vuln in vulns:
            try:
                processed.append(self.process_vulnerability(vuln))
            except (KeyError, TypeError, ValueError) as e:
                self._log.warning(f"Skipping malformed OSV record {vuln.get('id')}: {e}")
        return processed


def _parse_score(raw) -> float | None:
    """Read a numeric CVSS score.

    OSV usually ships a vector string (e.g. "CVSS:3.1/AV:N/..."), which
    carries no base score; those yield None.
    """
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return None
    return None
