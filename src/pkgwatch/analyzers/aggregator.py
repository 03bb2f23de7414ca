"""Combine registry and advisory sources into per-package vulnerability state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Protocol

from pkgwatch import config
from pkgwatch.adapters.base import BaseAdapter
from pkgwatch.adapters.npm import NpmAdapter
from pkgwatch.analyzers.ghsa import GHSAFetcher
from pkgwatch.analyzers.npm_advisories import NpmAdvisoryFetcher
from pkgwatch.analyzers.osv import OSVFetcher
from pkgwatch.analyzers.versions import affects
from pkgwatch.models.schemas import ProcessedVulnerability, RefreshResult, VulnerabilityInsert


class VulnerabilityStore(Protocol):
    """Persistence target for vulnerability rows.

    Implementations upsert on (dependency_id, osv_id); writing a row whose
    key already exists is a no-op or an update, never an error.
    """

    async def upsert_vulnerabilities(self, rows: list[VulnerabilityInsert]) -> None: ...


def deduplicate_vulnerabilities(
    rows: Iterable[VulnerabilityInsert],
) -> list[VulnerabilityInsert]:
    """Collapse rows to one per (dependency_id, osv_id).

    A single advisory can come back as several nodes (one per vulnerable
    range). A row carrying fixed versions replaces an earlier one without;
    otherwise the first row wins. Keys keep their first-seen position.
    """
    by_key: dict[tuple[str, str], VulnerabilityInsert] = {}
    for row in rows:
        existing = by_key.get(row.key)
        if existing is None:
            by_key[row.key] = row
        elif (
            config.PREFER_ROWS_WITH_FIX
            and row.fixed_versions
            and not existing.fixed_versions
        ):
            by_key[row.key] = row
    return list(by_key.values())


def _merge_by_id(*sources: list[ProcessedVulnerability]) -> list[ProcessedVulnerability]:
    """Concatenate sources, keeping the first record seen for each id."""
    merged: dict[str, ProcessedVulnerability] = {}
    for vulns in sources:
        for vuln in vulns:
            merged.setdefault(vuln.osv_id, vuln)
    return list(merged.values())


class VulnerabilityAggregator:
    """Refreshes vulnerability state for watched npm packages.

    Sources:
    - npm registry: latest stable version
    - OSV: all vulnerabilities of a package, and per-version lookups
    - npm bulk advisories: optional, for the latest version
    - GitHub advisories: batched refresh across many packages
    """

    def __init__(
        self,
        registry: BaseAdapter | None = None,
        osv: OSVFetcher | None = None,
        npm_advisories: NpmAdvisoryFetcher | None = None,
        ghsa: GHSAFetcher | None = None,
        include_npm_advisories: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            registry: Registry adapter used to resolve the latest version.
            osv: OSV fetcher.
            npm_advisories: npm bulk advisory fetcher.
            ghsa: GitHub advisory fetcher, used by refresh_batch.
            include_npm_advisories: Merge npm bulk advisories into refresh().
            logger: Optional logger. Defaults to the module logger.
        """
        self.registry = registry or NpmAdapter()
        self.osv = osv or OSVFetcher()
        self.npm_advisories = npm_advisories or NpmAdvisoryFetcher()
        self.ghsa = ghsa or GHSAFetcher()
        self.include_npm_advisories = include_npm_advisories
        self._log = logger or logging.getLogger(__name__)

    async def refresh(
        self,
        package_name: str,
        last_known_version: str | None,
        known_ids: set[str] | frozenset[str],
    ) -> RefreshResult:
        """Refresh vulnerability state for one package.

        Args:
            package_name: npm package name.
            last_known_version: Latest version seen on the previous cycle.
            known_ids: Vulnerability ids already on record.

        Returns:
            RefreshResult. On unexpected failure every list is empty and
            ``error`` is set.
        """
        self._log.info(f"Checking vulnerabilities for {package_name}...")

        try:
            info = await self.registry.get_latest_version(package_name)
            latest = info.latest_version
            is_new_version = (
                latest is not None
                and last_known_version is not None
                and latest != last_known_version
            )
            if is_new_version:
                self._log.info(
                    f"New npm version detected: {last_known_version} -> {latest}"
                )
            elif latest:
                self._log.info(f"Current npm version: {latest}")

            all_vulns = await self._collect(package_name, latest)
            new_vulns = [v for v in all_vulns if v.osv_id not in known_ids]

            self._log.info(
                f"Found {len(all_vulns)} total vulnerabilities for {package_name}, "
                f"{len(new_vulns)} new"
            )
            for vuln in new_vulns:
                summary = (vuln.summary or "No summary")[:80]
                self._log.info(f"  - {vuln.osv_id} ({vuln.severity.value}): {summary}")

            if is_new_version:
                version_vulns = await self.osv.fetch_by_version(package_name, latest)
                self._log.info(
                    f"New version {latest} has {len(version_vulns)} known vulnerabilities"
                )

            return RefreshResult(
                new_vulnerabilities=new_vulns,
                all_vulnerabilities=all_vulns,
                latest_version=latest,
                is_new_version=is_new_version,
            )
        except Exception as e:
            self._log.error(f"Vulnerability check failed for {package_name}: {e}")
            return RefreshResult(error=str(e))

    async def _collect(
        self, package_name: str, latest: str | None
    ) -> list[ProcessedVulnerability]:
        """Query every enabled source concurrently and merge by id."""
        tasks = [self.osv.fetch_by_package(package_name)]
        if self.include_npm_advisories and latest:
            tasks.append(self.npm_advisories.fetch_processed(package_name, [latest]))

        results = await asyncio.gather(*tasks)
        sources = [self.osv.process_all(results[0])]
        if len(results) > 1:
            sources.append(results[1])
        return _merge_by_id(*sources)

    async def refresh_batch(
        self,
        dependencies: Mapping[str, list[str]],
    ) -> list[VulnerabilityInsert]:
        """Build vulnerability rows for many packages from GitHub advisories.

        Args:
            dependencies: Package name -> dependency ids tracking that package.

        Returns:
            Deduplicated rows, one per (dependency_id, advisory id).
        """
        names = list(dependencies)
        rows: list[VulnerabilityInsert] = []

        for start in range(0, len(names), config.GHSA_MAX_PACKAGES):
            chunk = names[start : start + config.GHSA_MAX_PACKAGES]
            by_name = await self.ghsa.fetch_batch(chunk)
            for name in chunk:
                for vuln in by_name.get(name, []):
                    for dependency_id in dependencies[name]:
                        rows.append(self.ghsa.to_insert(dependency_id, vuln))

        deduped = deduplicate_vulnerabilities(rows)
        self._log.info(
            f"GHSA refresh: {len(deduped)} vulnerability rows for {len(names)} packages"
        )
        return deduped

    async def write_vulnerabilities(
        self,
        rows: Iterable[VulnerabilityInsert],
        store: VulnerabilityStore,
    ) -> int:
        """Deduplicate and write rows in independent batches.

        A failing batch is logged and skipped; remaining batches still run.

        Returns:
            Number of rows written successfully.
        """
        deduped = deduplicate_vulnerabilities(rows)
        written = 0
        failed = 0

        for start in range(0, len(deduped), config.WRITE_BATCH_SIZE):
            batch = deduped[start : start + config.WRITE_BATCH_SIZE]
            try:
                await store.upsert_vulnerabilities(batch)
            except Exception as e:
                failed += 1
                self._log.error(f"Failed to write vulnerability batch at offset {start}: {e}")
                continue
            written += len(batch)

        if failed:
            self._log.warning(f"{failed} vulnerability batch(es) failed; {written} rows written")
        else:
            self._log.info(f"Wrote {written} vulnerability rows")
        return written

    def affected_for_version(
        self,
        vulns: Iterable[ProcessedVulnerability],
        version: str,
    ) -> list[ProcessedVulnerability]:
        """Vulnerabilities whose affected ranges include a version."""
        return [v for v in vulns if affects(v, version)]
