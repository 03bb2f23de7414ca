"""Poll-cycle pipeline for watched packages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Protocol

import httpx

from pkgwatch import config
from pkgwatch.adapters.base import normalize_repository_url
from pkgwatch.adapters.npm import NpmAdapter
from pkgwatch.analyzers.aggregator import VulnerabilityAggregator
from pkgwatch.analyzers.anomaly import AnomalyScorer
from pkgwatch.analyzers.ghsa import GHSAFetcher
from pkgwatch.analyzers.npm_advisories import NpmAdvisoryFetcher
from pkgwatch.analyzers.osv import OSVFetcher
from pkgwatch.analyzers.remote import RemoteChecker
from pkgwatch.models.schemas import (
    AnomalyResult,
    CommitDetails,
    ContributorProfile,
    PollResult,
    RefreshResult,
    WatchedPackage,
)


class CommitSource(Protocol):
    """Supplies commits that landed after a known sha."""

    async def commits_since(
        self,
        clone_url: str,
        since_sha: str | None,
        head_sha: str,
    ) -> list[CommitDetails]: ...


class ProfileSource(Protocol):
    """Supplies contributor baselines of a package, keyed by email."""

    async def profiles_for(self, package_name: str) -> Mapping[str, ContributorProfile]: ...


class WatchPipeline:
    """Runs one poll cycle per watched package.

    Pipeline stages:
    1. Normalize the repository URL
    2. Check the remote head for new commits
    3. Score new commits against contributor baselines
    4. Refresh vulnerabilities (concurrently with stages 2-3)

    The commit half and the vulnerability half fail independently; a
    failure in one is recorded on the result and leaves the other intact.
    """

    def __init__(
        self,
        commit_source: CommitSource | None = None,
        profile_source: ProfileSource | None = None,
        remote: RemoteChecker | None = None,
        aggregator: VulnerabilityAggregator | None = None,
        scorer: AnomalyScorer | None = None,
        settings: config.Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            commit_source: Provider of new commits. Without one, commits are not scored.
            profile_source: Provider of contributor profiles.
            remote: Remote head checker.
            aggregator: Vulnerability aggregator. Built from settings when omitted.
            scorer: Anomaly scorer.
            settings: Runtime settings. Defaults to the environment.
            logger: Optional logger. Defaults to the module logger.
        """
        self.settings = settings or config.Settings.from_env()
        self.commit_source = commit_source
        self.profile_source = profile_source
        self.remote = remote or RemoteChecker()
        self.scorer = scorer or AnomalyScorer()
        self._aggregator = aggregator
        self._http_client: httpx.AsyncClient | None = None
        self._log = logger or logging.getLogger(__name__)

    async def __aenter__(self) -> "WatchPipeline":
        """Set up shared HTTP client."""
        self._http_client = httpx.AsyncClient(timeout=self.settings.http_timeout)
        return self

    async def __aexit__(self, *args) -> None:
        """Clean up HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def aggregator(self) -> VulnerabilityAggregator:
        if self._aggregator is None:
            client = self._http_client
            self._aggregator = VulnerabilityAggregator(
                registry=NpmAdapter(client=client),
                osv=OSVFetcher(client=client),
                npm_advisories=NpmAdvisoryFetcher(client=client),
                ghsa=GHSAFetcher(token=self.settings.github_token, client=client),
                include_npm_advisories=self.settings.include_npm_advisories,
            )
        return self._aggregator

    async def poll_package(self, package: WatchedPackage) -> PollResult:
        """Run one poll cycle for a package.

        Args:
            package: Watched package state from the scheduler.

        Returns:
            PollResult with the commit check, anomalies and vulnerability refresh.
        """
        result = PollResult(package=package.name)
        result.clone_url = normalize_repository_url(package.repository_url)

        commits_task = self._poll_commits(package, result)
        vulns_task = self.aggregator.refresh(
            package.name,
            package.last_known_version,
            package.known_advisory_ids,
        )
        commit_outcome, vuln_outcome = await asyncio.gather(
            commits_task, vulns_task, return_exceptions=True
        )

        if isinstance(commit_outcome, Exception):
            self._log.error(f"Commit check failed for {package.name}: {commit_outcome}")
            result.errors.append(f"commits: {commit_outcome}")

        if isinstance(vuln_outcome, Exception):
            self._log.error(f"Vulnerability refresh failed for {package.name}: {vuln_outcome}")
            result.errors.append(f"vulnerabilities: {vuln_outcome}")
        else:
            result.vulnerabilities = vuln_outcome
            if vuln_outcome.error:
                result.errors.append(f"vulnerabilities: {vuln_outcome.error}")

        self._log.info(
            f"Polled {package.name}: {result.commits_scored} commits scored, "
            f"{len(result.anomalies)} anomalous, "
            f"{_count_new(result.vulnerabilities)} new vulnerabilities"
        )
        return result

    async def _poll_commits(self, package: WatchedPackage, result: PollResult) -> None:
        """Check the remote and score new commits, recording onto result."""
        if result.clone_url is None:
            result.errors.append("commits: no supported repository URL")
            return

        check = await self.remote.has_new_commits(result.clone_url, package.last_known_sha)
        result.commit_check = check
        if check.error:
            result.errors.append(f"commits: {check.error}")
            return
        if not check.has_changes or self.commit_source is None:
            return

        commits = await self.commit_source.commits_since(
            result.clone_url, package.last_known_sha, check.current_sha
        )
        result.commits_scored = len(commits)
        if commits:
            result.anomalies = await self._score(package, commits)

    async def _score(
        self,
        package: WatchedPackage,
        commits: list[CommitDetails],
    ) -> list[AnomalyResult]:
        profiles: Mapping[str, ContributorProfile] = {}
        if self.profile_source is not None:
            profiles = await self.profile_source.profiles_for(package.name)
        return self.scorer.score_all(commits, profiles)


def _count_new(refresh: RefreshResult | None) -> int:
    return len(refresh.new_vulnerabilities) if refresh else 0
