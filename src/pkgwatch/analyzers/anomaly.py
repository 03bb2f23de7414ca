"""Contributor-baseline anomaly scoring for commits.

Each commit is compared with the statistical baseline of its author within
the package. Ten independent factors contribute graduated points; a higher
total means a more unusual (and possibly malicious) commit.

Scoring factors:
- Files changed: 6/10/15 points at 1.5/2/3+ standard deviations
- Lines changed: 6/10/15 points at 1.5/2/3+ standard deviations
- Message length: 3/5/8 points at 1.5/2/3+ standard deviations
- Insert/delete ratio: 3/5/8 points at >50/75/100% difference
- Commit hour: 3/5/7 points when the hour holds <8/5/2% of history
- Commit weekday: 2/4/6 points when the day holds <15/10/5% of history
- New files: 4/16/36 points for 1/2/3+ never-touched files
- Security-sensitive files: 5/10/15 points by file criticality
- First-time contributor: 4/8 points for <=3 / <=1 commits
- Sensitive keywords: 3/6/12 points by keyword severity
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping

from pkgwatch.models.schemas import (
    DAY_NAMES,
    AnomalyFactor,
    AnomalyResult,
    AnomalyScoreBreakdown,
    CommitDetails,
    ContributorProfile,
)


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1] or path


def _sigma_points(deviation: float, tiers: tuple[tuple[float, int], ...]) -> int:
    """Return the points of the first tier whose threshold the deviation reaches."""
    for threshold, points in tiers:
        if deviation >= threshold:
            return points
    return 0


class AnomalyScorer:
    """Scores commits against contributor baselines.

    Scoring is deterministic: the same commit and profile always produce
    the same result, with breakdown entries in factor evaluation order.
    Point tables and patterns are class attributes; subclasses may override them.
    """

    # (minimum standard deviations, points), highest first
    FILES_CHANGED_TIERS = ((3.0, 15), (2.0, 10), (1.5, 6))
    LINES_CHANGED_TIERS = ((3.0, 15), (2.0, 10), (1.5, 6))
    MESSAGE_LENGTH_TIERS = ((3.0, 8), (2.0, 5), (1.5, 3))

    # (percent difference strictly above, points)
    RATIO_TIERS = ((100.0, 8), (75.0, 5), (50.0, 3))

    # (share of history strictly below, points)
    HOUR_TIERS = ((2.0, 7), (5.0, 5), (8.0, 3))
    DAY_TIERS = ((5.0, 6), (10.0, 4), (15.0, 2))

    # Points by number of new files (capped at 3)
    NEW_FILE_POINTS = {1: 4, 2: 16, 3: 36}
    MAX_NEW_FILES_COUNTED = 3

    SECURITY_FILE_POINTS = {"critical": 15, "high": 10, "moderate": 5}

    # Manifests, lockfiles and registry config
    CRITICAL_FILE_PATTERNS = [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"package\.json$",
            r"package-lock\.json$",
            r"\.npmrc$",
            r"\.yarnrc",
            r"yarn\.lock$",
        )
    ]

    # Authentication, configuration, CI and build tooling
    HIGH_RISK_FILE_PATTERNS = [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\.env",
            r"config\.(js|ts|json)$",
            r"auth",
            r"secret",
            r"credential",
            r"\.github/workflows",
            r"Dockerfile",
            r"docker-compose",
            r"webpack\.config",
            r"rollup\.config",
            r"vite\.config",
            r"tsconfig\.json$",
        )
    ]

    # Scripts and entry points that run during install or startup
    MODERATE_FILE_PATTERNS = [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"scripts/",
            r"bin/",
            r"postinstall",
            r"preinstall",
            r"install\.js$",
            r"index\.(js|ts)$",
        )
    ]

    FIRST_COMMIT_POINTS = 8
    NEW_CONTRIBUTOR_POINTS = 4
    NEW_CONTRIBUTOR_MAX_COMMITS = 3

    HIGH_KEYWORD_POINTS = 12
    MULTI_MEDIUM_KEYWORD_POINTS = 6
    SINGLE_MEDIUM_KEYWORD_POINTS = 3

    # Credential handling and obfuscation
    HIGH_KEYWORDS = [
        (re.compile(r"password", re.IGNORECASE), "password"),
        (re.compile(r"secret", re.IGNORECASE), "secret"),
        (re.compile(r"credential", re.IGNORECASE), "credential"),
        (re.compile(r"api[_-]?key", re.IGNORECASE), "API key"),
        (re.compile(r"private[_-]?key", re.IGNORECASE), "private key"),
        (re.compile(r"encrypt", re.IGNORECASE), "encryption"),
        (re.compile(r"decrypt", re.IGNORECASE), "decryption"),
        (re.compile(r"obfuscat", re.IGNORECASE), "obfuscation"),
        (re.compile(r"base64", re.IGNORECASE), "base64 encoding"),
    ]

    # Network, exfiltration and dynamic execution
    MEDIUM_KEYWORDS = [
        (re.compile(r"token", re.IGNORECASE), "token"),
        (re.compile(r"auth", re.IGNORECASE), "authentication"),
        (re.compile(r"curl|wget|fetch", re.IGNORECASE), "network request"),
        (re.compile(r"eval\s*\(", re.IGNORECASE), "eval()"),
        (re.compile(r"exec\s*\(", re.IGNORECASE), "exec()"),
        (re.compile(r"child_process", re.IGNORECASE), "child process"),
    ]

    # Recorded for context only; never scored.
    LOW_KEYWORDS = [
        (re.compile(r"env\b", re.IGNORECASE), "environment variable"),
        (re.compile(r"config", re.IGNORECASE), "configuration"),
        (re.compile(r"hook", re.IGNORECASE), "hook"),
    ]

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(__name__)

    def score(self, commit: CommitDetails, profile: ContributorProfile) -> AnomalyResult:
        """Calculate the anomaly score of one commit.

        Args:
            commit: The commit under evaluation.
            profile: Baseline of the commit's author in this package.

        Returns:
            AnomalyResult whose breakdown holds only triggered factors.
        """
        checks = (
            self._check_files_changed(commit, profile),
            self._check_lines_changed(commit, profile),
            self._check_message_length(commit, profile),
            self._check_insert_delete_ratio(commit, profile),
            self._check_commit_hour(commit, profile),
            self._check_commit_day(commit, profile),
            self._check_new_files(commit, profile),
            self._check_security_sensitive_files(commit),
            self._check_first_time_contributor(profile),
            self._check_sensitive_keywords(commit),
        )
        breakdown = [item for item in checks if item is not None and item.points > 0]

        return AnomalyResult(
            commit_sha=commit.sha,
            contributor_email=commit.author_email,
            total_score=sum(item.points for item in breakdown),
            breakdown=breakdown,
        )

    def score_all(
        self,
        commits: Iterable[CommitDetails],
        profiles: Mapping[str, ContributorProfile],
    ) -> list[AnomalyResult]:
        """Score many commits, keeping only those with a non-zero score.

        Args:
            commits: Commits to score.
            profiles: Contributor profiles keyed by author email (any case).

        Returns:
            Results with total_score > 0, in commit order.
        """
        commits = list(commits)
        by_email = {email.lower(): profile for email, profile in profiles.items()}
        self._log.info(f"Calculating anomaly scores for {len(commits)} commits...")

        results = []
        for commit in commits:
            profile = by_email.get(commit.author_email.lower())
            if profile is None:
                self._log.warning(f"No profile found for contributor {commit.author_email}")
                continue

            result = self.score(commit, profile)
            if result.total_score > 0:
                results.append(result)

        self._log.info(
            f"Found {len(results)} anomalous commits out of {len(commits)} total"
        )
        return results

    # --- Statistical deviation factors ---

    def _check_files_changed(
        self, commit: CommitDetails, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        avg = profile.avg_files_changed
        stddev = profile.stddev_files_changed
        if stddev == 0:
            return None

        deviation = (commit.files_changed - avg) / stddev
        points = _sigma_points(deviation, self.FILES_CHANGED_TIERS)
        if points == 0:
            return None

        if points == self.FILES_CHANGED_TIERS[0][1]:
            reason = (
                f"Extremely high file count: {commit.files_changed} files touched "
                f"(typical: {avg:.1f} ±{stddev:.1f}). This is {deviation:.1f}σ above "
                f"normal, possibly a bulk change or automated commit."
            )
        elif points == self.FILES_CHANGED_TIERS[1][1]:
            reason = (
                f"High file count: {commit.files_changed} files (typical: {avg:.1f}). "
                f"At {deviation:.1f}σ above mean, this warrants review."
            )
        else:
            reason = (
                f"Above-average file count: {commit.files_changed} files vs typical "
                f"{avg:.1f} ({deviation:.1f}σ deviation)."
            )
        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.FILES_CHANGED, points=points, reason=reason
        )

    def _check_lines_changed(
        self, commit: CommitDetails, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        total = commit.lines_added + commit.lines_deleted
        avg_total = profile.avg_lines_added + profile.avg_lines_deleted
        stddev_total = math.sqrt(
            profile.stddev_lines_added**2 + profile.stddev_lines_deleted**2
        )
        if stddev_total == 0:
            return None

        deviation = (total - avg_total) / stddev_total
        points = _sigma_points(deviation, self.LINES_CHANGED_TIERS)
        if points == 0:
            return None

        if points == self.LINES_CHANGED_TIERS[0][1]:
            reason = (
                f"Extremely high code volume: {total:,} lines changed "
                f"(+{commit.lines_added:,}/-{commit.lines_deleted:,}). Typical: "
                f"{avg_total:.0f} lines. This is {deviation:.1f}σ above normal."
            )
        elif points == self.LINES_CHANGED_TIERS[1][1]:
            reason = (
                f"High code volume: {total:,} lines vs typical {avg_total:.0f}. "
                f"At {deviation:.1f}σ, this is a notably large commit."
            )
        else:
            reason = (
                f"Above-average code changes: {total:,} lines vs typical "
                f"{avg_total:.0f} ({deviation:.1f}σ deviation)."
            )
        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.LINES_CHANGED, points=points, reason=reason
        )

    def _check_message_length(
        self, commit: CommitDetails, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        length = len(commit.message)
        avg = profile.avg_commit_message_length
        stddev = profile.stddev_commit_message_length
        if stddev == 0:
            return None

        deviation = abs(length - avg) / stddev
        points = _sigma_points(deviation, self.MESSAGE_LENGTH_TIERS)
        if points == 0:
            return None

        longer = length > avg
        if points == self.MESSAGE_LENGTH_TIERS[0][1]:
            if longer:
                reason = (
                    f"Extremely long commit message: {length} chars (typical: {avg:.0f} "
                    f"chars). At {deviation:.1f}σ above normal, this may indicate "
                    f"verbose justification or embedded data."
                )
            else:
                reason = (
                    f"Extremely short commit message: {length} chars (typical: {avg:.0f} "
                    f"chars). At {deviation:.1f}σ below normal, this may indicate a "
                    f"rushed or obfuscated commit."
                )
        elif points == self.MESSAGE_LENGTH_TIERS[1][1]:
            kind = "Long" if longer else "Short"
            reason = (
                f"{kind} commit message: {length} chars vs typical {avg:.0f} "
                f"({deviation:.1f}σ deviation)."
            )
        else:
            reason = (
                f"Atypical message length: {length} chars vs typical {avg:.0f} "
                f"({deviation:.1f}σ deviation)."
            )
        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.MESSAGE_LENGTH, points=points, reason=reason
        )

    def _check_insert_delete_ratio(
        self, commit: CommitDetails, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        baseline = profile.insert_to_delete_ratio
        if commit.lines_deleted == 0 or baseline is None:
            return None

        ratio = commit.lines_added / commit.lines_deleted
        percent_diff = abs((ratio - baseline) / baseline) * 100

        points = 0
        for threshold, tier_points in self.RATIO_TIERS:
            if percent_diff > threshold:
                points = tier_points
                break
        if points == 0:
            return None

        numbers = f"ratio {ratio:.2f} vs typical {baseline:.2f} ({percent_diff:.0f}% difference)"
        if points == self.RATIO_TIERS[0][1]:
            reason = (
                f"Drastically different code pattern: {numbers}. This is a major "
                f"deviation from normal editing behavior."
            )
        elif points == self.RATIO_TIERS[1][1]:
            reason = f"Unusual code pattern: {numbers}."
        else:
            reason = f"Slightly unusual insert/delete {numbers}."
        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.INSERT_DELETE_RATIO, points=points, reason=reason
        )

    # --- Timing factors ---

    def _check_commit_hour(
        self, commit: CommitDetails, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        histogram = profile.commit_time_histogram
        total = sum(histogram.values())
        if total == 0:
            return None

        hour = commit.utc_timestamp.hour
        percentage = histogram.get(hour, 0) / total * 100
        points = _share_points(percentage, self.HOUR_TIERS)
        if points == 0:
            return None

        if points == self.HOUR_TIERS[0][1]:
            reason = (
                f"Very unusual commit time: {hour}:00 UTC (only {percentage:.1f}% of this "
                f"contributor's commits). This time is almost never used by this developer."
            )
        elif points == self.HOUR_TIERS[1][1]:
            reason = (
                f"Unusual commit time: {hour}:00 UTC (only {percentage:.1f}% of commits "
                f"at this hour). Outside normal working pattern."
            )
        else:
            reason = (
                f"Atypical commit time: {hour}:00 UTC ({percentage:.1f}% of commits). "
                f"Slightly outside usual hours."
            )
        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.ABNORMAL_TIME, points=points, reason=reason
        )

    def _check_commit_day(
        self, commit: CommitDetails, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        days = profile.typical_days_active
        total = sum(days.values())
        if total == 0:
            return None

        day = DAY_NAMES[commit.utc_timestamp.weekday()]
        percentage = days.get(day, 0) / total * 100
        points = _share_points(percentage, self.DAY_TIERS)
        if points == 0:
            return None

        if points == self.DAY_TIERS[0][1]:
            reason = (
                f"Very unusual commit day: {day} (only {percentage:.1f}% of commits). "
                f"This contributor rarely works on {day}s."
            )
        elif points == self.DAY_TIERS[1][1]:
            reason = (
                f"Unusual commit day: {day} ({percentage:.1f}% of commits). "
                f"Outside normal working pattern."
            )
        else:
            reason = (
                f"Slightly atypical day: {day} ({percentage:.1f}% of commits vs more "
                f"common days)."
            )
        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.ABNORMAL_DAY, points=points, reason=reason
        )

    # --- File factors ---

    def _check_new_files(
        self, commit: CommitDetails, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        if not commit.diff_summary:
            return None

        new_files = [f for f in commit.diff_summary if not profile.files_worked_on.get(f)]
        if not new_files:
            return None

        counted = new_files[: self.MAX_NEW_FILES_COUNTED]
        points = self.NEW_FILE_POINTS[len(counted)]
        if len(counted) >= 3:
            label = "Significant territory expansion"
        elif len(counted) == 2:
            label = "Working in multiple new areas"
        else:
            label = "Branching into new code"

        names = ", ".join(_basename(f) for f in counted)
        reason = (
            f"{label}: {len(counted)} file(s) not in contributor's history ({names}). "
            f"This contributor has never touched these files before."
        )
        return AnomalyScoreBreakdown(factor=AnomalyFactor.NEW_FILES, points=points, reason=reason)

    def classify_file(self, path: str) -> str | None:
        """Return the security tier of a file path, or None if not sensitive."""
        if any(p.search(path) for p in self.CRITICAL_FILE_PATTERNS):
            return "critical"
        if any(p.search(path) for p in self.HIGH_RISK_FILE_PATTERNS):
            return "high"
        if any(p.search(path) for p in self.MODERATE_FILE_PATTERNS):
            return "moderate"
        return None

    def _check_security_sensitive_files(
        self, commit: CommitDetails
    ) -> AnomalyScoreBreakdown | None:
        if not commit.diff_summary:
            return None

        tiers: dict[str, list[str]] = {"critical": [], "high": [], "moderate": []}
        for path in commit.diff_summary:
            tier = self.classify_file(path)
            if tier:
                tiers[tier].append(_basename(path))

        if tiers["critical"]:
            reason = (
                f"Critical supply chain files modified: {', '.join(tiers['critical'])}. "
                f"These files control dependencies, build config, or registry auth."
            )
            tier = "critical"
        elif tiers["high"]:
            files = tiers["high"]
            more = f" (+{len(files) - 3} more)" if len(files) > 3 else ""
            reason = (
                f"High-risk configuration files modified: {', '.join(files[:3])}{more}. "
                f"Review for unintended changes."
            )
            tier = "high"
        elif tiers["moderate"]:
            reason = (
                f"Executable/script files modified: {', '.join(tiers['moderate'][:3])}. "
                f"These can run during install or startup."
            )
            tier = "moderate"
        else:
            return None

        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.SECURITY_SENSITIVE_FILES,
            points=self.SECURITY_FILE_POINTS[tier],
            reason=reason,
        )

    # --- Contributor and message factors ---

    def _check_first_time_contributor(
        self, profile: ContributorProfile
    ) -> AnomalyScoreBreakdown | None:
        if profile.total_commits <= 1:
            return AnomalyScoreBreakdown(
                factor=AnomalyFactor.FIRST_TIME_CONTRIBUTOR,
                points=self.FIRST_COMMIT_POINTS,
                reason=(
                    f"First-time contributor to this package ({profile.total_commits} "
                    f"commit on record). New contributors warrant additional review."
                ),
            )
        if profile.total_commits <= self.NEW_CONTRIBUTOR_MAX_COMMITS:
            return AnomalyScoreBreakdown(
                factor=AnomalyFactor.FIRST_TIME_CONTRIBUTOR,
                points=self.NEW_CONTRIBUTOR_POINTS,
                reason=(
                    f"New contributor (only {profile.total_commits} commits). "
                    f"Limited history for baseline comparison."
                ),
            )
        return None

    def match_keywords(self, message: str) -> dict[str, list[str]]:
        """Return the keyword descriptions found in a message, per tier."""
        return {
            "high": [desc for pattern, desc in self.HIGH_KEYWORDS if pattern.search(message)],
            "medium": [desc for pattern, desc in self.MEDIUM_KEYWORDS if pattern.search(message)],
            "low": [desc for pattern, desc in self.LOW_KEYWORDS if pattern.search(message)],
        }

    def _check_sensitive_keywords(self, commit: CommitDetails) -> AnomalyScoreBreakdown | None:
        matches = self.match_keywords(commit.message)
        high, medium = matches["high"], matches["medium"]

        if high:
            points = self.HIGH_KEYWORD_POINTS
            reason = (
                f"Sensitive terms in commit message: {', '.join(high)}. Review actual "
                f"changes carefully for credential handling or obfuscation."
            )
        elif len(medium) >= 2:
            points = self.MULTI_MEDIUM_KEYWORD_POINTS
            reason = (
                f"Multiple security-relevant terms: {', '.join(medium)}. "
                f"May indicate auth/network changes."
            )
        elif len(medium) == 1:
            points = self.SINGLE_MEDIUM_KEYWORD_POINTS
            reason = (
                f'Security-relevant term in message: "{medium[0]}". '
                f"Worth reviewing if unexpected."
            )
        else:
            return None

        return AnomalyScoreBreakdown(
            factor=AnomalyFactor.SENSITIVE_KEYWORDS, points=points, reason=reason
        )


def _share_points(percentage: float, tiers: tuple[tuple[float, int], ...]) -> int:
    """Return the points of the first tier whose ceiling the share falls under."""
    for ceiling, points in tiers:
        if percentage < ceiling:
            return points
    return 0
