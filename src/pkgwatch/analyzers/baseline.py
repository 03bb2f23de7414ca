"""Build contributor baselines from a package's commit history."""

from __future__ import annotations

import logging
import statistics
from collections import Counter
from collections.abc import Iterable

from pkgwatch.models.schemas import DAY_NAMES, CommitDetails, ContributorProfile

logger = logging.getLogger(__name__)


def _mean(values: list[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def _stddev(values: list[float]) -> float:
    # Population standard deviation; a single sample has no spread.
    return statistics.pstdev(values) if values else 0.0


def build_contributor_profiles(
    commits: Iterable[CommitDetails],
) -> dict[str, ContributorProfile]:
    """Aggregate commits into one behavioral profile per contributor.

    Contributors are keyed by lower-cased author email. Hour and weekday
    histograms are bucketed in UTC.

    Args:
        commits: Commit history of one package.

    Returns:
        Mapping of lower-cased author email to ContributorProfile.
    """
    grouped: dict[str, list[CommitDetails]] = {}
    for commit in commits:
        grouped.setdefault(commit.author_email.lower(), []).append(commit)

    total = sum(len(c) for c in grouped.values())
    logger.info(f"Building contributor profiles from {total} commits...")

    profiles = {}
    for email, history in grouped.items():
        added = [c.lines_added for c in history]
        deleted = [c.lines_deleted for c in history]
        files = [c.files_changed for c in history]
        lengths = [len(c.message) for c in history]
        timestamps = [c.utc_timestamp for c in history]

        total_deleted = sum(deleted)
        ratio = sum(added) / total_deleted if total_deleted else None

        files_worked_on: Counter[str] = Counter()
        for commit in history:
            files_worked_on.update(commit.diff_summary or [])

        profiles[email] = ContributorProfile(
            author_email=email,
            author_name=history[0].author,
            total_commits=len(history),
            avg_lines_added=_mean(added),
            avg_lines_deleted=_mean(deleted),
            avg_files_changed=_mean(files),
            stddev_lines_added=_stddev(added),
            stddev_lines_deleted=_stddev(deleted),
            stddev_files_changed=_stddev(files),
            avg_commit_message_length=_mean(lengths),
            stddev_commit_message_length=_stddev(lengths),
            insert_to_delete_ratio=ratio,
            commit_time_histogram=dict(Counter(t.hour for t in timestamps)),
            typical_days_active=dict(Counter(DAY_NAMES[t.weekday()] for t in timestamps)),
            files_worked_on=dict(files_worked_on),
            first_commit_date=min(timestamps),
            last_commit_date=max(timestamps),
        )

    logger.info(f"Built {len(profiles)} contributor profiles")
    return profiles
