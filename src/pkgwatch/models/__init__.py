"""Data models and schemas."""

from pkgwatch.models.schemas import (
    AnomalyFactor,
    AnomalyResult,
    AnomalyScoreBreakdown,
    CommitDetails,
    ContributorProfile,
    ProcessedVulnerability,
    Severity,
    VulnerabilityInsert,
)

__all__ = [
    "AnomalyFactor",
    "AnomalyResult",
    "AnomalyScoreBreakdown",
    "CommitDetails",
    "ContributorProfile",
    "ProcessedVulnerability",
    "Severity",
    "VulnerabilityInsert",
]
