"""Pydantic models for commits, contributor baselines and vulnerabilities."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pkgwatch import config

# Weekday names indexed by datetime.weekday() (Monday == 0).
DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# Legacy "infinite" marker written by older baseline jobs when a contributor
# never deleted a line.
LEGACY_UNDEFINED_RATIO = 999.0


class Ecosystem(str, Enum):
    """Package ecosystems."""

    NPM = "npm"


class Platform(str, Enum):
    """Source code hosting platforms."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


class RepoRef(BaseModel):
    """Reference to a source code repository."""

    platform: Platform
    owner: str
    repo: str

    @property
    def url(self) -> str:
        """Get the web URL of the repository."""
        hosts = {
            Platform.GITHUB: "github.com",
            Platform.GITLAB: "gitlab.com",
            Platform.BITBUCKET: "bitbucket.org",
        }
        return f"https://{hosts[self.platform]}/{self.owner}/{self.repo}"

    @property
    def clone_url(self) -> str:
        """Get the canonical https clone URL."""
        return f"{self.url}.git"


# --- Commit / Contributor Models ---


class CommitDetails(BaseModel):
    """A single commit under evaluation. Immutable once observed."""

    model_config = ConfigDict(frozen=True)

    sha: str
    author: str = ""
    author_email: str
    message: str = ""
    timestamp: datetime
    lines_added: int = Field(default=0, ge=0)
    lines_deleted: int = Field(default=0, ge=0)
    files_changed: int = Field(default=0, ge=0)
    diff_summary: list[str] | None = None  # touched file paths
    touched_functions: list[str] | None = None

    @property
    def utc_timestamp(self) -> datetime:
        """Timestamp normalized to UTC (naive values are taken as UTC)."""
        if self.timestamp.tzinfo is None:
            return self.timestamp.replace(tzinfo=timezone.utc)
        return self.timestamp.astimezone(timezone.utc)

    def to_row(self) -> dict:
        """Storage row with the message capped at MAX_COMMIT_MESSAGE_LENGTH."""
        row = self.model_dump(mode="json")
        row["message"] = self.message[: config.MAX_COMMIT_MESSAGE_LENGTH]
        row["timestamp"] = self.utc_timestamp.isoformat()
        return row


class ContributorProfile(BaseModel):
    """Behavioral baseline of one contributor within one package.

    Histogram counts are non-negative. ``insert_to_delete_ratio`` is None
    when the ratio is undefined (no deletions in the history, or no data).
    """

    author_email: str
    author_name: str = ""
    total_commits: int = Field(default=0, ge=0)
    avg_lines_added: float = 0.0
    avg_lines_deleted: float = 0.0
    avg_files_changed: float = 0.0
    stddev_lines_added: float = Field(default=0.0, ge=0)
    stddev_lines_deleted: float = Field(default=0.0, ge=0)
    stddev_files_changed: float = Field(default=0.0, ge=0)
    avg_commit_message_length: float = 0.0
    stddev_commit_message_length: float = Field(default=0.0, ge=0)
    insert_to_delete_ratio: float | None = None
    commit_time_histogram: dict[int, int] = Field(default_factory=dict)  # hour (UTC) -> count
    typical_days_active: dict[str, int] = Field(default_factory=dict)  # day name -> count
    files_worked_on: dict[str, int] = Field(default_factory=dict)  # path -> times touched
    first_commit_date: datetime | None = None
    last_commit_date: datetime | None = None

    @field_validator("insert_to_delete_ratio", mode="before")
    @classmethod
    def _normalize_ratio(cls, value):
        if value is None:
            return None
        if value == 0 or value == LEGACY_UNDEFINED_RATIO:
            return None
        return value

    @field_validator("commit_time_histogram", mode="before")
    @classmethod
    def _normalize_hour_keys(cls, value):
        # Accept legacy "13:00" style keys.
        if isinstance(value, dict):
            return {
                (int(str(k).split(":")[0]) if isinstance(k, str) else k): v
                for k, v in value.items()
            }
        return value

    @field_validator("commit_time_histogram")
    @classmethod
    def _check_hours(cls, value: dict[int, int]) -> dict[int, int]:
        for hour, count in value.items():
            if not 0 <= hour <= 23:
                raise ValueError(f"hour bucket out of range: {hour}")
            if count < 0:
                raise ValueError(f"negative count for hour {hour}")
        return value

    @field_validator("typical_days_active", "files_worked_on")
    @classmethod
    def _check_counts(cls, value: dict[str, int]) -> dict[str, int]:
        for key, count in value.items():
            if count < 0:
                raise ValueError(f"negative count for {key!r}")
        return value


class AnomalyFactor(str, Enum):
    """Stable identifiers of the anomaly scoring factors."""

    FILES_CHANGED = "files_changed"
    LINES_CHANGED = "lines_changed"
    MESSAGE_LENGTH = "message_length"
    INSERT_DELETE_RATIO = "insert_delete_ratio"
    ABNORMAL_TIME = "abnormal_time"
    ABNORMAL_DAY = "abnormal_day"
    NEW_FILES = "new_files"
    SECURITY_SENSITIVE_FILES = "security_sensitive_files"
    FIRST_TIME_CONTRIBUTOR = "first_time_contributor"
    SENSITIVE_KEYWORDS = "sensitive_keywords"


class AnomalyScoreBreakdown(BaseModel):
    """One triggered factor with its points and justification."""

    factor: AnomalyFactor
    points: int = Field(ge=0)
    reason: str


class AnomalyResult(BaseModel):
    """Anomaly score of a commit against its contributor's baseline."""

    commit_sha: str
    contributor_email: str
    total_score: int = 0
    breakdown: list[AnomalyScoreBreakdown] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_total(self) -> "AnomalyResult":
        expected = sum(item.points for item in self.breakdown)
        if self.total_score != expected:
            raise ValueError(
                f"total_score {self.total_score} does not match breakdown sum {expected}"
            )
        return self


# --- Vulnerability Models ---


class Severity(str, Enum):
    """Normalized vulnerability severity."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AffectedEvent(BaseModel):
    """A range event: a version where the vulnerability was introduced or fixed."""

    introduced: str | None = None
    fixed: str | None = None
    last_affected: str | None = None


class AffectedRange(BaseModel):
    """An ordered list of events describing affected intervals."""

    type: str = "SEMVER"
    events: list[AffectedEvent] = Field(default_factory=list)


class AffectedPackage(BaseModel):
    """Affected-version descriptor of one package in a vulnerability record."""

    package: dict[str, str] | None = None
    ranges: list[AffectedRange] = Field(default_factory=list)
    versions: list[str] = Field(default_factory=list)
    vulnerable_range: str | None = None  # npm advisory "vulnerable_versions"


class ProcessedVulnerability(BaseModel):
    """Source-neutral vulnerability record."""

    osv_id: str
    severity: Severity = Severity.MEDIUM
    summary: str | None = None
    details: str | None = None
    aliases: list[str] = Field(default_factory=list)
    affected_versions: list[AffectedPackage] | None = None
    fixed_versions: list[str] = Field(default_factory=list)
    published_at: str | None = None
    modified_at: str | None = None


class VulnerabilityInsert(ProcessedVulnerability):
    """Insert-ready vulnerability row. Identity is (dependency_id, osv_id)."""

    dependency_id: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.dependency_id, self.osv_id)


class NpmVersionInfo(BaseModel):
    """Latest stable release of an npm package."""

    latest_version: str | None = None
    published_at: str | None = None


class RefreshResult(BaseModel):
    """Outcome of refreshing vulnerability state for one package."""

    new_vulnerabilities: list[ProcessedVulnerability] = Field(default_factory=list)
    all_vulnerabilities: list[ProcessedVulnerability] = Field(default_factory=list)
    latest_version: str | None = None
    is_new_version: bool = False
    error: str | None = None


# --- Repository Change Models ---


class RemoteHead(BaseModel):
    """Head commit and default branch of a remote repository."""

    sha: str | None = None
    branch: str | None = None
    error: str | None = None


class CommitCheck(BaseModel):
    """Whether a remote repository moved past the last known commit."""

    has_changes: bool = False
    current_sha: str | None = None
    branch: str | None = None
    error: str | None = None


# --- Pipeline Models ---


class WatchedPackage(BaseModel):
    """Polling state of one watched package, as handed over by the scheduler."""

    name: str
    repository_url: str | None = None
    last_known_sha: str | None = None
    last_known_version: str | None = None
    known_advisory_ids: set[str] = Field(default_factory=set)


class PollResult(BaseModel):
    """Outcome of one poll cycle for one package."""

    package: str
    clone_url: str | None = None
    commit_check: CommitCheck | None = None
    commits_scored: int = 0
    anomalies: list[AnomalyResult] = Field(default_factory=list)
    vulnerabilities: RefreshResult | None = None
    errors: list[str] = Field(default_factory=list)
