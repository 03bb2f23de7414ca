"""Configuration constants and environment-backed settings."""

import logging
import os

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# CVSS score thresholds for severity classification. These are policy
# choices pending product review; change them here, not at call sites.
CVSS_CRITICAL = 9.0
CVSS_HIGH = 7.0
CVSS_MEDIUM = 4.0

# When deduplicating vulnerability rows, keep a row carrying fixed versions
# over one without. Pending product review.
PREFER_ROWS_WITH_FIX = True

# Storage length caps
MAX_DETAILS_LENGTH = 10_000
MAX_COMMIT_MESSAGE_LENGTH = 10_000

# Rows per persistence request
WRITE_BATCH_SIZE = 50

# GitHub advisory GraphQL limits
GHSA_MAX_PACKAGES = 100
GHSA_FIRST_PER_PACKAGE = 30

# Timeouts
REMOTE_TIMEOUT_SECONDS = 30
HTTP_TIMEOUT_SECONDS = 30.0

USER_AGENT = "pkgwatch"

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_PAT")


def github_token_from_env() -> str | None:
    """Return the first non-empty GitHub token found in the environment."""
    for name in TOKEN_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


class Settings(BaseModel):
    """Runtime settings, usually built from the environment."""

    github_token: str | None = None
    log_level: str = "INFO"
    http_timeout: float = HTTP_TIMEOUT_SECONDS
    include_npm_advisories: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        Recognized variables:
            GITHUB_TOKEN / GH_TOKEN / GITHUB_PAT: token for the GitHub advisory API.
            PKGWATCH_LOG_LEVEL: logging level name.
            PKGWATCH_HTTP_TIMEOUT: HTTP timeout in seconds.
            PKGWATCH_NPM_ADVISORIES: "1"/"true" to merge npm bulk advisories.
        """
        npm_flag = os.environ.get("PKGWATCH_NPM_ADVISORIES", "")
        return cls(
            github_token=github_token_from_env(),
            log_level=os.environ.get("PKGWATCH_LOG_LEVEL", "INFO").upper(),
            http_timeout=_http_timeout_from_env(),
            include_npm_advisories=npm_flag.lower() in ("1", "true", "yes"),
        )


def _http_timeout_from_env() -> float:
    raw = os.environ.get("PKGWATCH_HTTP_TIMEOUT", "").strip()
    if not raw:
        return HTTP_TIMEOUT_SECONDS
    try:
        timeout = float(raw)
    except ValueError:
        timeout = 0.0
    if timeout <= 0:
        logger.warning(
            f"Ignoring invalid PKGWATCH_HTTP_TIMEOUT={raw!r}; using {HTTP_TIMEOUT_SECONDS}s"
        )
        return HTTP_TIMEOUT_SECONDS
    return timeout
