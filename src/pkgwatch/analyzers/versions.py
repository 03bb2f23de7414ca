"""Version coercion and affected-range matching for vulnerability records."""

from __future__ import annotations

import logging

from semantic_version import NpmSpec, Version, validate

from pkgwatch.models.schemas import AffectedPackage, AffectedRange, ProcessedVulnerability

logger = logging.getLogger(__name__)

ZERO = Version("0.0.0")


def _strip_prefix(value: str) -> str:
    return value.strip().lstrip("v=").strip()


def coerce_version(value: str | None) -> Version | None:
    """Coerce a loose version string into MAJOR.MINOR.PATCH.

    The first numeric run is used; pre-release and build tags are dropped
    and missing parts become 0. Returns None when no number can be found.

    Examples:
        "v1.2" -> 1.2.0, "1.13" -> 1.13.0, "2.0.0-beta.1" -> 2.0.0
    """
    if value is None:
        return None
    text = str(value)
    start = next((i for i, ch in enumerate(text) if ch.isdigit()), None)
    if start is None:
        return None
    try:
        coerced = Version.coerce(text[start:])
    except ValueError:
        return None
    return Version(major=coerced.major, minor=coerced.minor, patch=coerced.patch)


def is_valid_semver(value: str) -> bool:
    """Return True for a full semantic version string."""
    return validate(_strip_prefix(value))


def is_stable(value: str) -> bool:
    """Return True for a valid semantic version without a pre-release tag."""
    try:
        return not Version(_strip_prefix(value)).prerelease
    except ValueError:
        return False


def in_npm_range(candidate: Version, range_expr: str) -> bool | None:
    """Test a version against an npm range such as ``"<1.2.3 || >=2.0.0 <2.1.0"``.

    Returns None when the range cannot be parsed.
    """
    try:
        spec = NpmSpec(range_expr.strip())
    except ValueError:
        logger.debug(f"Unparsable npm range: {range_expr!r}")
        return None
    return candidate in spec


def is_version_affected(version: str, affected: list[AffectedPackage] | None) -> bool:
    """Check a version against an affected-version descriptor.

    Missing data fails open: no descriptor, an entry with no ranges, explicit
    versions or npm range, a range without events, or an npm range that
    cannot be parsed all count as affected. Unparsable candidate versions
    are never affected.

    Args:
        version: Candidate version string.
        affected: Affected-version descriptor of a vulnerability record.

    Returns:
        True if the version is (or must be assumed to be) affected.
    """
    candidate = coerce_version(version)
    if candidate is None:
        return False

    if not affected:
        return True

    for entry in affected:
        for listed in entry.versions:
            exact = coerce_version(listed)
            if exact is not None and exact == candidate:
                return True

        if entry.vulnerable_range:
            matched = in_npm_range(candidate, entry.vulnerable_range)
            if matched is None or matched:
                return True

        if not entry.ranges:
            if not entry.versions and not entry.vulnerable_range:
                return True
            continue

        for rng in entry.ranges:
            if not rng.events:
                return True
            if _range_contains(rng, candidate):
                return True

    return False


def affects(vulnerability: ProcessedVulnerability, version: str) -> bool:
    """Return True if the vulnerability affects the given version."""
    return is_version_affected(version, vulnerability.affected_versions)


def _range_contains(rng: AffectedRange, candidate: Version) -> bool:
    """Walk ordered range events and test the candidate against each interval."""
    if rng.type.upper() == "GIT":
        # Events are commit hashes, not versions.
        logger.debug("Skipping GIT range while matching versions")
        return False

    introduced: Version | None = None
    for event in rng.events:
        if event.introduced is not None:
            if event.introduced == "0":
                introduced = ZERO
            else:
                introduced = coerce_version(event.introduced) or ZERO

        closing = event.fixed if event.fixed is not None else event.last_affected
        if closing is None or introduced is None:
            continue

        upper = coerce_version(closing)
        if upper is None:
            logger.debug(f"Skipping malformed range bound: {closing!r}")
            continue

        if event.fixed is not None:
            if introduced <= candidate < upper:
                return True
        elif introduced <= candidate <= upper:
            return True
        introduced = None

    # Interval opened but never closed: affected from introduced onwards.
    return introduced is not None and candidate >= introduced
