from datetime import datetime, timezone

import pytest

from pkgwatch.models.schemas import CommitDetails, ContributorProfile


@pytest.fixture
def make_commit():
    """Build a commit that scores zero against the default profile."""

    def _make(**overrides) -> CommitDetails:
        data = {
            "sha": "a" * 40,
            "author": "Dev",
            "author_email": "dev@example.com",
            "message": "Fix typo in readme",
            "timestamp": datetime(2024, 6, 3, 10, 0, tzinfo=timezone.utc),
            "lines_added": 5,
            "lines_deleted": 2,
            "files_changed": 1,
        }
        data.update(overrides)
        return CommitDetails(**data)

    return _make


@pytest.fixture
def make_profile():
    """Build an established contributor profile with no usable baseline."""

    def _make(**overrides) -> ContributorProfile:
        data = {
            "author_email": "dev@example.com",
            "author_name": "Dev",
            "total_commits": 50,
        }
        data.update(overrides)
        return ContributorProfile(**data)

    return _make
