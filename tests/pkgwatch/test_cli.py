import json

from typer.testing import CliRunner

from pkgwatch import __version__
from pkgwatch.cli import app
from pkgwatch.models.schemas import (
    AffectedPackage,
    CommitCheck,
    ProcessedVulnerability,
    RefreshResult,
)

runner = CliRunner()


def _commits(n=10):
    history = [
        {
            "sha": f"{i:040d}",
            "author": "Dev",
            "author_email": "dev@example.com",
            "message": "Routine change",
            "timestamp": "2024-06-03T10:00:00Z",
            "lines_added": 10,
            "lines_deleted": 5,
            "files_changed": 2 + i % 2,
            "diff_summary": ["src/a.js"],
        }
        for i in range(n)
    ]
    history.append(
        {
            "sha": "f" * 40,
            "author": "Dev",
            "author_email": "dev@example.com",
            "message": "Routine change",
            "timestamp": "2024-06-03T10:00:00Z",
            "lines_added": 10,
            "lines_deleted": 5,
            "files_changed": 40,
            "diff_summary": ["src/a.js"],
        }
    )
    return history


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_score_builds_baselines_from_commit_file(tmp_path):
    commits_file = tmp_path / "commits.json"
    commits_file.write_text(json.dumps(_commits()))
    output = tmp_path / "anomalies.json"

    result = runner.invoke(app, ["score", str(commits_file), "--output", str(output)])

    assert result.exit_code == 0, result.stdout
    saved = json.loads(output.read_text())
    assert [a["commit_sha"] for a in saved] == ["f" * 40]
    assert saved[0]["breakdown"][0]["factor"] == "files_changed"


def test_score_with_profile_file_and_min_score(tmp_path):
    commits_file = tmp_path / "commits.json"
    commits_file.write_text(json.dumps(_commits(0)))
    profiles_file = tmp_path / "profiles.json"
    profiles_file.write_text(
        json.dumps([{"author_email": "DEV@example.com", "total_commits": 2}])
    )

    result = runner.invoke(
        app,
        ["score", str(commits_file), "--profiles", str(profiles_file), "--min-score", "5"],
    )

    assert result.exit_code == 0, result.stdout
    assert "No commits scored 5 or more" in result.stdout


def test_score_rejects_invalid_input(tmp_path):
    commits_file = tmp_path / "commits.json"
    commits_file.write_text(json.dumps([{"sha": "x"}]))

    result = runner.invoke(app, ["score", str(commits_file)])
    assert result.exit_code == 1
    assert "Could not load input" in result.stdout


def test_head_rejects_unsupported_url():
    result = runner.invoke(app, ["head", "https://example.com/o/r"])
    assert result.exit_code == 1
    assert "Unsupported repository URL" in result.stdout


def test_head_shows_remote_state(monkeypatch):
    async def fake_check(self, clone_url, last_known_sha):
        return CommitCheck(has_changes=True, current_sha="c" * 40, branch="main")

    monkeypatch.setattr("pkgwatch.cli.RemoteChecker.has_new_commits", fake_check)
    result = runner.invoke(app, ["head", "github:o/r"])

    assert result.exit_code == 0, result.stdout
    assert "c" * 40 in result.stdout
    assert "main" in result.stdout


def test_vulns_writes_refresh_result(monkeypatch, tmp_path):
    seen = {}

    async def fake_refresh(self, package_name, last_known_version, known_ids):
        seen["args"] = (package_name, last_known_version, known_ids)
        seen["npm"] = self.include_npm_advisories
        vuln = ProcessedVulnerability(osv_id="GHSA-1", summary="Bad thing")
        return RefreshResult(
            new_vulnerabilities=[vuln], all_vulnerabilities=[vuln], latest_version="2.0.0"
        )

    monkeypatch.setattr(
        "pkgwatch.analyzers.aggregator.VulnerabilityAggregator.refresh", fake_refresh
    )
    output = tmp_path / "vulns.json"
    result = runner.invoke(
        app,
        ["vulns", "lodash", "--known-id", "GHSA-0", "--npm-advisories", "-o", str(output)],
    )

    assert result.exit_code == 0, result.stdout
    assert seen["args"] == ("lodash", None, {"GHSA-0"})
    assert seen["npm"] is True
    assert json.loads(output.read_text())["latest_version"] == "2.0.0"


def test_affects_lists_matching_vulnerabilities(monkeypatch):
    async def fake_refresh(self, package_name, last_known_version, known_ids):
        return RefreshResult(
            all_vulnerabilities=[
                ProcessedVulnerability(
                    osv_id="GHSA-fixed",
                    affected_versions=[AffectedPackage(vulnerable_range="<1.0.0")],
                    fixed_versions=["1.0.0"],
                ),
                ProcessedVulnerability(osv_id="GHSA-open"),
            ]
        )

    monkeypatch.setattr(
        "pkgwatch.analyzers.aggregator.VulnerabilityAggregator.refresh", fake_refresh
    )
    result = runner.invoke(app, ["affects", "lodash", "1.5.0"])

    assert result.exit_code == 0, result.stdout
    assert "affected by 1 of 2" in result.stdout
