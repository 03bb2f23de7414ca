import pytest

from pkgwatch import config


def _clear_tokens(monkeypatch):
    for name in config.TOKEN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_token_precedence(monkeypatch):
    _clear_tokens(monkeypatch)
    assert config.github_token_from_env() is None

    monkeypatch.setenv("GITHUB_PAT", "pat")
    assert config.github_token_from_env() == "pat"

    monkeypatch.setenv("GITHUB_TOKEN", "primary")
    assert config.github_token_from_env() == "primary"


def test_blank_token_is_ignored(monkeypatch):
    _clear_tokens(monkeypatch)
    monkeypatch.setenv("GITHUB_TOKEN", "  ")
    monkeypatch.setenv("GH_TOKEN", "gh")
    assert config.github_token_from_env() == "gh"


def test_settings_defaults(monkeypatch):
    _clear_tokens(monkeypatch)
    for name in ("PKGWATCH_LOG_LEVEL", "PKGWATCH_HTTP_TIMEOUT", "PKGWATCH_NPM_ADVISORIES"):
        monkeypatch.delenv(name, raising=False)

    settings = config.Settings.from_env()
    assert settings.github_token is None
    assert settings.log_level == "INFO"
    assert settings.http_timeout == config.HTTP_TIMEOUT_SECONDS
    assert settings.include_npm_advisories is False


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "tok")
    monkeypatch.setenv("PKGWATCH_LOG_LEVEL", "debug")
    monkeypatch.setenv("PKGWATCH_HTTP_TIMEOUT", "12.5")
    monkeypatch.setenv("PKGWATCH_NPM_ADVISORIES", "true")

    settings = config.Settings.from_env()
    assert settings.github_token == "tok"
    assert settings.log_level == "DEBUG"
    assert settings.http_timeout == 12.5
    assert settings.include_npm_advisories is True


@pytest.mark.parametrize("raw", ["soon", "-5", "0"])
def test_invalid_timeout_falls_back_to_default(monkeypatch, caplog, raw):
    monkeypatch.setenv("PKGWATCH_HTTP_TIMEOUT", raw)
    settings = config.Settings.from_env()
    assert settings.http_timeout == config.HTTP_TIMEOUT_SECONDS
    assert "PKGWATCH_HTTP_TIMEOUT" in caplog.text
