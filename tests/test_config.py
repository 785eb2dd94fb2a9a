"""Unit tests for core/config.py -- Settings validation.

Settings() is constructed directly (not through get_settings()) so each test
sees only the environment it sets up with monkeypatch.
"""

import pytest
from pydantic import ValidationError

from api.main import app
from core.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (("STORAGE_BACKEND", "DATABASE_URL", "XML_PATH", "ADMIN_API_KEY", "LOG_LEVEL", "DEBUG")):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.storage_backend == "sql"
    assert settings.database_url.startswith("sqlite:///")
    assert settings.xml_path.endswith("security.xml")
    assert settings.bootstrap_admin_login == "root"
    assert settings.bootstrap_admin_password == ""
    assert settings.check_rate_limit == "10/minute"


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("STORAGE_BACKEND", "xml")
    monkeypatch.setenv("XML_PATH", str(tmp_path / "s.xml"))
    settings = Settings(_env_file=None)
    assert settings.storage_backend == "xml"
    assert settings.xml_path == str(tmp_path / "s.xml")


def test_unknown_backend_rejected(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "ldap")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_short_admin_key_rejected(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "too-short")
    with pytest.raises(ValidationError, match="ADMIN_API_KEY"):
        Settings(_env_file=None)


def test_long_admin_key_accepted(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "a" * 32)
    assert Settings(_env_file=None).admin_api_key == "a" * 32


def test_empty_xml_path_rejected(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "xml")
    monkeypatch.setenv("XML_PATH", " ")
    with pytest.raises(ValidationError, match="XML_PATH"):
        Settings(_env_file=None)


def test_log_level_normalised(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert Settings(_env_file=None).log_level == "DEBUG"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_debug_forces_debug_logging(monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("LOG_LEVEL", "warning")
    settings = Settings(_env_file=None)
    assert settings.debug is True
    assert settings.log_level == "DEBUG"


def test_app_debug_follows_settings():
    assert app.debug is get_settings().debug
