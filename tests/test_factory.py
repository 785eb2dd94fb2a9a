"""Tests for auth/factory.py -- backend selection and first-run seeding."""

from auth.factory import create_adapter, create_manager
from auth.store import SqlStore
from auth.xml_store import XmlStore
from core.config import Settings


def _settings(tmp_path, **overrides):
    values = {
        "database_url": f"sqlite:///{tmp_path / 'f.db'}",
        "xml_path": str(tmp_path / "f.xml"),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_sql_backend(tmp_path):
    adapter = create_adapter(_settings(tmp_path, storage_backend="sql"))
    assert isinstance(adapter, SqlStore)
    adapter.close()


def test_xml_backend(tmp_path):
    adapter = create_adapter(_settings(tmp_path, storage_backend="xml"))
    assert isinstance(adapter, XmlStore)
    assert (tmp_path / "f.xml").exists()


def test_manager_without_bootstrap_password(tmp_path):
    manager = create_manager(_settings(tmp_path))
    assert manager.list_users() == []
    manager.close()


def test_manager_bootstraps_admin(tmp_path):
    settings = _settings(tmp_path, bootstrap_admin_password="changeme", bootstrap_admin_role="admins")
    manager = create_manager(settings)
    user = manager.check_credentials("root", "changeme")
    assert {r.name for r in user.roles} == {"admins"}
    manager.close()

    again = create_manager(settings)
    assert len(again.list_users()) == 1
    again.close()
