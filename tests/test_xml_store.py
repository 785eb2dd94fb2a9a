"""Unit tests for auth/xml_store.py -- the single-file XML adapter.

Covers:
- a missing file is created with the expected skeleton
- attribute layout of users, role references and roles
- identifiers come from persisted nextId counters and are never reused
- legacy documents: counters seeded from existing ids, epoch-ms timestamps
- special characters in logins survive a save/reload
- unreadable or foreign documents raise SecurityError
- saves leave no temporary files behind
"""

import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import pytest

from auth.errors import SecurityError, UserAlreadyRegistered
from auth.hasher import encode_password
from auth.manager import SecurityManager
from auth.xml_store import XmlStore


def _read(path):
    return ET.parse(path).getroot()


def test_missing_file_is_created(tmp_path):
    path = tmp_path / "sub" / "security.xml"
    XmlStore(path)
    root = _read(path)
    assert root.tag == "SecurityDatabase"
    assert root.find("Users").get("nextId") == "1"
    assert root.find("Roles").get("nextId") == "1"


def test_document_layout(xml_store):
    manager = SecurityManager(xml_store)
    alice = manager.insert_user("alice", "secret")
    alice.first_name = "Alice"
    alice.add_role(manager.insert_role("admin"))
    manager.update_user(alice)

    root = _read(xml_store.path)
    user_el = root.find("Users/User")
    assert user_el.get("id") == str(alice.id)
    assert user_el.get("login") == "alice"
    assert user_el.get("password") == encode_password("secret")
    assert user_el.get("connectionNumber") == "0"
    assert user_el.get("lastConnection") == ""
    assert user_el.get("consecutiveErrors") == "0"
    assert user_el.get("isDisabled") == "false"
    assert user_el.get("firstName") == "Alice"
    assert [ref.get("id") for ref in user_el.findall("RoleRef")] == ["1"]
    role_el = root.find("Roles/Role")
    assert role_el.get("roleName") == "admin"
    assert root.find("Users").get("nextId") == "2"


def test_last_connection_written_as_iso(xml_store):
    manager = SecurityManager(xml_store)
    manager.insert_user("alice", "secret")
    manager.check_credentials("alice", "secret")
    raw = _read(xml_store.path).find("Users/User").get("lastConnection")
    assert datetime.fromisoformat(raw).tzinfo is not None


def test_ids_not_reused_after_delete(xml_store):
    first = xml_store.insert_user("a", encode_password("pw"))
    xml_store.delete_user(first.id)
    second = xml_store.insert_user("b", encode_password("pw"))
    assert second.id == first.id + 1


def test_reopen_keeps_data_and_counters(tmp_path):
    path = tmp_path / "security.xml"
    store = XmlStore(path)
    store.insert_user("alice", encode_password("pw"))
    store.insert_role("admin")
    store.close()

    reopened = XmlStore(path)
    assert reopened.find_user_by_login("alice") is not None
    assert reopened.insert_role("ops").id == 2


def test_legacy_document_without_counters(tmp_path):
    path = tmp_path / "legacy.xml"
    path.write_text(
        "<SecurityDatabase>"
        "<Users>"
        '<User id="7" login="root" password="{pw}" connectionNumber="12"'
        ' lastConnection="1700000000000" consecutiveErrors="1" isDisabled="false"'
        ' firstName="root" lastName="administrator" email="">'
        '<RoleRef id="3"/>'
        "</User>"
        "</Users>"
        '<Roles><Role id="3" roleName="admin"/></Roles>'
        "</SecurityDatabase>".format(pw=encode_password("root")),
        encoding="utf-8",
    )
    store = XmlStore(path)
    root = store.find_user_by_login("root")
    assert root.connection_count == 12
    assert root.last_connection == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert {r.name for r in root.roles} == {"admin"}
    assert store.insert_user("alice", encode_password("pw")).id == 8
    assert store.insert_role("ops").id == 4


def test_zero_timestamp_means_never(tmp_path):
    path = tmp_path / "legacy.xml"
    path.write_text(
        '<SecurityDatabase><Users nextId="2">'
        '<User id="1" login="u" password="x" lastConnection="0"/>'
        '</Users><Roles nextId="1"/></SecurityDatabase>',
        encoding="utf-8",
    )
    user = XmlStore(path).find_user_by_id(1)
    assert user.last_connection is None
    assert user.disabled is False


@pytest.mark.parametrize("login", ["o'brien", 'say "hi"', "a<b>&c", "name with spaces", "ünïcödé"])
def test_special_character_logins(tmp_path, login):
    path = tmp_path / "security.xml"
    store = XmlStore(path)
    store.insert_user(login, encode_password("pw"))
    store.close()

    reopened = XmlStore(path)
    assert reopened.find_user_by_credentials(login, encode_password("pw")).login == login
    with pytest.raises(UserAlreadyRegistered):
        reopened.insert_user(login, encode_password("other"))


def test_malformed_document_raises(tmp_path):
    path = tmp_path / "broken.xml"
    path.write_text("<SecurityDatabase><Users>", encoding="utf-8")
    with pytest.raises(SecurityError) as info:
        XmlStore(path)
    assert info.value.cause is not None


def test_foreign_root_element_raises(tmp_path):
    path = tmp_path / "other.xml"
    path.write_text("<Inventory/>", encoding="utf-8")
    with pytest.raises(SecurityError):
        XmlStore(path)


def test_corrupt_user_element_raises_on_read(tmp_path):
    path = tmp_path / "corrupt.xml"
    path.write_text(
        '<SecurityDatabase><Users nextId="2">'
        '<User id="1" login="u" password="x" connectionNumber="lots"/>'
        '</Users><Roles nextId="1"/></SecurityDatabase>',
        encoding="utf-8",
    )
    store = XmlStore(path)
    with pytest.raises(SecurityError):
        store.find_user_by_login("u")


def test_saves_leave_no_temp_files(xml_store):
    for i in range(3):
        xml_store.insert_role(f"role{i}")
    assert [p.name for p in xml_store.path.parent.iterdir()] == [xml_store.path.name]


def test_closed_store_raises(xml_store):
    xml_store.close()
    with pytest.raises(SecurityError, match="closed"):
        xml_store.list_users()


@pytest.mark.parametrize("login", ["bad\x01login", "nul\x00", "esc\x1b[0m", "lone\ud800surrogate"])
def test_unstorable_login_is_refused(tmp_path, login):
    path = tmp_path / "security.xml"
    store = XmlStore(path)
    with pytest.raises(SecurityError, match="cannot store"):
        store.insert_user(login, encode_password("pw"))
    store.insert_user("alice", encode_password("pw"))
    store.close()

    reopened = XmlStore(path)
    assert [u.login for u in reopened.list_users()] == ["alice"]
    assert reopened.insert_user("bob", encode_password("pw")).id == 2


def test_control_characters_refused_on_update(xml_store):
    manager = SecurityManager(xml_store)
    alice = manager.insert_user("alice", "secret")
    alice.email = "alice\x07@example.com"
    with pytest.raises(SecurityError):
        manager.update_user(alice)
    assert manager.get_user_by_id(alice.id).email == ""

    role = manager.insert_role("admin")
    role.name = "ad\x0bmin"
    with pytest.raises(SecurityError):
        xml_store.update_role(role)
    assert XmlStore(xml_store.path).find_role_by_id(role.id).name == "admin"


def test_tab_in_login_survives_reload(xml_store):
    xml_store.insert_user("tab\there", encode_password("pw"))
    xml_store.close()
    reopened = XmlStore(xml_store.path)
    assert reopened.find_user_by_login("tab\there") is not None


class TestFailedSave:
    """A save that cannot reach the disk leaves the in-memory store as it was."""

    @pytest.fixture
    def disk_full(self, monkeypatch):
        """Call the returned function to make every later save fail."""

        def fail(src, dst):
            raise OSError(28, "No space left on device")

        return lambda: monkeypatch.setattr("auth.xml_store.os.replace", fail)

    def test_insert_user_rolled_back(self, xml_store, disk_full, monkeypatch):
        xml_store.insert_user("alice", encode_password("pw"))
        disk_full()
        with pytest.raises(SecurityError) as info:
            xml_store.insert_user("bob", encode_password("pw"))
        assert isinstance(info.value.cause, OSError)
        assert xml_store.find_user_by_login("bob") is None

        monkeypatch.undo()
        assert xml_store.insert_user("carol", encode_password("pw")).id == 2
        assert [u.login for u in XmlStore(xml_store.path).list_users()] == ["alice", "carol"]

    def test_update_rolled_back(self, xml_store, disk_full):
        manager = SecurityManager(xml_store)
        alice = manager.insert_user("alice", "secret")
        disk_full()
        alice.consecutive_errors = 2
        with pytest.raises(SecurityError):
            xml_store.update_user_scalars(alice)
        assert xml_store.find_user_by_id(alice.id).consecutive_errors == 0

    def test_delete_and_role_changes_rolled_back(self, xml_store, disk_full):
        alice = xml_store.insert_user("alice", encode_password("pw"))
        admin = xml_store.insert_role("admin")
        xml_store.replace_user_roles(alice.id, [admin.id])
        disk_full()
        with pytest.raises(SecurityError):
            xml_store.delete_role(admin.id)
        with pytest.raises(SecurityError):
            xml_store.replace_user_roles(alice.id, [])
        with pytest.raises(SecurityError):
            xml_store.delete_user(alice.id)
        with pytest.raises(SecurityError):
            xml_store.insert_role("ops")
        user = xml_store.find_user_by_id(alice.id)
        assert {r.name for r in user.roles} == {"admin"}
        assert [r.name for r in xml_store.list_roles()] == ["admin"]
        assert _read(xml_store.path).find("Roles").get("nextId") == "2"

    def test_no_temp_file_left_after_failure(self, xml_store, disk_full):
        disk_full()
        with pytest.raises(SecurityError):
            xml_store.insert_role("ops")
        assert [p.name for p in xml_store.path.parent.iterdir()] == [xml_store.path.name]
