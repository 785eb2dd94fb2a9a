"""
auth/xml_store.py -- Single-file XML persistence adapter for users and roles.

Satisfies auth.adapter.StorageAdapter with the whole store kept in one XML
document, loaded in memory on open() and rewritten in full after every
mutation:

    <?xml version='1.0' encoding='utf-8'?>
    <SecurityDatabase>
      <Users nextId="2">
        <User id="1" login="root" password="..." connectionNumber="0"
              lastConnection="" consecutiveErrors="0" isDisabled="false"
              firstName="root" lastName="administrator" email="">
          <RoleRef id="1" />
        </User>
      </Users>
      <Roles nextId="2">
        <Role id="1" roleName="admin" />
      </Roles>
    </SecurityDatabase>

Lookups never build path expressions from caller text: elements are scanned
and attributes compared in Python, so a login containing quotes or brackets
is just data.

Identifiers come from the nextId counters, advanced under the adapter lock
and persisted with the document. A document without counters (written by an
older tool) gets them seeded once from its existing ids when it is opened.

Concurrency: one RLock serialises every read-modify-write within the
process. The file itself assumes a single writer process; there is no
cross-process locking. Each save writes a sibling temporary file and
renames it over the original, so an interrupted save leaves the previous
version intact instead of a truncated document.
Every mutation starts from a snapshot of the in-memory document and puts
it back if the save fails, so memory and file never disagree.

Text that XML 1.0 cannot carry (control characters such as U+0001) is
refused with SecurityError before anything changes; written out, it would
make the whole file unreadable on the next open.

Timestamps are ISO 8601 (UTC). Legacy numeric values (epoch milliseconds)
are still read; "0" and "" mean "never connected".

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import copy
import logging
import os
import re
import tempfile
import threading
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from auth.errors import RoleAlreadyRegistered, SecurityError, UserAlreadyRegistered
from auth.models import Role, User

logger = logging.getLogger("gatehouse.xml_store")

_DEFAULT_XML_PATH = Path(__file__).parent / "security.xml"

# Characters outside the XML 1.0 Char production; a document holding one
# cannot be parsed back.
_NON_XML_CHAR = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

_ROOT = "SecurityDatabase"
_USERS = "Users"
_ROLES = "Roles"


# ---------------------------------------------------------------------------
# Attribute codecs
# ---------------------------------------------------------------------------


def _format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_timestamp(raw: str) -> datetime | None:
    if not raw or raw == "0":
        return None
    if raw.isdigit():
        return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)
    return datetime.fromisoformat(raw)


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() == "true"


def _check_text(field: str, value: str) -> None:
    """Refuse text that an XML 1.0 document cannot carry."""
    if _NON_XML_CHAR.search(value):
        raise SecurityError(f"{field} contains a character the XML security database cannot store")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class XmlStore:
    """Document StorageAdapter backed by one XML file.

    Usage:
        store = XmlStore("security.xml")    # created empty if missing
        role = store.insert_role("admin")
        store.close()
    """

    def __init__(self, path: str | Path = _DEFAULT_XML_PATH) -> None:
        self.path = Path(path)
        self._root: ET.Element | None = None
        self._lock = threading.RLock()
        self.open()

    def open(self) -> None:
        with self._lock:
            if self._root is not None:
                return
            try:
                if self.path.exists():
                    root = ET.parse(self.path).getroot()
                else:
                    root = ET.Element(_ROOT)
                self._root = root
                self._ensure_layout()
                if not self.path.exists():
                    self._save()
            except (ET.ParseError, OSError, ValueError) as exc:
                self._root = None
                raise SecurityError(f"Cannot open XML security database {self.path}", exc) from exc
            logger.info("XML security database opened (%s)", self.path)

    def close(self) -> None:
        with self._lock:
            self._root = None

    def _ensure_layout(self) -> None:
        """Create missing containers and seed missing id counters."""
        root = self._root
        if root.tag != _ROOT:
            raise ValueError(f"unexpected root element <{root.tag}>")
        for tag, child in ((_USERS, "User"), (_ROLES, "Role")):
            container = root.find(tag)
            if container is None:
                container = ET.SubElement(root, tag)
            if container.get("nextId") is None:
                ids = [int(el.get("id", "0")) for el in container.findall(child)]
                container.set("nextId", str(max(ids, default=0) + 1))

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    @contextmanager
    def _guard(self, action: str) -> Iterator[ET.Element]:
        """Hold the lock, yield the document root, map malformed data to SecurityError."""
        with self._lock:
            if self._root is None:
                raise SecurityError(f"Cannot {action}: XML security database is closed")
            try:
                yield self._root
            except (KeyError, ValueError, TypeError, OSError) as exc:
                raise SecurityError(f"Cannot {action}", exc) from exc

    @contextmanager
    def _mutation(self, action: str) -> Iterator[ET.Element]:
        """Like _guard, but put the previous document back if the body fails.

        A save that raises leaves neither the change nor an advanced nextId
        counter behind in memory.
        """
        with self._guard(action) as root:
            snapshot = copy.deepcopy(root)
            try:
                yield root
            except BaseException:
                self._root = snapshot
                raise

    def _save(self) -> None:
        """Rewrite the whole document through a temp file and an atomic rename."""
        tree = ET.ElementTree(self._root)
        ET.indent(tree, space="    ")
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "wb") as fh:
                tree.write(fh, encoding="utf-8", xml_declaration=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _allocate_id(container: ET.Element) -> int:
        next_id = int(container.get("nextId", "1"))
        container.set("nextId", str(next_id + 1))
        return next_id

    # ------------------------------------------------------------------
    # Element lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _user_elements(root: ET.Element) -> list[ET.Element]:
        return root.find(_USERS).findall("User")

    @staticmethod
    def _role_elements(root: ET.Element) -> list[ET.Element]:
        return root.find(_ROLES).findall("Role")

    def _first_user(self, root: ET.Element, match: Callable[[ET.Element], bool]) -> ET.Element | None:
        return next((el for el in self._user_elements(root) if match(el)), None)

    def _first_role(self, root: ET.Element, match: Callable[[ET.Element], bool]) -> ET.Element | None:
        return next((el for el in self._role_elements(root) if match(el)), None)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def find_user_by_credentials(self, login: str, encoded_password: str) -> User | None:
        with self._guard("check credentials") as root:
            el = self._first_user(
                root, lambda e: e.get("login") == login and e.get("password") == encoded_password
            )
            return self._element_to_user(root, el) if el is not None else None

    def find_user_by_login(self, login: str) -> User | None:
        with self._guard("select user by login") as root:
            el = self._first_user(root, lambda e: e.get("login") == login)
            return self._element_to_user(root, el) if el is not None else None

    def find_user_by_id(self, user_id: int) -> User | None:
        with self._guard("select user by identifier") as root:
            el = self._first_user(root, lambda e: int(e.get("id")) == user_id)
            return self._element_to_user(root, el) if el is not None else None

    def list_users(self) -> list[User]:
        with self._guard("list users") as root:
            users = [self._element_to_user(root, el) for el in self._user_elements(root)]
        return sorted(users, key=lambda u: u.login)

    def list_users_by_role(self, role_id: int) -> list[User]:
        with self._guard("list users by role") as root:
            users = [
                self._element_to_user(root, el)
                for el in self._user_elements(root)
                if any(int(ref.get("id")) == role_id for ref in el.findall("RoleRef"))
            ]
        # A dangling reference to a deleted role does not make its holder a member.
        return sorted((u for u in users if any(r.id == role_id for r in u.roles)), key=lambda u: u.login)

    def insert_user(self, login: str, encoded_password: str) -> User:
        _check_text("login", login)
        _check_text("password", encoded_password)
        with self._mutation("insert user") as root:
            if self._first_user(root, lambda e: e.get("login") == login) is not None:
                raise UserAlreadyRegistered(f"User login {login!r} already registered")
            container = root.find(_USERS)
            user = User(id=self._allocate_id(container), login=login, encoded_password=encoded_password)
            el = ET.SubElement(container, "User")
            self._write_scalars(el, user)
            self._save()
            return user

    def update_user_scalars(self, user: User) -> bool:
        for field in ("login", "encoded_password", "first_name", "last_name", "email"):
            _check_text(field, getattr(user, field))
        with self._mutation("update user") as root:
            el = self._first_user(root, lambda e: int(e.get("id")) == user.id)
            if el is None:
                return False
            holder = self._first_user(root, lambda e: e.get("login") == user.login)
            if holder is not None and holder is not el:
                raise UserAlreadyRegistered(f"User login {user.login!r} already registered")
            self._write_scalars(el, user)
            self._save()
            return True

    def replace_user_roles(self, user_id: int, role_ids: list[int]) -> None:
        with self._mutation("update user roles") as root:
            el = self._first_user(root, lambda e: int(e.get("id")) == user_id)
            if el is None:
                raise SecurityError(f"User identifier {user_id} not found in XML security database")
            for ref in el.findall("RoleRef"):
                el.remove(ref)
            for role_id in sorted(set(role_ids)):
                ET.SubElement(el, "RoleRef", id=str(role_id))
            self._save()

    def delete_user(self, user_id: int) -> bool:
        with self._mutation("delete user") as root:
            el = self._first_user(root, lambda e: int(e.get("id")) == user_id)
            if el is None:
                return False
            root.find(_USERS).remove(el)
            self._save()
            return True

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def find_role_by_id(self, role_id: int) -> Role | None:
        with self._guard("select role by identifier") as root:
            el = self._first_role(root, lambda e: int(e.get("id")) == role_id)
            return _element_to_role(el) if el is not None else None

    def find_role_by_name(self, name: str) -> Role | None:
        with self._guard("select role by name") as root:
            el = self._first_role(root, lambda e: e.get("roleName") == name)
            return _element_to_role(el) if el is not None else None

    def list_roles(self) -> list[Role]:
        with self._guard("list roles") as root:
            roles = [_element_to_role(el) for el in self._role_elements(root)]
        return sorted(roles, key=lambda r: r.name)

    def insert_role(self, name: str) -> Role:
        _check_text("role name", name)
        with self._mutation("insert role") as root:
            if self._first_role(root, lambda e: e.get("roleName") == name) is not None:
                raise RoleAlreadyRegistered(f"Role name {name!r} already registered")
            container = root.find(_ROLES)
            role = Role(id=self._allocate_id(container), name=name)
            ET.SubElement(container, "Role", id=str(role.id), roleName=name)
            self._save()
            return role

    def update_role(self, role: Role) -> bool:
        _check_text("role name", role.name)
        with self._mutation("update role") as root:
            el = self._first_role(root, lambda e: int(e.get("id")) == role.id)
            if el is None:
                return False
            holder = self._first_role(root, lambda e: e.get("roleName") == role.name)
            if holder is not None and holder is not el:
                raise RoleAlreadyRegistered(f"Role name {role.name!r} already registered")
            el.set("roleName", role.name)
            self._save()
            return True

    def delete_role(self, role_id: int) -> bool:
        """Remove the Role element only; RoleRef elements under users are left alone."""
        with self._mutation("delete role") as root:
            el = self._first_role(root, lambda e: int(e.get("id")) == role_id)
            if el is None:
                return False
            root.find(_ROLES).remove(el)
            self._save()
            return True

    # ------------------------------------------------------------------
    # Mappers
    # ------------------------------------------------------------------

    @staticmethod
    def _write_scalars(el: ET.Element, user: User) -> None:
        el.set("id", str(user.id))
        el.set("login", user.login)
        el.set("password", user.encoded_password)
        el.set("connectionNumber", str(user.connection_count))
        el.set("lastConnection", _format_timestamp(user.last_connection))
        el.set("consecutiveErrors", str(user.consecutive_errors))
        el.set("isDisabled", "true" if user.disabled else "false")
        el.set("firstName", user.first_name)
        el.set("lastName", user.last_name)
        el.set("email", user.email)

    def _element_to_user(self, root: ET.Element, el: ET.Element) -> User:
        roles = {r.id: r for r in map(_element_to_role, self._role_elements(root))}
        user = User(
            id=int(el.attrib["id"]),
            login=el.attrib["login"],
            encoded_password=el.attrib["password"],
            connection_count=int(el.get("connectionNumber", "0")),
            last_connection=_parse_timestamp(el.get("lastConnection", "")),
            consecutive_errors=int(el.get("consecutiveErrors", "0")),
            disabled=_parse_bool(el.get("isDisabled", "false")),
            first_name=el.get("firstName", ""),
            last_name=el.get("lastName", ""),
            email=el.get("email", ""),
        )
        for ref in el.findall("RoleRef"):
            role = roles.get(int(ref.get("id")))
            if role is not None:
                user.add_role(role)
        return user


def _element_to_role(el: ET.Element) -> Role:
    return Role(id=int(el.attrib["id"]), name=el.attrib["roleName"])
