"""
auth/adapter.py -- Storage contract consumed by the engine and the manager.

Pattern: Port (typing.Protocol). The engine and SecurityManager depend only
on this structural interface; auth/store.py (SQLAlchemy) and
auth/xml_store.py (single XML document) both satisfy it without inheriting
from anything.

Contract every adapter must honour:

  Lookups (find_*) return None only when the record genuinely does not
  exist. A lookup that cannot complete -- lost connection, malformed row,
  unreadable file -- raises SecurityError with the cause chained. Absence
  and failure are never conflated.

  insert_user / insert_role allocate identifiers atomically (autoincrement
  key, or a persisted counter advanced under the adapter lock). "Read the
  current maximum and add one" races between writers and is not allowed.

  insert_* and the rename paths of update_* enforce uniqueness themselves,
  serialising the check-then-act sequence, and raise UserAlreadyRegistered /
  RoleAlreadyRegistered. The manager also checks first, but only the adapter
  can make the check atomic.

  Caller-supplied text (logins, role names, passwords) is never spliced into
  a query string: bound parameters for SQL, attribute comparison in Python
  for documents.

  locked() holds the adapter lock across several calls, so a caller can
  run a read-modify-write sequence (one authentication attempt) as one
  unit. The lock is reentrant: the single calls made inside still work.

  replace_user_roles deletes every association of the user, then inserts
  the given set. Concurrent role edits of the same user are last-write-wins.

  delete_role does not touch users. Loaders return only roles that still
  exist, so a dangling association is invisible to callers.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Protocol

from auth.models import Role, User


class StorageAdapter(Protocol):
    """Persistence contract for users, roles, and their associations."""

    def open(self) -> None:
        """Acquire the underlying connection / load the document."""

    def close(self) -> None:
        """Release the underlying connection. Safe to call twice."""

    def locked(self) -> AbstractContextManager[None]:
        """Hold the adapter lock until exit; other threads' writes and locked() callers wait."""

    # -- users ---------------------------------------------------------

    def find_user_by_credentials(self, login: str, encoded_password: str) -> User | None:
        """Return the user holding both this login and this hash token."""

    def find_user_by_login(self, login: str) -> User | None:
        """Return the user with this exact (case-sensitive) login."""

    def find_user_by_id(self, user_id: int) -> User | None:
        """Return the user with this identifier."""

    def list_users(self) -> list[User]:
        """Return every user ordered by login."""

    def list_users_by_role(self, role_id: int) -> list[User]:
        """Return every user holding the role, ordered by login."""

    def insert_user(self, login: str, encoded_password: str) -> User:
        """Create a user with zeroed counters and a fresh identifier."""

    def update_user_scalars(self, user: User) -> bool:
        """Persist every scalar field of the user (not its roles). False if it did not exist."""

    def replace_user_roles(self, user_id: int, role_ids: list[int]) -> None:
        """Replace the user's whole role-association set."""

    def delete_user(self, user_id: int) -> bool:
        """Delete the user and its associations. False if it did not exist."""

    # -- roles ---------------------------------------------------------

    def find_role_by_id(self, role_id: int) -> Role | None:
        """Return the role with this identifier."""

    def find_role_by_name(self, name: str) -> Role | None:
        """Return the role with this exact name."""

    def list_roles(self) -> list[Role]:
        """Return every role ordered by name."""

    def insert_role(self, name: str) -> Role:
        """Create a role with a fresh identifier."""

    def update_role(self, role: Role) -> bool:
        """Persist the role's name. False if it did not exist."""

    def delete_role(self, role_id: int) -> bool:
        """Delete the role. False if it did not exist."""
