"""
auth/manager.py -- User and role management on top of a StorageAdapter.

SecurityManager is the single entry point callers use: it owns the adapter's
session (open/close, context manager), runs credential checks through
auth.engine, and wraps every CRUD operation with the uniqueness rules.

Usage:
    with SecurityManager(SqlStore("sqlite:///security.db")) as manager:
        alice = manager.insert_user("alice", "secret")
        admin = manager.insert_role("admin")
        alice.add_role(admin)
        manager.update_user(alice)
        user = manager.check_credentials("alice", "secret")

Uniqueness: the manager checks login / role-name collisions before calling
the adapter so the common case fails fast with a clear message. The adapter
repeats the check atomically (lock + UNIQUE index), which is what actually
protects against concurrent writers.

update_user() replaces the whole role set of the user: every association is
deleted, then the in-memory set is written back. Two callers editing the
same user's roles concurrently will lose one side's change (last write wins).
Callers that need stronger guarantees must serialise their own edits.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth import engine
from auth.adapter import StorageAdapter
from auth.errors import RoleAlreadyRegistered, UnknownRole, UnknownUser, UserAlreadyRegistered
from auth.hasher import encode_password, is_same_password
from auth.models import Role, User

logger = logging.getLogger("gatehouse.manager")


class SecurityManager:
    """Authentication and user/role CRUD over a pluggable storage adapter."""

    def __init__(self, adapter: StorageAdapter) -> None:
        self.adapter = adapter

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def open(self) -> None:
        self.adapter.open()

    def close(self) -> None:
        self.adapter.close()

    def __enter__(self) -> SecurityManager:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def check_credentials(self, login: str, password: str) -> User:
        """See auth.engine.check_credentials."""
        return engine.check_credentials(self.adapter, login, password)

    @staticmethod
    def encode_password(clear_text: str) -> str:
        return encode_password(clear_text)

    @staticmethod
    def is_same_password(user: User, clear_text: str) -> bool:
        """Return True if clear_text matches the user's stored hash token."""
        return is_same_password(clear_text, user.encoded_password)

    @staticmethod
    def set_password(user: User, new_password: str) -> None:
        """Replace the user's hash token in memory. Persist with update_user()."""
        user.encoded_password = encode_password(new_password)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user_by_id(self, user_id: int) -> User:
        user = self.adapter.find_user_by_id(user_id)
        if user is None:
            raise UnknownUser(f"User identifier {user_id} not found")
        return user

    def get_user_by_login(self, login: str) -> User:
        user = self.adapter.find_user_by_login(login)
        if user is None:
            raise UnknownUser(f"User login {login!r} not found")
        return user

    def get_users_by_role(self, role: Role) -> list[User]:
        return self.adapter.list_users_by_role(role.id)

    def list_users(self) -> list[User]:
        return self.adapter.list_users()

    def insert_user(self, login: str, password: str) -> User:
        """Create a new account and return it.

        Raises UserAlreadyRegistered if the login is taken; the store is left
        unchanged in that case.
        """
        if self.adapter.find_user_by_login(login) is not None:
            raise UserAlreadyRegistered(f"User login {login!r} already registered")
        user = self.adapter.insert_user(login, encode_password(password))
        logger.info("Inserted user id=%d", user.id)
        return user

    def update_user(self, user: User) -> None:
        """Persist every scalar field and replace the whole role set.

        Raises UserAlreadyRegistered if the login was changed to one held by
        another user, UnknownUser if the user no longer exists.
        """
        holder = self.adapter.find_user_by_login(user.login)
        if holder is not None and holder.id != user.id:
            raise UserAlreadyRegistered(f"User login {user.login!r} already registered")
        if not self.adapter.update_user_scalars(user):
            raise UnknownUser(f"User identifier {user.id} not found")
        self.adapter.replace_user_roles(user.id, user.role_ids())
        logger.info("Updated user id=%d (roles=%s)", user.id, user.role_ids())

    def unlock_user(self, user: User) -> None:
        """Administrative unlock: clear the disabled flag and the error count."""
        user.disabled = False
        user.consecutive_errors = 0
        if not self.adapter.update_user_scalars(user):
            raise UnknownUser(f"User identifier {user.id} not found")
        logger.info("Unlocked user id=%d", user.id)

    def delete_user(self, user: User) -> None:
        if not self.adapter.delete_user(user.id):
            raise UnknownUser(f"User {user.login!r} not found")
        logger.info("Deleted user id=%d", user.id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def get_role_by_id(self, role_id: int) -> Role:
        role = self.adapter.find_role_by_id(role_id)
        if role is None:
            raise UnknownRole(f"Role identifier {role_id} not found")
        return role

    def get_role_by_name(self, name: str) -> Role:
        role = self.adapter.find_role_by_name(name)
        if role is None:
            raise UnknownRole(f"Role name {name!r} not found")
        return role

    def list_roles(self) -> list[Role]:
        return self.adapter.list_roles()

    def insert_role(self, name: str) -> Role:
        if self.adapter.find_role_by_name(name) is not None:
            raise RoleAlreadyRegistered(f"Role name {name!r} already registered")
        role = self.adapter.insert_role(name)
        logger.info("Inserted role id=%d", role.id)
        return role

    def update_role(self, role: Role) -> None:
        holder = self.adapter.find_role_by_name(role.name)
        if holder is not None and holder.id != role.id:
            raise RoleAlreadyRegistered(f"Role name {role.name!r} already registered")
        if not self.adapter.update_role(role):
            raise UnknownRole(f"Role identifier {role.id} not found")

    def delete_role(self, role: Role) -> None:
        """Delete the role. Users holding it are not modified."""
        if not self.adapter.delete_role(role.id):
            raise UnknownRole(f"Role {role.name!r} not found")
        logger.info("Deleted role id=%d", role.id)

    # ------------------------------------------------------------------
    # First run
    # ------------------------------------------------------------------

    def bootstrap(self, login: str, password: str, role_name: str) -> User | None:
        """Seed an empty store with an administrator account.

        Creates the role (or reuses it if it already exists) and a user that
        holds it. Does nothing and returns None once any user exists.
        """
        if self.adapter.list_users():
            return None
        role = self.adapter.find_role_by_name(role_name) or self.insert_role(role_name)
        user = self.insert_user(login, password)
        user.add_role(role)
        self.update_user(user)
        logger.info("Bootstrapped administrator account id=%d", user.id)
        return user
