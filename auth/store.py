"""
auth/store.py -- SQLAlchemy Core persistence adapter for users and roles.

Pattern: Repository + Data Mapper. SqlStore is the repository and satisfies
auth.adapter.StorageAdapter; _row_to_user / _row_to_role are the mappers.
The engine and the manager never touch SQL directly.

SQLAlchemy provides the database-agnostic layer: SQLite by default, any
SQLAlchemy URL (PostgreSQL, MySQL, ...) is a connection string change.

Security:
  All queries use bound parameters. No f-strings in SQL, no exceptions --
  logins, role names and hash tokens are caller-supplied text.

Identifiers:
  users.id and roles.id are autoincrement primary keys. The database
  allocates them atomically, so concurrent writers (threads or processes)
  never collide. Never compute "max(id) + 1" here.

Uniqueness:
  users.login and roles.name carry UNIQUE constraints. Within one process
  the check-then-insert sequence is serialised by an RLock so the common
  collision is reported before the INSERT; across processes the constraint
  is the guard and an IntegrityError becomes UserAlreadyRegistered /
  RoleAlreadyRegistered.
  locked() holds the same RLock over a whole authentication attempt.

Dangling role references:
  delete_role() removes only the roles row. user_roles rows that pointed at
  it stay until the user is next updated; loaders JOIN against roles, so a
  deleted role never appears in a loaded user.

Errors:
  Every SQLAlchemyError -- and any malformed row the mappers cannot read --
  is raised as SecurityError with the cause chained. Lookups return None only
  when the query ran and found nothing.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import RoleAlreadyRegistered, SecurityError, UserAlreadyRegistered
from auth.models import Role, User

logger = logging.getLogger("gatehouse.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'gatehouse_security.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(255), nullable=False, unique=True),
    Column("password", String(64), nullable=False),  # hash token, never clear text
    Column("connection_count", Integer, nullable=False, server_default="0"),
    Column("last_connection", String(32)),  # ISO 8601 UTC, NULL until first login
    Column("consecutive_errors", Integer, nullable=False, server_default="0"),
    Column("disabled", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, server_default=""),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
)

# No foreign keys: role deletion does not cascade to users (see module docstring).
_user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, nullable=False),
    Column("role_id", Integer, nullable=False),
    PrimaryKeyConstraint("user_id", "role_id", name="pk_user_roles"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlStore:
    """Relational StorageAdapter backed by SQLAlchemy Core.

    Usage:
        store = SqlStore()                                  # SQLite default
        store = SqlStore("postgresql://user:pw@host/db")    # PostgreSQL
        user = store.insert_user("alice", encode_password("secret"))
        store.close()

    The constructor opens the store; open() after close() reconnects.
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.db_url = db_url
        self.engine: Engine | None = None
        self._lock = threading.RLock()
        self.open()

    def open(self) -> None:
        if self.engine is not None:
            return
        connect_args: dict = {}
        if self.db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        try:
            engine = create_engine(self.db_url, connect_args=connect_args)
            if self.db_url.startswith("sqlite"):
                event.listen(engine, "connect", _set_wal_mode)
            metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise SecurityError("Cannot open security database", exc) from exc
        self.engine = engine
        logger.info("Security database opened (%s)", engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the store lock across several calls (one authentication attempt)."""
        with self._lock:
            yield

    @contextmanager
    def _guard(self, action: str) -> Iterator[Engine]:
        """Yield the live engine; turn driver and mapping failures into SecurityError."""
        if self.engine is None:
            raise SecurityError(f"Cannot {action}: security database is closed")
        try:
            yield self.engine
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            raise SecurityError(f"Cannot {action}", exc) from exc

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def find_user_by_credentials(self, login: str, encoded_password: str) -> User | None:
        query = _users.select().where((_users.c.login == login) & (_users.c.password == encoded_password))
        return self._fetch_user(query, "check credentials")

    def find_user_by_login(self, login: str) -> User | None:
        """Look up a user by exact login (case-sensitive)."""
        return self._fetch_user(_users.select().where(_users.c.login == login), "select user by login")

    def find_user_by_id(self, user_id: int) -> User | None:
        return self._fetch_user(_users.select().where(_users.c.id == user_id), "select user by identifier")

    def list_users(self) -> list[User]:
        with self._guard("list users") as engine, engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.login)).fetchall()
            return [self._load_user(conn, r) for r in rows]

    def list_users_by_role(self, role_id: int) -> list[User]:
        query = (
            _users.select()
            .join(_user_roles, _user_roles.c.user_id == _users.c.id)
            .join(_roles, _roles.c.id == _user_roles.c.role_id)
            .where(_user_roles.c.role_id == role_id)
            .order_by(_users.c.login)
        )
        with self._guard("list users by role") as engine, engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            return [self._load_user(conn, r) for r in rows]

    def insert_user(self, login: str, encoded_password: str) -> User:
        """Insert a new user with zeroed counters and return it.

        Raises UserAlreadyRegistered if the login already exists, whether the
        collision is seen by the pre-check or by the UNIQUE constraint.
        """
        with self._lock, self._guard("insert user") as engine, engine.connect() as conn:
            exists = conn.execute(select(_users.c.id).where(_users.c.login == login)).first()
            if exists is not None:
                raise UserAlreadyRegistered(f"User login {login!r} already registered")
            try:
                result = conn.execute(
                    _users.insert().values(
                        login=login,
                        password=encoded_password,
                        connection_count=0,
                        last_connection=None,
                        consecutive_errors=0,
                        disabled=0,
                        first_name="",
                        last_name="",
                        email="",
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                raise UserAlreadyRegistered(f"User login {login!r} already registered", exc) from exc
            return User(id=result.inserted_primary_key[0], login=login, encoded_password=encoded_password)

    def update_user_scalars(self, user: User) -> bool:
        """Write every scalar column of the user. Returns False if the id is unknown."""
        with self._lock, self._guard("update user") as engine, engine.connect() as conn:
            try:
                result = conn.execute(
                    _users.update()
                    .where(_users.c.id == user.id)
                    .values(
                        login=user.login,
                        password=user.encoded_password,
                        connection_count=user.connection_count,
                        last_connection=_to_iso(user.last_connection),
                        consecutive_errors=user.consecutive_errors,
                        disabled=1 if user.disabled else 0,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        email=user.email,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                raise UserAlreadyRegistered(f"User login {user.login!r} already registered", exc) from exc
            return result.rowcount > 0

    def replace_user_roles(self, user_id: int, role_ids: list[int]) -> None:
        """Delete every association of the user, then insert role_ids -- one transaction."""
        with self._lock, self._guard("update user roles") as engine, engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            if role_ids:
                conn.execute(
                    _user_roles.insert(),
                    [{"user_id": user_id, "role_id": role_id} for role_id in sorted(set(role_ids))],
                )

    def delete_user(self, user_id: int) -> bool:
        with self._lock, self._guard("delete user") as engine, engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def find_role_by_id(self, role_id: int) -> Role | None:
        return self._fetch_role(_roles.select().where(_roles.c.id == role_id), "select role by identifier")

    def find_role_by_name(self, name: str) -> Role | None:
        return self._fetch_role(_roles.select().where(_roles.c.name == name), "select role by name")

    def list_roles(self) -> list[Role]:
        with self._guard("list roles") as engine, engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
            return [_row_to_role(r) for r in rows]

    def insert_role(self, name: str) -> Role:
        with self._lock, self._guard("insert role") as engine, engine.connect() as conn:
            exists = conn.execute(select(_roles.c.id).where(_roles.c.name == name)).first()
            if exists is not None:
                raise RoleAlreadyRegistered(f"Role name {name!r} already registered")
            try:
                result = conn.execute(_roles.insert().values(name=name))
                conn.commit()
            except IntegrityError as exc:
                raise RoleAlreadyRegistered(f"Role name {name!r} already registered", exc) from exc
            return Role(id=result.inserted_primary_key[0], name=name)

    def update_role(self, role: Role) -> bool:
        with self._lock, self._guard("update role") as engine, engine.connect() as conn:
            try:
                result = conn.execute(_roles.update().where(_roles.c.id == role.id).values(name=role.name))
                conn.commit()
            except IntegrityError as exc:
                raise RoleAlreadyRegistered(f"Role name {role.name!r} already registered", exc) from exc
            return result.rowcount > 0

    def delete_role(self, role_id: int) -> bool:
        """Delete the roles row only. Associations are left for users to drop on update."""
        with self._lock, self._guard("delete role") as engine, engine.begin() as conn:
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_user(self, query, action: str) -> User | None:
        with self._guard(action) as engine, engine.connect() as conn:
            row = conn.execute(query).fetchone()
            return self._load_user(conn, row) if row is not None else None

    def _fetch_role(self, query, action: str) -> Role | None:
        with self._guard(action) as engine, engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_role(row) if row is not None else None

    @staticmethod
    def _load_user(conn, row) -> User:
        """Map a users row and attach the roles that still exist."""
        user = _row_to_user(row)
        role_rows = conn.execute(
            _roles.select()
            .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
            .where(_user_roles.c.user_id == user.id)
        ).fetchall()
        user.roles = {_row_to_role(r) for r in role_rows}
        return user


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=int(row.id),
        login=row.login,
        encoded_password=row.password,
        connection_count=int(row.connection_count),
        last_connection=_from_iso(row.last_connection),
        consecutive_errors=int(row.consecutive_errors),
        disabled=bool(row.disabled),
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        email=row.email or "",
    )


def _row_to_role(row) -> Role:
    return Role(id=int(row.id), name=row.name)
