"""
auth/models.py -- Domain dataclasses for users and roles.

Pattern: Data class (passive data holders). Adapters build these from their
own records; the engine and the manager mutate and hand them back. A User
never holds a reference to the manager or the hasher -- password changes go
through SecurityManager.set_password() so the aggregate stays plain data.

Role identity is its identifier: two Role objects with the same id are the
same member of a user's role set even if one of them carries a stale name.
That keeps add_role() idempotent across separately loaded copies.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(eq=False)
class Role:
    """A named group of users (e.g. "admin")."""

    id: int
    name: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass
class User:
    """An account known to the security store.

    Created only by SecurityManager.insert_user() (or loaded by an adapter).
    id and login are assigned at insert time; login may be changed through
    update_user() but id never changes.

    encoded_password is the hash token from auth.hasher -- the clear text is
    never kept. last_connection is None until the first successful login.
    """

    id: int
    login: str
    encoded_password: str
    connection_count: int = 0
    last_connection: datetime | None = None
    consecutive_errors: int = 0
    disabled: bool = False
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    roles: set[Role] = field(default_factory=set)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def add_role(self, role: Role) -> None:
        self.roles.add(role)

    def remove_role(self, role: Role) -> None:
        # Removing a role the user does not hold is a no-op.
        self.roles.discard(role)

    def is_member_of_role(self, role: Role) -> bool:
        return role in self.roles

    def role_ids(self) -> list[int]:
        """Sorted role identifiers, the shape adapters persist."""
        return sorted(r.id for r in self.roles)
