"""
auth/errors.py -- Typed failures surfaced by the authentication core.

Every failure the engine, the manager, or a storage adapter reports derives
from SecurityError, so callers can catch the whole family in one clause and
still branch on the concrete kind when they care:

  BadCredentials          -- login/password pair rejected; caller may retry.
  AccountDisabled         -- account is locked; only an administrative update
                             clears it.
  UserAlreadyRegistered   -- login uniqueness violation on insert/update.
  RoleAlreadyRegistered   -- role-name uniqueness violation on insert/update.
  UnknownUser / UnknownRole -- an explicit lookup found nothing.
  Unauthorized            -- reserved for permission checks; the
                             authentication path never raises it.

A bare SecurityError means the store itself failed (connectivity, parse,
I/O). Adapters raise it with the original exception chained via
``raise ... from exc``; the cause is also kept on ``.cause`` for callers that
log or serialise errors without walking ``__cause__``.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class SecurityError(Exception):
    """Base class for every failure raised by the security core."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class BadCredentials(SecurityError):
    """The login/password pair did not match an active account."""


class AccountDisabled(SecurityError):
    """The account is locked after too many consecutive failures."""


class UserAlreadyRegistered(SecurityError):
    """Another user already holds this login."""


class RoleAlreadyRegistered(SecurityError):
    """Another role already holds this name."""


class UnknownUser(SecurityError):
    """No user matches the requested identifier or login."""


class UnknownRole(SecurityError):
    """No role matches the requested identifier or name."""


class Unauthorized(SecurityError):
    """The caller is not allowed to perform the requested operation."""
