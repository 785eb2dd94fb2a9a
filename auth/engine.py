"""
auth/engine.py -- The credential check and lockout state machine.

Each account is either Active (disabled=False, 0..2 consecutive errors) or
Locked (disabled=True). Locked is terminal as far as this module goes: only
an explicit administrative update (SecurityManager.update_user / unlock_user)
clears the flag.

check_credentials() processes one attempt as a single logical unit:

  hash the password
  look up (login, hash)
    match:
      connection_count += 1, last_connection = now, persist
      Locked  -> AccountDisabled
      Active  -> reset consecutive_errors to 0 if needed, persist, return user
    no match:
      look up login alone
        unknown -> BadCredentials (no side effect)
        known   -> consecutive_errors += 1, persist
                   reaches LOCKOUT_THRESHOLD -> disabled = True, persist,
                                                AccountDisabled
                   otherwise                 -> BadCredentials

The connection counter is bumped even for a Locked account that presents
the right password. That is kept on purpose as an audit trail of access
attempts against locked accounts, and it is logged at WARNING.

The module is stateless; every piece of state lives in the adapter. The
whole attempt runs under adapter.locked(), so concurrent attempts on one
store count every failure and never write a stale row back. No retries and
no recovery: adapter failures propagate as SecurityError.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auth.adapter import StorageAdapter
from auth.errors import AccountDisabled, BadCredentials, SecurityError
from auth.hasher import encode_password
from auth.models import User

logger = logging.getLogger("gatehouse.engine")

# Consecutive failed attempts after which an account is disabled.
LOCKOUT_THRESHOLD = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


def check_credentials(adapter: StorageAdapter, login: str, password: str) -> User:
    """Authenticate login/password and return the populated User.

    Raises:
        BadCredentials:  unknown login, or wrong password below the threshold.
        AccountDisabled: the account is locked, or this failure locked it.
        SecurityError:   the adapter could not complete a lookup or write.
    """
    encoded = encode_password(password)

    # Lookup and every write of one attempt see no interleaved attempt.
    with adapter.locked():
        user = adapter.find_user_by_credentials(login, encoded)
        if user is not None:
            return _accept(adapter, user)

        known = adapter.find_user_by_login(login)
        if known is None:
            logger.info("Rejected credentials for unknown login")
            raise BadCredentials("Your identity is rejected")
        raise _reject(adapter, known)


def _accept(adapter: StorageAdapter, user: User) -> User:
    user.connection_count += 1
    user.last_connection = _now()
    adapter.update_user_scalars(user)

    if user.disabled:
        logger.warning("Valid credentials presented for disabled account id=%d", user.id)
        raise AccountDisabled("Account is disabled")

    if user.consecutive_errors != 0:
        user.consecutive_errors = 0
        adapter.update_user_scalars(user)

    logger.info("Authenticated user id=%d (connections=%d)", user.id, user.connection_count)
    return user


def _reject(adapter: StorageAdapter, user: User) -> SecurityError:
    """Record a failed attempt and return the error the caller must raise."""
    user.consecutive_errors += 1
    adapter.update_user_scalars(user)

    if user.consecutive_errors == LOCKOUT_THRESHOLD:
        user.disabled = True
        adapter.update_user_scalars(user)
        logger.warning(
            "Account id=%d disabled after %d consecutive failures", user.id, user.consecutive_errors
        )
        return AccountDisabled("Account is disabled")

    logger.info("Rejected credentials for user id=%d (consecutive errors=%d)", user.id, user.consecutive_errors)
    return BadCredentials("Your identity is rejected")
