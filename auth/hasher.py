"""
auth/hasher.py -- Password hash tokens.

The stored credential format is fixed: existing stores hold tokens produced
by this exact scheme, so it must stay bit-for-bit stable.

  1. clear text -> UTF-16 big-endian, prefixed with the BOM (FE FF)
  2. SHA-1 over those bytes (20-byte digest)
  3. base64 digit table A-Z a-z 0-9 + /, with '*' as the pad character
     instead of '='

A 20-byte digest always yields 27 symbols plus one '*' (28 characters).

    >>> encode_password("Ellipse")
    '39s6tkG+ZRAb0hR0YNSohRDYR4w*'

Tokens are compared for equality only; there is no decode operation. This
is a legacy-compatible scheme, not a modern password KDF -- it carries no
salt and no work factor. Keep it for compatibility with stored tokens.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

from auth.errors import SecurityError

_BOM = b"\xfe\xff"
_PAD = "*"

TOKEN_LENGTH = 28


def encode_digest(digest: bytes) -> str:
    """Render raw digest bytes with the '*'-padded digit table.

    The digit table is the standard base64 alphabet in the standard order,
    and 3-byte groups map to 4 symbols exactly as base64 does. Only the
    padding differs: a 1-byte remainder ends in '**', a 2-byte remainder in
    a single '*'.
    """
    return base64.b64encode(digest).decode("ascii").replace("=", _PAD)


def encode_password(clear_text: str) -> str:
    """Return the hash token for a clear-text password.

    Raises SecurityError if the text cannot be represented in UTF-16
    (e.g. it contains an unpaired surrogate).
    """
    try:
        payload = _BOM + clear_text.encode("utf-16-be")
    except UnicodeEncodeError as exc:
        raise SecurityError("Cannot encode password", exc) from exc
    return encode_digest(hashlib.sha1(payload).digest())  # nosec B324 -- legacy token format


def is_same_password(clear_text: str, encoded_password: str) -> bool:
    """Return True if clear_text hashes to the stored token."""
    return hmac.compare_digest(encode_password(clear_text), encoded_password)
