"""
auth/dependencies.py -- FastAPI Depends() guard for the admin API.

require_admin() protects user and role administration with a static key
sent in the X-API-Key header. Route modules attach it at router level:

    router = APIRouter(dependencies=[Depends(require_admin)])

The key is compared with hmac.compare_digest so response time does not leak
how many leading characters matched. An unset ADMIN_API_KEY disables every
admin route: nothing compares equal to an empty configured key.

Failures raise auth.errors.Unauthorized; api/main.py maps it to 403 like
every other SecurityError kind.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import hmac

from fastapi import Request

from auth.errors import Unauthorized


def require_admin(request: Request) -> None:
    """Raise Unauthorized unless X-API-Key matches the configured admin key."""
    expected: str = getattr(request.app.state, "admin_api_key", "")
    supplied = request.headers.get("X-API-Key", "")
    if not expected or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise Unauthorized("Administration requires a valid X-API-Key header.")
