"""
api/routes/v1/auth.py -- Credential check endpoint.

Routes:
  POST /api/v1/auth/check  -- verify login/password; returns the user profile

Security:
  Rate-limited per client IP (CHECK_RATE_LIMIT, default 10/minute) on top
  of the per-account lockout in auth.engine.
  Cache-Control: no-store on every response, success or failure.
  Unknown login and wrong password both answer 401 bad_credentials.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import CredentialsRequest, UserResponse
from auth.manager import SecurityManager
from core.config import get_settings

# Public: this is the endpoint that authenticates, it cannot require auth.
router = APIRouter()


@limiter.limit(get_settings().check_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/check", response_model=UserResponse)
def check(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Verify credentials and return the profile of the authenticated user.

    Failures (401 bad_credentials, 403 account_disabled) are rendered by the
    SecurityError handler in api/main.py.
    """
    manager: SecurityManager = request.app.state.security
    user = manager.check_credentials(body.login, body.password)
    resp = JSONResponse(status_code=200, content=UserResponse.from_user(user).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp
