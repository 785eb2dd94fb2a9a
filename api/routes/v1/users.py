"""
api/routes/v1/users.py -- User administration routes.

Routes:
  GET    /users                -- list all users
  POST   /users                -- create user (optionally with roles by name)
  GET    /users/{user_id}      -- user detail
  PATCH  /users/{user_id}      -- partial update; roles replaces the whole set
  DELETE /users/{user_id}      -- delete user and its role associations
  POST   /users/{user_id}/unlock -- clear disabled flag and error count

Every route requires the admin API key (auth.dependencies.require_admin).
Role names are resolved before anything is written, so an unknown role
name fails the request without creating or changing the user.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import UserCreate, UserPatch, UserResponse
from auth.dependencies import require_admin
from auth.manager import SecurityManager
from auth.models import Role

router = APIRouter(dependencies=[Depends(require_admin)])


def _resolve_roles(manager: SecurityManager, names: list[str]) -> set[Role]:
    return {manager.get_role_by_name(name) for name in names}


@limiter.limit("60/minute")
@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request) -> list[UserResponse]:
    manager: SecurityManager = request.app.state.security
    return [UserResponse.from_user(u) for u in manager.list_users()]


@limiter.limit("30/minute")
@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate) -> UserResponse:
    """Create an account. 409 if the login is taken, 404 if a role is unknown."""
    manager: SecurityManager = request.app.state.security
    roles = _resolve_roles(manager, body.roles)
    user = manager.insert_user(body.login, body.password)
    user.first_name = body.first_name
    user.last_name = body.last_name
    user.email = body.email
    user.roles = roles
    manager.update_user(user)
    return UserResponse.from_user(manager.get_user_by_id(user.id))


@limiter.limit("60/minute")
@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    manager: SecurityManager = request.app.state.security
    return UserResponse.from_user(manager.get_user_by_id(user_id))


@limiter.limit("30/minute")
@router.patch("/users/{user_id}", response_model=UserResponse)
def patch_user(request: Request, user_id: int, body: UserPatch) -> UserResponse:
    """Apply the supplied fields and persist the user.

    Re-enabling an account (disabled=false) also clears its error count,
    the same as POST /users/{id}/unlock.
    """
    manager: SecurityManager = request.app.state.security
    user = manager.get_user_by_id(user_id)
    if body.roles is not None:
        user.roles = _resolve_roles(manager, body.roles)
    if body.login is not None:
        user.login = body.login
    if body.password is not None:
        manager.set_password(user, body.password)
    if body.first_name is not None:
        user.first_name = body.first_name
    if body.last_name is not None:
        user.last_name = body.last_name
    if body.email is not None:
        user.email = body.email
    if body.disabled is not None:
        user.disabled = body.disabled
        if not body.disabled:
            user.consecutive_errors = 0
    manager.update_user(user)
    return UserResponse.from_user(manager.get_user_by_id(user_id))


@limiter.limit("30/minute")
@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int) -> Response:
    manager: SecurityManager = request.app.state.security
    manager.delete_user(manager.get_user_by_id(user_id))
    return Response(status_code=204)


@limiter.limit("30/minute")
@router.post("/users/{user_id}/unlock", response_model=UserResponse)
def unlock_user(request: Request, user_id: int) -> UserResponse:
    manager: SecurityManager = request.app.state.security
    user = manager.get_user_by_id(user_id)
    manager.unlock_user(user)
    return UserResponse.from_user(user)
