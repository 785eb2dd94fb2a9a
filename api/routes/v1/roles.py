"""
api/routes/v1/roles.py -- Role administration routes.

Routes:
  GET    /roles                     -- list all roles
  POST   /roles                     -- create role
  GET    /roles/{role_id}           -- role detail
  PATCH  /roles/{role_id}           -- rename role
  DELETE /roles/{role_id}           -- delete role (users keep their other roles)
  GET    /roles/{role_id}/users     -- members of the role

Every route requires the admin API key (auth.dependencies.require_admin).
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import RoleCreate, RoleResponse, UserResponse
from auth.dependencies import require_admin
from auth.manager import SecurityManager

router = APIRouter(dependencies=[Depends(require_admin)])


@limiter.limit("60/minute")
@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request) -> list[RoleResponse]:
    manager: SecurityManager = request.app.state.security
    return [RoleResponse.from_role(r) for r in manager.list_roles()]


@limiter.limit("30/minute")
@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate) -> RoleResponse:
    manager: SecurityManager = request.app.state.security
    return RoleResponse.from_role(manager.insert_role(body.name))


@limiter.limit("60/minute")
@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int) -> RoleResponse:
    manager: SecurityManager = request.app.state.security
    return RoleResponse.from_role(manager.get_role_by_id(role_id))


@limiter.limit("30/minute")
@router.patch("/roles/{role_id}", response_model=RoleResponse)
def rename_role(request: Request, role_id: int, body: RoleCreate) -> RoleResponse:
    """Rename a role. 409 if another role already has the name."""
    manager: SecurityManager = request.app.state.security
    role = manager.get_role_by_id(role_id)
    role.name = body.name
    manager.update_role(role)
    return RoleResponse.from_role(role)


@limiter.limit("30/minute")
@router.delete("/roles/{role_id}", status_code=204)
def delete_role(request: Request, role_id: int) -> Response:
    manager: SecurityManager = request.app.state.security
    manager.delete_role(manager.get_role_by_id(role_id))
    return Response(status_code=204)


@limiter.limit("60/minute")
@router.get("/roles/{role_id}/users", response_model=list[UserResponse])
def list_role_members(request: Request, role_id: int) -> list[UserResponse]:
    manager: SecurityManager = request.app.state.security
    role = manager.get_role_by_id(role_id)
    return [UserResponse.from_user(u) for u in manager.get_users_by_role(role)]
