"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
Hash tokens never appear in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Request body for POST /api/v1/auth/check."""

    login: str = Field(min_length=1, max_length=255)
    password: str = Field(max_length=255)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users.

    roles lists role names; each must already exist.
    """

    login: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=255)
    roles: list[str] = Field(default_factory=list)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Omitted fields are unchanged.

    roles, when present, replaces the user's whole role set.
    """

    login: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    disabled: Optional[bool] = None
    roles: Optional[list[str]] = None


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles and PATCH /api/v1/roles/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    """A role as exposed over HTTP."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name)


class UserResponse(BaseModel):
    """A user profile. Never carries the hash token."""

    model_config = ConfigDict(frozen=True)

    id: int
    login: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    connection_count: int
    last_connection: Optional[str] = None
    consecutive_errors: int
    disabled: bool
    roles: list[RoleResponse]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Build a UserResponse from a domain User (roles sorted by name)."""
        return cls(
            id=user.id,
            login=user.login,
            first_name=user.first_name,
            last_name=user.last_name,
            full_name=user.full_name.strip(),
            email=user.email,
            connection_count=user.connection_count,
            last_connection=user.last_connection.isoformat() if user.last_connection else None,
            consecutive_errors=user.consecutive_errors,
            disabled=user.disabled,
            roles=[RoleResponse.from_role(r) for r in sorted(user.roles, key=lambda r: r.name)],
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    backend: str
