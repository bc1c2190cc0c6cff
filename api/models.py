"""
API request and response models for keyshare REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
vault/models.py, which own the internal domain representation. Route handlers
map between the two.

Identifiers: keys and categories are exposed by their hashid string, never by
the integer primary key. Users are addressed by login, groups by integer id.

Separation of concerns: domain dataclasses = storage truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# ---------------------------------------------------------------------------
# Envelope and health
# ---------------------------------------------------------------------------


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

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# OAuth2
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """RFC 6749 access token response for POST /oauth/token."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    scope: str = ""


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    login: str
    email: str
    authorities: list[str]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserRegister(BaseModel):
    """Request body for POST /api/v1/users/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{login}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255, pattern=_EMAIL_PATTERN)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/users/reset_password."""

    email: str = Field(min_length=3, max_length=255, pattern=_EMAIL_PATTERN)


class PasswordResetFinish(BaseModel):
    """Request body for PUT /api/v1/users/reset_password."""

    reset_key: str = Field(min_length=1, max_length=32)
    password: str = Field(min_length=8, max_length=100)


class PasswordResetKeyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    reset_key: str


class PublicKeyUpdate(BaseModel):
    """Request body for PUT /api/v1/users/me/public-key. null clears the key."""

    public_key: Optional[str] = Field(default=None, max_length=10000)


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    activated: bool
    authorities: list[str]
    groups: list[int]
    public_key: Optional[str] = None
    created_at: str


class RegisteredUserResponse(UserResponse):
    """UserResponse plus the activation key, returned to admins only."""

    activation_key: Optional[str] = None


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


class GroupCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class GroupMemberAdd(BaseModel):
    login: str = Field(min_length=1, max_length=100)


class GroupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    users: list[str]
    created_at: str


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    """Request body for POST /api/v1/categories. parent is a category hashid."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    parent: Optional[str] = None


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class CategoryChildAdd(BaseModel):
    child: str


class CategoryMove(BaseModel):
    """Request body for PUT /api/v1/categories/{id}/move. null makes it a root."""

    parent: Optional[str] = None


class CategoryGroupAdd(BaseModel):
    group_id: int


class CategoryKeyAdd(BaseModel):
    key: str


class CategoryResponsible(BaseModel):
    """Request body for PUT /api/v1/categories/{id}/responsible. null unbinds."""

    login: Optional[str] = None


class CategoryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    parent: Optional[str]
    tree_level: int
    creator: Optional[str]
    responsible: Optional[str]
    groups: list[int]
    children: list[str]
    keys: list[str]
    created_at: str


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class EncryptedPasswordEntry(BaseModel):
    """One recipient's ciphertext inside a key create/update payload."""

    login: str = Field(min_length=1, max_length=100)
    encrypted_password: str = Field(min_length=1, max_length=20000)


def _unique_recipients(entries: list[EncryptedPasswordEntry]) -> list[EncryptedPasswordEntry]:
    """Reject a payload naming the same recipient twice; one copy per user."""
    seen: set[str] = set()
    for entry in entries:
        if entry.login in seen:
            raise ValueError(f"Duplicate encrypted password for {entry.login!r}.")
        seen.add(entry.login)
    return entries


class KeyCreate(BaseModel):
    """Request body for POST /api/v1/keys. category is a category hashid."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    login: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=10000)
    category: Optional[str] = None
    encrypted_passwords: list[EncryptedPasswordEntry] = Field(default_factory=list)

    @field_validator("encrypted_passwords")
    @classmethod
    def distinct_recipients(cls, entries: list[EncryptedPasswordEntry]) -> list[EncryptedPasswordEntry]:
        return _unique_recipients(entries)


class KeyUpdate(BaseModel):
    """Request body for PUT /api/v1/keys/{id}. encrypted_passwords replaces all copies."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    login: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=10000)
    encrypted_passwords: list[EncryptedPasswordEntry] = Field(default_factory=list)

    @field_validator("encrypted_passwords")
    @classmethod
    def distinct_recipients(cls, entries: list[EncryptedPasswordEntry]) -> list[EncryptedPasswordEntry]:
        return _unique_recipients(entries)


class KeyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    login: Optional[str]
    notes: Optional[str]
    category: Optional[str]
    creator: Optional[str]
    created_at: str


class EncryptedPasswordResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    encrypted_password: str
    created_at: str


class SubscriberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    public_key: str
