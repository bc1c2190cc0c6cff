"""
core/exceptions.py -- Domain exceptions shared by services and the API layer.

Services raise these; api/main.py maps every KeyshareError subclass to the
shared ErrorResponse envelope using the class-level status_code and code.
Route handlers therefore never translate domain failures by hand.

Taxonomy:
  NotFoundError          (404) -- key, category, user, group, authority, ...
  ConflictError          (409) -- duplicate email/group, pending reset key, ...
  AccessDeniedError      (403) -- user lacks authorization for a key/category
  InvalidIdentifierError (400) -- an obfuscated id failed to decode

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations


class KeyshareError(Exception):
    """Base class for all domain errors surfaced to API clients."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "", detail: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.detail = detail


# ---------------------------------------------------------------------------
# 404
# ---------------------------------------------------------------------------


class NotFoundError(KeyshareError):
    """The requested resource does not exist."""

    status_code = 404
    code = "not_found"


class KeyNotFoundError(NotFoundError):
    """Key not found."""


class CategoryNotFoundError(NotFoundError):
    """Key category not found."""


class UserNotFoundError(NotFoundError):
    """User not found."""


class GroupNotFoundError(NotFoundError):
    """User group not found."""


class AuthorityNotFoundError(NotFoundError):
    """Authority not found."""


class ActivationKeyNotFoundError(NotFoundError):
    """Activation key not found."""


class ResetKeyNotFoundError(NotFoundError):
    """Reset key not found."""


class EncryptedPasswordNotFoundError(NotFoundError):
    """No encrypted password for this key and user."""


# ---------------------------------------------------------------------------
# 409
# ---------------------------------------------------------------------------


class ConflictError(KeyshareError):
    """The request conflicts with the current state of the resource."""

    status_code = 409
    code = "conflict"


class UserConflictError(ConflictError):
    """User conflict."""


class GroupConflictError(ConflictError):
    """User group conflict."""


class CategoryTreeConflictError(ConflictError):
    """A category cannot be moved below itself or one of its descendants."""


# ---------------------------------------------------------------------------
# 403 / 400
# ---------------------------------------------------------------------------


class AccessDeniedError(KeyshareError):
    """Access denied."""

    status_code = 403
    code = "forbidden"


class KeyNotAccessibleByUserError(AccessDeniedError):
    """An encrypted password targets a user without access to the key."""

    code = "key_not_accessible"


class InvalidIdentifierError(KeyshareError):
    """The identifier is not valid."""

    status_code = 400
    code = "invalid_identifier"
