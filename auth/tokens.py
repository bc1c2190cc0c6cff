"""
auth/tokens.py -- JWT issuance, password hashing, and random key utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (login), user_id, authorities, jti and expiry. Verification returns
       None on any failure -- the dependency layer turns that into a 401.

  Revocation: every issued jti is recorded in the oauth_access_tokens table.
       A JWT is only honoured while its row exists, so removing the rows of a
       login (deactivation, authority change, email change, deletion) logs the
       user out everywhere without waiting for expiry.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a login or email exists.

  Activation / reset keys: secrets.token_hex(10) gives 20 hex characters of
       single-use key material, delivered out of band to the user.

Layer rule: no imports from api/, vault/, services/, or realtime/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import AccessToken
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("keyshare.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords at
    100 characters (Pydantic field), which keeps ASCII input under the limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB -- treat as a failed login.
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("keyshare_timing_dummy")


def generate_random_key() -> str:
    """Return a fresh activation / password-reset key."""
    return secrets.token_hex(10)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user: User, expire_seconds: int = 0) -> tuple[str, AccessToken]:
    """Encode a signed JWT for user and return it with its token-store record.

    Args:
        user:           The authenticated user. Must have an id.
        expire_seconds: Token lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.

    The caller persists the returned AccessToken; issue_token() does both.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    issued = datetime.now(timezone.utc)
    expire = issued + timedelta(seconds=duration)
    token_id = uuid.uuid4().hex
    payload = {
        "sub": user.login,
        "user_id": user.id,
        "authorities": sorted(user.authorities),
        "jti": token_id,
        "exp": expire,
    }
    encoded = jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)
    record = AccessToken(
        token_id=token_id,
        login=user.login,
        issued_at=issued.isoformat(),
        expires_at=expire.isoformat(),
    )
    return encoded, record


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Only checks signature, expiry and claim shape. Whether the token has been
    revoked is checked against the token store by auth/dependencies.py.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "jti" not in payload or "sub" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# OAuth2 password grant
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a login-or-email / password pair with timing equalization.

    username containing "@" is looked up as an email address, anything else as
    a login. bcrypt always runs, whether or not the user exists:
    - Unknown user: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Deactivated users are rejected after the password check.
    Returns the User on success, None on any failure.
    """
    if "@" in username:
        user = store.get_by_email(username)
    else:
        user = store.get_by_login(username.lower())
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.activated:
        logger.info("Token refused for deactivated user %s", user.login)
        return None
    return user


def issue_token(store: UserStore, user: User) -> tuple[str, int]:
    """Create, record and return a bearer token for user with its lifetime."""
    encoded, record = create_access_token(user)
    store.save_token(record)
    logger.debug("Issued token %s for %s", record.token_id, user.login)
    return encoded, _settings.token_expire_seconds


def revoke_tokens(store: UserStore, login: str) -> int:
    """Remove every stored token of login. Returns the number revoked."""
    tokens = store.find_tokens_by_username(login)
    for token in tokens:
        store.remove_token(token.token_id)
    if tokens:
        logger.debug("Revoked %d token(s) for %s", len(tokens), login)
    return len(tokens)
