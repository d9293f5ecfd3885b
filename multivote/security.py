"""
Shared security utilities.

Covers:
  - Secret hashing (bcrypt via passlib) for durable account secrets
  - Login-code generation (6 digits, uniform over [100000, 999999])
  - Durable-secret generation (rotated on every successful code check)
  - Session tokens (HS256 JWT via python-jose)

The login code and the durable secret are unrelated values: a code is
never usable as a password, and the secret is never emailed or logged.
"""

import os
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import jwt, JWTError
from passlib.context import CryptContext

from multivote.errors import Unauthorized

# ---------------------------------------------------------------------------
# Secret hashing
# ---------------------------------------------------------------------------
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password or durable secret using bcrypt via passlib."""
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return pwd_context.verify(password, hashed)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    """Timezone-aware current time; every stored timestamp is UTC."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Login codes
# ---------------------------------------------------------------------------
CODE_MIN = 100000
CODE_MAX = 999999


def generate_login_code() -> str:
    """Return a 6-digit code drawn uniformly from [100000, 999999]."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def codes_match(submitted: str, stored: str | None) -> bool:
    """Constant-time comparison of a submitted code with the stored one."""
    if stored is None:
        return False
    return hmac.compare_digest(submitted.encode(), stored.strip().encode())


# ---------------------------------------------------------------------------
# Durable secrets
# ---------------------------------------------------------------------------

def generate_account_secret() -> str:
    """Fresh random secret for a durable account (43 URL-safe characters)."""
    return secrets.token_urlsafe(32)


def generate_initial_password(length: int = 12) -> str:
    """Initial password for invited admin/observer accounts."""
    return secrets.token_urlsafe(length)[:length]


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
SESSION_HOURS = int(os.getenv("SESSION_HOURS", "24"))


def create_session_token(claims: dict, hours: int = SESSION_HOURS) -> str:
    """Sign a session JWT; UUID claim values are serialised as strings."""
    payload = {k: (str(v) if v is not None else None) for k, v in claims.items()}
    payload["exp"] = datetime.now(timezone.utc) + timedelta(hours=hours)
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_session_token(token: str) -> dict:
    """Return the claims of a valid session token or raise ``Unauthorized``."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        msg = "Session expired" if "expired" in str(e).lower() else "Invalid session"
        raise Unauthorized(msg)
