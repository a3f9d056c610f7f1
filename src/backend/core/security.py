"""Security utilities for token handling and one-time codes.

Ballotline never checks passwords or login codes while casting votes. Access
tokens are issued by the identity service once a voter has signed in; this
module only creates (for tooling and tests) and validates them, and hashes
the one-time email verification codes stored by the engine.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from core.config import settings

# Token issuer and audience for validation
TOKEN_ISSUER = "ballotline-identity"
TOKEN_AUDIENCE = "ballotline-api"


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token with standard claims."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update(
        {
            "exp": expire,
            "iat": now,
            "type": "access",
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
            "jti": secrets.token_urlsafe(16),
        }
    )
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, expected_type: str | None = "access") -> dict[str, Any] | None:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token to decode
        expected_type: If provided, validates the token type matches

    Returns:
        The decoded payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=TOKEN_ISSUER,
            audience=TOKEN_AUDIENCE,
        )
        if expected_type and payload.get("type") != expected_type:
            return None
        return payload
    except JWTError:
        return None


def generate_one_time_code(length: int | None = None) -> str:
    """Generate a numeric one-time code."""
    length = length or settings.ONE_TIME_CODE_LENGTH
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_one_time_code(code: str) -> str:
    """
    Hash a one-time code for storage.

    The server-side SECRET_KEY salts the hash so a leaked table cannot be
    brute-forced offline against the small numeric code space.
    """
    data = f"{code.strip()}:{settings.SECRET_KEY}"
    return hashlib.sha256(data.encode()).hexdigest()


def verify_one_time_code(code: str, code_hash: str) -> bool:
    """Constant-time comparison of a submitted code against its stored hash."""
    return hmac.compare_digest(hash_one_time_code(code), code_hash)
