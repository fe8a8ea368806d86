"""Vendor authentication: password hashing and JWT access/refresh tokens."""

import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Compared against when the email is unknown so login timing does not leak accounts
DUMMY_HASH = "$2b$12$LQv3c1yqBWVHxkd0LHAkCOYz6TtxMQJqhN8/X4.F3z3z3z3z3z3z3"

_DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60
REFRESH_TOKEN_EXPIRE_DAYS = 7

TokenType = Literal["access", "refresh"]


class SecretKeyError(Exception):
    """Raised when SECRET_KEY is not configured outside debug mode."""


def _get_secret_key() -> str:
    """Resolve the signing key.

    Raises:
        SecretKeyError: If the default key would be used in production or
            with debug mode off.
    """
    secret_key = os.getenv("JWT_SECRET_KEY", os.getenv("SECRET_KEY", _DEFAULT_SECRET_KEY))
    debug_mode = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
    env = os.getenv("ENV", os.getenv("ENVIRONMENT", "development")).lower()

    if secret_key == _DEFAULT_SECRET_KEY:
        if env in ("production", "prod") or not debug_mode:
            raise SecretKeyError(
                "SECRET_KEY must be set to a secure value in production. "
                'Generate one with: python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        logger.warning("Using default SECRET_KEY; set SECRET_KEY or JWT_SECRET_KEY outside development.")

    return secret_key


SECRET_KEY = _get_secret_key()


class TokenData(BaseModel):
    """Claims carried by a vendor token."""

    vendor_id: int
    email: str


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RefreshTokenRequest(BaseModel):
    refresh_token: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def validate_password(password: str) -> tuple[bool, str]:
    """Check password complexity.

    Requires at least 8 characters with an uppercase letter, a lowercase
    letter, a digit and one of ``!@#$%^&*(),.?":{}|<>``.

    Returns:
        Tuple of (is_valid, error_message). If valid, error_message is empty.
    """
    if len(password) < 8:
        return False, "Password must be at least 8 characters"
    if not re.search(r"[A-Z]", password):
        return False, "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return False, "Password must contain at least one lowercase letter"
    if not re.search(r"\d", password):
        return False, "Password must contain at least one number"
    if not re.search(r'[!@#$%^&*(),.?":{}|<>]', password):
        return False, "Password must contain at least one special character"
    return True, ""


def _create_token(vendor_id: int, email: str, token_type: TokenType, lifetime: timedelta) -> str:
    claims = {
        "sub": str(vendor_id),
        "email": email,
        "exp": datetime.now(timezone.utc) + lifetime,
        "type": token_type,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(vendor_id: int, email: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a short-lived access token for a vendor.

    Args:
        vendor_id: The vendor's database ID
        email: The vendor's login email
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT
    """
    return _create_token(
        vendor_id, email, "access", expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def create_refresh_token(vendor_id: int, email: str, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        vendor_id, email, "refresh", expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
    )


def _decode_token(token: str, token_type: TokenType) -> Optional[TokenData]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    try:
        vendor_id = int(payload.get("sub", 0))
    except (TypeError, ValueError):
        return None
    if vendor_id == 0:
        return None
    return TokenData(vendor_id=vendor_id, email=payload.get("email", ""))


def decode_access_token(token: str) -> Optional[TokenData]:
    """Decode an access token; None if invalid, expired or a refresh token."""
    return _decode_token(token, "access")


def decode_refresh_token(token: str) -> Optional[TokenData]:
    """Decode a refresh token; None if invalid, expired or an access token."""
    return _decode_token(token, "refresh")
