"""
Security utilities for authentication.
Password hashing, JWT access/refresh tokens and one-time email tokens.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
import bcrypt
from fastapi.security import HTTPBearer
import secrets
import hashlib

from core.errors import AuthenticationError
import config

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=12
)

# Bearer header is optional: the browser client authenticates with the token cookie
security_optional = HTTPBearer(auto_error=False)

SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


# Password utilities
def validate_password(password: str) -> Tuple[bool, Optional[str]]:
    """
    Validate password strength.

    Requirements:
    - Minimum 6 characters
    - At least 1 number
    - At least 1 special character
    - Maximum 72 bytes (bcrypt limit)

    Args:
        password: Password to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password is required"

    if len(password) < 6:
        return False, "Password must be at least 6 characters long"

    if len(password.encode('utf-8')) > 72:
        return False, "Password cannot be longer than 72 bytes. Please use a shorter password."

    if not any(char.isdigit() for char in password):
        return False, "Password must contain at least one number"

    if not any(char in SPECIAL_CHARACTERS for char in password):
        return False, f"Password must contain at least one special character ({SPECIAL_CHARACTERS})"

    return True, None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # Hash not produced by bcrypt directly (legacy passlib format)
        return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Note: Password validation should be done before calling this function.
    Use validate_password() to check password requirements.
    """
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        raise ValueError("Password cannot be longer than 72 bytes. Please use a shorter password.")

    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


# JWT Token utilities
def _encode_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    now = datetime.utcnow()
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
        # Unique id so two tokens issued in the same second never collide
        "jti": secrets.token_hex(8),
    })
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Data to encode in token (``sub`` is the user id as a string)
        expires_delta: Optional expiration time (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT token
    """
    return _encode_token(
        data, "access", expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT refresh token (defaults to REFRESH_TOKEN_EXPIRE_DAYS)."""
    return _encode_token(
        data, "refresh", expires_delta or timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)
    )


def verify_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify a JWT access token.

    Raises:
        AuthenticationError: "Token has expired" or "Invalid token"
    """
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except JWTError:
        raise AuthenticationError("Invalid token")

    if payload.get("type") != "access" or not payload.get("sub"):
        raise AuthenticationError("Invalid token")
    return payload


def decode_refresh_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT refresh token.

    Returns:
        Decoded token data or None if invalid
    """
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        if payload.get("type") != "refresh":
            return None
        return payload
    except JWTError:
        return None


# Opaque token utilities (refresh token storage, password reset, email verification)
def hash_token(token: str) -> str:
    """sha256 hex digest used to store tokens at rest."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_one_time_token() -> Tuple[str, str]:
    """
    Generate a random token for emailed links.

    Returns:
        Tuple of (raw_token, token_hash); only the hash is persisted
    """
    raw = secrets.token_hex(32)
    return raw, hash_token(raw)
