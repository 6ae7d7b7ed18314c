"""
Operator authentication with JWT and password hashing.
"""

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from auditlog.config import Settings
from auditlog.dependencies import get_app_settings

logger = logging.getLogger(__name__)

# OAuth2 scheme for token extraction; missing tokens are not an error here,
# anonymous requests are logged as the guest actor.
oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="/v1/auth/login", auto_error=False)

admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)

ADMIN_ROLES = ("admin",)


# ============================================================================
# Models
# ============================================================================

class Token(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenData(BaseModel):
    """Data extracted from JWT token."""
    username: Optional[str] = None
    role: Optional[str] = None
    exp: Optional[datetime] = None


class User(BaseModel):
    """An authenticated principal."""
    username: str
    role: str = "user"


class LoginRequest(BaseModel):
    """Login request body."""
    username: str
    password: str


# ============================================================================
# Password Functions
# ============================================================================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash using bcrypt."""
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


# ============================================================================
# JWT Functions
# ============================================================================

def create_access_token(
    data: dict,
    settings: Settings,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode
        settings: Provides the signing key and algorithm
        expires_delta: Token expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)

    to_encode.update({"exp": expire})

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str, settings: Settings) -> Optional[TokenData]:
    """
    Decode and validate a JWT access token.

    Returns:
        TokenData if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm]
        )
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    username = payload.get("sub")
    if username is None:
        return None

    return TokenData(username=username, role=payload.get("role", "user"), exp=payload.get("exp"))


def authenticate_operator(settings: Settings, username: str, password: str) -> Optional[User]:
    """
    Check operator credentials against the configured bcrypt hash.

    Returns:
        User object if authenticated, None otherwise
    """
    if not settings.operator_password_hash:
        logger.warning("Login attempted but no operator password is configured")
        return None

    if not hmac.compare_digest(username.encode(), settings.operator_username.encode()):
        logger.warning(f"Login attempt for unknown user: {username}")
        return None

    if not verify_password(password, settings.operator_password_hash):
        logger.warning(f"Invalid password for user: {username}")
        return None

    logger.info(f"User authenticated: {username}")
    return User(username=username, role="admin")


# ============================================================================
# Dependencies
# ============================================================================

async def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme_optional),
    settings: Settings = Depends(get_app_settings)
) -> Optional[User]:
    """The bearer-token user, or None for anonymous requests and bad tokens."""
    if not token:
        return None

    token_data = decode_access_token(token, settings)
    if token_data is None:
        return None

    return User(username=token_data.username, role=token_data.role or "user")


async def get_admin_user_or_token(
    user: Optional[User] = Depends(get_optional_user),
    x_admin_token: Optional[str] = Depends(admin_token_header),
    settings: Settings = Depends(get_app_settings)
) -> User:
    """
    Dependency that accepts either an admin JWT or the X-Admin-Token header.

    Priority:
    1. JWT Bearer token (preferred)
    2. X-Admin-Token header
    """
    if user is not None:
        if user.role in ADMIN_ROLES:
            return user
        logger.warning(f"Non-admin user {user.username} attempted operator action")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )

    if x_admin_token and hmac.compare_digest(x_admin_token.encode(), settings.admin_token.encode()):
        return User(username="token_admin", role="admin")

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Use Bearer token or X-Admin-Token",
        headers={"WWW-Authenticate": "Bearer"},
    )
