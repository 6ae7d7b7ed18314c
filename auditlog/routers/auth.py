"""
Authentication endpoints: operator login.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from auditlog.auth import (
    LoginRequest, Token, User, authenticate_operator, create_access_token,
    get_admin_user_or_token
)
from auditlog.config import Settings
from auditlog.dependencies import get_app_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["authentication"])


def _issue_token(user: User, settings: Settings) -> Token:
    access_token = create_access_token(
        data={"sub": user.username, "role": user.role},
        settings=settings,
        expires_delta=timedelta(minutes=settings.jwt_expire_minutes)
    )

    logger.info(f"User logged in: {user.username}")

    return Token(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.jwt_expire_minutes * 60
    )


@router.post("/login", response_model=Token)
async def login(
    login_request: LoginRequest,
    settings: Settings = Depends(get_app_settings)
):
    """
    Authenticate the operator and return a JWT access token.

    **Request Body:**
    - `username`: Operator username
    - `password`: Operator password

    **Returns:**
    - `access_token`: JWT token for authentication
    - `token_type`: "bearer"
    - `expires_in`: Token expiration time in seconds

    **Usage:**
    ```
    curl -X POST http://localhost/v1/auth/login \\
      -H "Content-Type: application/json" \\
      -d '{"username": "admin", "password": "your-password"}'
    ```

    Then use the token:
    ```
    curl -X DELETE "http://localhost/v1/events?before=2025-01-01T00:00:00Z" \\
      -H "Authorization: Bearer <your-token>"
    ```
    """
    user = authenticate_operator(settings, login_request.username, login_request.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _issue_token(user, settings)


@router.post("/login/form", response_model=Token)
async def login_form(
    form_data: OAuth2PasswordRequestForm = Depends(),
    settings: Settings = Depends(get_app_settings)
):
    """
    OAuth2 compatible login endpoint (form data).

    Used by the Swagger UI "Authorize" button.
    """
    user = authenticate_operator(settings, form_data.username, form_data.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _issue_token(user, settings)


@router.get("/me", response_model=User)
async def get_me(current_user: User = Depends(get_admin_user_or_token)):
    """Return the authenticated operator."""
    return current_user
