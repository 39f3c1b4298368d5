"""
Account endpoints: register, login, refresh, logout, me.

Login follows the OAuth2 password flow with the email in the `username`
form field. It answers with a short-lived bearer token and stores a
refresh token in an httpOnly cookie; /refresh accepts that cookie or the
token in the JSON body.
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select

from bookreview.config import get_settings
from bookreview.dependencies import ActiveUser, DbSession
from bookreview.models.user import User
from bookreview.schemas.user import (
    RefreshTokenRequest,
    TokenResponse,
    UserCreate,
    UserResponse,
)
from bookreview.services.rate_limiter import limiter
from bookreview.services.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
    verify_token_type,
)

logger = logging.getLogger(__name__)
settings = get_settings()

REFRESH_COOKIE = "refresh_token"

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token({"sub": str(user.id)}),
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
    )


def _cookie_options() -> dict:
    return {"httponly": True, "secure": settings.is_production, "samesite": "lax"}


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
    responses={409: {"description": "Email or username already in use"}},
)
@limiter.limit("5/minute")
def register(request: Request, user_data: UserCreate, db: DbSession) -> UserResponse:
    """
    Register with email, username, password and name.

    Passwords need 6+ characters with an upper-case letter, a lower-case
    letter and a digit. Usernames are 3-30 letters, digits or underscores
    and are stored lower-case.
    """
    conflicts = (
        (User.email == user_data.email, "Email already registered"),
        (User.username == user_data.username, "Username already taken"),
    )
    for clause, detail in conflicts:
        if db.execute(select(User.id).where(clause)).first() is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    user = User(
        **user_data.model_dump(exclude={"password"}),
        hashed_password=hash_password(user_data.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"Registered user {user.id} ({user.username})")
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenResponse, summary="Exchange credentials for tokens")
@limiter.limit("10/minute")
def login(
    request: Request,
    response: Response,
    db: DbSession,
    form_data: OAuth2PasswordRequestForm = Depends(),
) -> TokenResponse:
    user = db.execute(
        select(User).where(User.email == form_data.username)
    ).scalar_one_or_none()

    if user is None or not verify_password(form_data.password, user.hashed_password):
        logger.warning(f"Failed login for {form_data.username}")
        raise _unauthorized("Incorrect email or password")
    if not user.is_active:
        logger.warning(f"Login refused for inactive user {user.id}")
        raise _unauthorized("Account is inactive")

    response.set_cookie(
        key=REFRESH_COOKIE,
        value=create_refresh_token({"sub": str(user.id)}),
        max_age=settings.refresh_token_expire_days * 86400,
        **_cookie_options(),
    )
    user.last_login_at = datetime.now(UTC)
    db.commit()

    logger.info(f"User {user.id} logged in")
    return _token_response(user)


@router.post("/refresh", response_model=TokenResponse, summary="Issue a new access token")
@limiter.limit(settings.rate_limit_default)
def refresh_token(
    request: Request,
    db: DbSession,
    body: RefreshTokenRequest | None = None,
) -> TokenResponse:
    """Body token wins over the cookie when both are sent."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise _unauthorized("Refresh token required")

    payload = verify_token_type(token, "refresh")
    if not payload or not payload.get("sub"):
        raise _unauthorized("Invalid or expired refresh token")

    user = db.get(User, int(payload["sub"]))
    if user is None or not user.is_active:
        raise _unauthorized("Token is invalid or user no longer exists")

    logger.info(f"Access token refreshed for user {user.id}")
    return _token_response(user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, summary="Drop the refresh cookie")
@limiter.limit(settings.rate_limit_default)
def logout(request: Request, response: Response, current_user: ActiveUser) -> None:
    # Access tokens are stateless and simply run out
    response.delete_cookie(key=REFRESH_COOKIE, **_cookie_options())
    logger.info(f"User {current_user.id} logged out")


@router.get("/me", response_model=UserResponse, summary="Current user profile")
@limiter.limit(settings.rate_limit_default)
def get_me(request: Request, current_user: ActiveUser) -> UserResponse:
    return UserResponse.model_validate(current_user)
