import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import SQLModel, Field, Session, select
from pydantic import EmailStr, field_validator

from ..database import get_session
from ..models.user import User
from ..core.errors import AuthenticationError, ConflictError, ValidationError
from ..core.responses import ApiResponse, ok
from ..core.security import (
    get_current_user,
    hash_password,
    password_problem,
    user_from_token,
    verify_password,
)
from ..core.jwt import REFRESH_TOKEN_TYPE, create_access_token, create_refresh_token
from ..core.validators import currency_code
from ..config import settings


logger = logging.getLogger(__name__)

REFRESH_COOKIE = "refresh_token"

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
)


class RegisterIn(SQLModel):
    email: EmailStr = Field(index=False)
    password: str = Field(max_length=128)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    default_currency: str = "USD"

    @field_validator("default_currency")
    @classmethod
    def check_currency(cls, value):
        return currency_code(value.strip().upper())


class UserRead(SQLModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    default_currency: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class LoginIn(SQLModel):
    email: EmailStr
    password: str


class AuthOut(SQLModel):
    user: UserRead
    access_token: str
    token_type: str = "bearer"


class AccessTokenOut(SQLModel):
    access_token: str
    token_type: str = "bearer"


class TokenOut(SQLModel):
    access_token: str
    token_type: str


def _authenticate(session: Session, email: str, password: str) -> User:
    email_norm = email.strip().lower()
    user = session.exec(select(User).where(User.email == email_norm)).first()
    if user is None or user.deleted_at is not None or not verify_password(password, user.hashed_password):
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")
    return user


def _token_claims(user: User) -> dict:
    return {"sub": str(user.id), "email": user.email}


def _set_refresh_cookie(response: Response, user: User) -> None:
    # cross-site frontends in production need SameSite=None and Secure
    is_prod = settings.is_production
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=create_refresh_token(_token_claims(user)),
        httponly=True,
        secure=is_prod,
        samesite="none" if is_prod else "lax",
        max_age=60 * 60 * 24 * settings.refresh_token_expire_days,
        path="/",
    )


@router.post(
    "/register",
    response_model=ApiResponse[UserRead],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def register_user(
    payload: RegisterIn,
    session: Session = Depends(get_session),
):
    problem = password_problem(payload.password)
    if problem:
        raise ValidationError(problem)

    email_norm = payload.email.strip().lower()
    existing = session.exec(select(User).where(User.email == email_norm)).first()
    if existing is not None:
        raise ConflictError("Email already registered")

    now = datetime.utcnow()
    user = User(
        id=uuid.uuid4(),
        email=email_norm,
        hashed_password=hash_password(payload.password),
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        default_currency=payload.default_currency,
        created_at=now,
        updated_at=now,
        deleted_at=None,
    )

    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Registered user %s", user.id)
    return ok(UserRead.model_validate(user), message="User registered successfully")


@router.post(
    "/login",
    response_model=ApiResponse[AuthOut],
    response_model_exclude_none=True,
)
def login(payload: LoginIn, response: Response, session: Session = Depends(get_session)):
    user = _authenticate(session, payload.email, payload.password)

    user.last_login = datetime.utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)

    _set_refresh_cookie(response, user)
    logger.info("User %s logged in", user.id)
    return ok(
        AuthOut(user=UserRead.model_validate(user), access_token=create_access_token(_token_claims(user))),
        message="Login successful",
    )


@router.post(
    "/refresh",
    response_model=ApiResponse[AccessTokenOut],
    response_model_exclude_none=True,
)
def refresh(
    response: Response,
    refresh_token: Optional[str] = Cookie(default=None),
    session: Session = Depends(get_session),
):
    """Exchange the refresh cookie for a new access token and rotate the cookie."""
    if not refresh_token:
        raise AuthenticationError("Refresh token required")
    try:
        user = user_from_token(session, refresh_token, REFRESH_TOKEN_TYPE)
    except HTTPException as e:
        response.delete_cookie(key=REFRESH_COOKIE, path="/")
        raise AuthenticationError(e.detail)

    _set_refresh_cookie(response, user)
    return ok(AccessTokenOut(access_token=create_access_token(_token_claims(user))))


@router.get(
    "/me",
    response_model=ApiResponse[UserRead],
    response_model_exclude_none=True,
)
def me(current_user: User = Depends(get_current_user)):
    return ok(UserRead.model_validate(current_user))


@router.post(
    "/logout",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def logout(response: Response):
    response.delete_cookie(key=REFRESH_COOKIE, path="/")
    return ok(message="Logged out")


@router.post(
    "/token",
    response_model=TokenOut,
    status_code=status.HTTP_200_OK,
)
def token(form_data: OAuth2PasswordRequestForm = Depends(), session: Session = Depends(get_session)):
    # OAuth2PasswordRequestForm carries the email in 'username'
    user = _authenticate(session, form_data.username, form_data.password)
    return TokenOut(access_token=create_access_token(_token_claims(user)), token_type="bearer")
