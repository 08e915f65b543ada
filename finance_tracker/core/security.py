import hashlib
import hmac
import os
import re
from typing import Optional
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session, select
from jose.exceptions import ExpiredSignatureError, JWTError

from ..database import get_session
from ..models.user import User
from .jwt import ACCESS_TOKEN_TYPE, decode_token


ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 100_000
SALT_BYTES = 16

_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def _pbkdf2_hash(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, ITERATIONS)


def hash_password(password: str) -> str:
    salt = os.urandom(SALT_BYTES)
    digest = _pbkdf2_hash(password, salt)
    return f"{ALGORITHM}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algorithm, salt_hex, hash_hex = stored.strip().split("$")
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    if algorithm != ALGORITHM:
        return False
    return hmac.compare_digest(_pbkdf2_hash(password, salt), expected)


def password_problem(password: str) -> Optional[str]:
    """Return a human readable reason the password is rejected, or None."""
    if any(c.isspace() for c in password):
        return "Password must not contain whitespace"
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    if not (re.search(r"[a-zA-Z]", password) and re.search(r"\d", password) and _SPECIAL_CHARS.search(password)):
        return "Password must contain at least one letter, one number, and one special character"
    return None


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _raise_unauthorized(detail: str):
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_from_token(session: Session, token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> User:
    try:
        payload = decode_token(token, expected_type)
    except ExpiredSignatureError:
        _raise_unauthorized("Token expired")
    except JWTError:
        _raise_unauthorized("Invalid token")

    sub = payload.get("sub")
    if sub is None:
        _raise_unauthorized("Invalid token: missing subject")
    try:
        user_id = uuid.UUID(str(sub))
    except ValueError:
        _raise_unauthorized("Invalid token: bad subject format")

    user = session.exec(select(User).where(User.id == user_id)).first()
    if user is None or not user.is_active or user.deleted_at is not None:
        _raise_unauthorized("User not found or inactive")
    return user


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    if not token:
        _raise_unauthorized("Authentication required")
    return user_from_token(session, token)
