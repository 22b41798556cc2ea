# app/core/security.py
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt, JWTError
from passlib.context import CryptContext

from app.core.config import settings
from app.schemas.user import TokenData

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


# Password hashing
def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _encode(data: dict, token_type: str, expires_delta: timedelta) -> str:
    payload = dict(data)
    payload.update({"exp": datetime.utcnow() + expires_delta, "typ": token_type})
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    return _encode(data, ACCESS, timedelta(minutes=minutes))


def create_refresh_token(data: dict, expires_days: Optional[int] = None) -> str:
    days = expires_days or settings.REFRESH_TOKEN_EXPIRE_DAYS
    return _encode(data, REFRESH, timedelta(days=days))


def decode_token(token: str, expected_type: str = ACCESS) -> TokenData:
    """Empty TokenData when the token is invalid, expired or of the wrong type."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return TokenData()
    if payload.get("typ") != expected_type:
        return TokenData()
    return TokenData(username=payload.get("sub"), role=payload.get("role"), user_id=payload.get("uid"))
