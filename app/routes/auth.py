from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.core.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from app.database.connection import get_db
from app.dependencies.auth import get_user_by_username, require_admin
from app.models.user import User
from app.schemas.user import RefreshRequest, Token, UserCreate, UserResponse

router = APIRouter(prefix="/auth", tags=["Auth"])


def _claims(user: User) -> dict:
    return {"sub": user.username, "role": user.role, "uid": user.id}


@router.post("/register", response_model=UserResponse)
def register_user(data: UserCreate, db: Session = Depends(get_db)):
    if get_user_by_username(db, data.username):
        raise HTTPException(status_code=400, detail="Username already taken")
    if data.role != "user":
        raise HTTPException(status_code=403, detail="Admins are created by another admin")

    user = User(
        username=data.username,
        email=data.email,
        hashed_password=get_password_hash(data.password),
        role="user",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.post("/admins", response_model=UserResponse, dependencies=[Depends(require_admin)])
def create_admin(data: UserCreate, db: Session = Depends(get_db)):
    if get_user_by_username(db, data.username):
        raise HTTPException(status_code=400, detail="Username already taken")

    user = User(
        username=data.username,
        email=data.email,
        hashed_password=get_password_hash(data.password),
        role=data.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.post("/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = get_user_by_username(db, form_data.username)

    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return Token(
        access_token=create_access_token(_claims(user)),
        refresh_token=create_refresh_token(_claims(user)),
    )


@router.post("/refresh", response_model=Token)
def refresh_token(body: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(body.refresh_token, expected_type=REFRESH)
    if not payload.username:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")

    user = get_user_by_username(db, payload.username)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")

    return Token(access_token=create_access_token(_claims(user)))
