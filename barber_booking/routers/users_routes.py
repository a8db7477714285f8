# barber_booking/routers/users_routes.py

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select

from barber_booking.auth import create_access_token, get_current_user, hash_password, verify_password
from barber_booking.db import get_session
from barber_booking.models import User
from barber_booking.schemas import Token, UserCreate, UserPublic, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["users"],
)


@router.post("/auth/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
):
    # OAuth2 "password" flow sends the email as username
    user = session.exec(
        select(User).where(User.email == form_data.username)
    ).first()

    if user is None or not verify_password(form_data.password, user.password_hash):
        logger.info("Failed login for %s", form_data.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return {"access_token": create_access_token({"sub": user.email}), "token_type": "bearer"}


@router.get("/me", response_model=UserPublic)
def me(current_user: dict = Depends(get_current_user)):
    return current_user


@router.post("/users", status_code=201, response_model=UserPublic)
def create_user(
    user: UserCreate,
    session: Session = Depends(get_session),
):
    if user.role == UserRole.admin:
        raise HTTPException(status_code=403, detail="Admin accounts cannot self-register")

    existing = session.exec(
        select(User).where(User.email == user.email)
    ).first()
    if existing is not None:
        raise HTTPException(status_code=409, detail="Email already registered")

    db_user = User(
        email=user.email,
        password_hash=hash_password(user.password),
        role=user.role.value,
    )
    session.add(db_user)
    session.commit()
    session.refresh(db_user)

    logger.info("Registered %s %s", db_user.role, db_user.id)
    return db_user
