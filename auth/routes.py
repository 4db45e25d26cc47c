"""
Account routes for the invoice owner: register, login, current user.

Route prefix: /api/v1/auth
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id
from auth.jwt import create_token
from auth.password import hash_password, needs_rehash, verify_password
from database.helpers import to_uuid
from database.models import User
from utils.exceptions import AuthenticationRequired, Conflict

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=2, max_length=64)
    email: str = Field(..., min_length=5, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class AuthResponse(BaseModel):
    user_id: str
    display_name: str
    email: str
    token: Optional[str] = None


async def _user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


def _account(user: User, *, with_token: bool = True) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "user_id": str(user.user_id),
        "display_name": user.display_name,
        "email": user.email,
    }
    if with_token:
        body["token"] = create_token(str(user.user_id))
    return body


@router.post("/register", response_model=AuthResponse)
async def register(
    req: RegisterRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    if await _user_by_email(session, req.email) is not None:
        raise Conflict("Email already registered")

    user = User(
        user_id=uuid.uuid4(),
        email=req.email,
        display_name=req.username,
        password_hash=hash_password(req.password),
    )
    session.add(user)
    await session.flush()
    logger.info("Registered user %s", user.user_id)
    return _account(user)


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Email + password; the stored hash is upgraded when the work factor changed."""
    user = await _user_by_email(session, req.email)
    if user is None or not verify_password(req.password, user.password_hash):
        raise AuthenticationRequired("Invalid email or password")

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(req.password)
        logger.info("Upgraded password hash for user %s", user.user_id)
    return _account(user)


@router.get("/me", response_model=AuthResponse, response_model_exclude_none=True)
async def me(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    try:
        user = await session.get(User, to_uuid(user_id))
    except ValueError:
        user = None
    if user is None:
        raise AuthenticationRequired("Unknown user")
    return _account(user, with_token=False)
