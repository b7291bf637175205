"""
Accounts and bearer tokens.

Access tokens are HS256 JWTs carrying ``typ=access``. OAuth state tokens are
signed with the same secret, so the type claim is what keeps one from being
accepted as the other.
"""

from datetime import datetime, timedelta
from typing import Optional
import uuid

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fasterclaw.config import settings
from fasterclaw.db.models import User
from fasterclaw.errors import InvalidStateError

ACCESS_TOKEN_TYPE = "access"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: str) -> str:
    now = datetime.utcnow()
    claims = {
        "typ": ACCESS_TOKEN_TYPE,
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[str]:
    """User id from a valid access token, None for anything else."""
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if claims.get("typ") != ACCESS_TOKEN_TYPE:
        return None
    return claims.get("sub")


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, email: str, password: str, name: Optional[str] = None) -> User:
    """Create an account. Raises InvalidStateError when the email is taken."""
    if await get_user_by_email(db, email) is not None:
        raise InvalidStateError("Email already registered")
    user = User(email=normalize_email(email), hashed_password=hash_password(password), name=name)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user
