# app/services/auth_service.py
from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.user_models import User
from app.core.security import verify_password, create_access_token
from app.utils.activity_helpers import log_user_activity


async def authenticate_user(db: AsyncSession, username: str, password: str) -> User:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalars().first()
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials"
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive.")
    return user


def create_token_for(user: User) -> str:
    """
    Access token carrying token_version, so a logout invalidates it at once.
    """
    return create_access_token(
        {"sub": user.username, "user_id": user.id, "role": user.role},
        token_version=user.token_version,
    )


async def logout_user(db: AsyncSession, user: User) -> dict:
    user.token_version += 1
    await log_user_activity(db, user_id=user.id, username=user.username, message="Logged out")
    await db.commit()
    return {"msg": "Logged out successfully"}
