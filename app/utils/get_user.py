# app/utils/get_user.py
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.db import get_db
from app.core.security import decode_token
from app.models.user_models import User

BEARER_PREFIX = "Bearer "


def _extract_token(token: Optional[str], authorization: Optional[str]) -> str:
    # plain `token` header first, then `Authorization: Bearer ...`
    if token:
        return token
    if authorization and authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip()
    raise HTTPException(status_code=401, detail="Missing access token")


async def get_current_user(
    request: Request,
    token: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active user whose token_version still matches."""
    try:
        payload = decode_token(_extract_token(token, authorization))
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))

    username = payload.get("sub")
    token_version = payload.get("token_version")
    if not username or token_version is None or payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = (await db.execute(select(User).where(User.username == username))).scalars().first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.token_version != token_version:
        raise HTTPException(status_code=401, detail="Token invalidated. Please log in again.")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User account is inactive.")

    # read by ActivityLoggerMiddleware
    request.state.user = user
    return user
