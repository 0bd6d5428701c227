# app/routers/auth_router.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.db import get_db
from app.schemas.user_schemas import UserLogin, TokenResponse, UserOut, MessageResponse
from app.services.auth_service import authenticate_user, create_token_for, logout_user
from app.utils.get_user import get_current_user

router = APIRouter(prefix="/auth", tags=["Auth"])

@router.post("/login", response_model=TokenResponse)
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await authenticate_user(db, data.username, data.password)
    return TokenResponse(access_token=create_token_for(user))

@router.get("/me", response_model=UserOut)
async def me(current_user = Depends(get_current_user)):
    return UserOut.model_validate(current_user)

@router.post("/logout", response_model=MessageResponse)
async def logout(db: AsyncSession = Depends(get_db), current_user = Depends(get_current_user)):
    """
    Bumps the user's token_version, which invalidates every issued access token.
    """
    return await logout_user(db, current_user)
