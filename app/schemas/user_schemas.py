# app/schemas/user_schemas.py
from pydantic import BaseModel, ConfigDict
from typing import Optional

class UserLogin(BaseModel):
    username: str
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    role: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)

class MessageResponse(BaseModel):
    msg: str
