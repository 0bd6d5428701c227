# app/schemas/response_schemas.py
from pydantic import BaseModel
from typing import Generic, TypeVar, Optional

T = TypeVar("T")

class ResponseMessage(BaseModel, Generic[T]):
    message: str
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    success: bool = False
    code: str
    message: str
