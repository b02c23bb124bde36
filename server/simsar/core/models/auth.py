from typing import Literal
from uuid import UUID

from pydantic import BaseModel

UserRole = Literal["admin", "user", "broker"]


class TokenPayload(BaseModel):
    sub: str  # user_id
    email: str
    role: UserRole
    exp: int


class CurrentUser(BaseModel):
    id: UUID
    email: str
    role: UserRole
