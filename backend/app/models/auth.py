from pydantic import BaseModel
from typing import Literal
from datetime import datetime

UserRole = Literal["admin", "free_tier", "pay_tier", "vip_tier"]


class UserOut(BaseModel):
    id: str
    email: str
    role: UserRole
    remaining_tokens: int
    tokens_used: int
    created_at: datetime
