"""
Pydantic schemas for login.
"""
from typing import List

from pydantic import BaseModel, Field

from models.user import Role


class LoginRequest(BaseModel):
    login: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    """User as returned by the API: never includes the password."""
    id: str
    login: str
    name: str
    role: Role
    capabilities: List[str] = []


class LoginOut(BaseModel):
    token: str
    user: UserOut
