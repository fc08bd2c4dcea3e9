# services/api/models/user.py
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    OWNER = "owner"
    EMPLOYEE = "employee"
    ADMIN = "admin"


class User(BaseModel):
    """
    Row from the `Users` sheet.

    `password` is whatever the sheet holds: cleartext or a sha256 hex digest.
    It is never returned by the API.
    """
    id: str = ""
    login: str
    name: str = ""
    role: Role = Role.EMPLOYEE
    password: str = ""
