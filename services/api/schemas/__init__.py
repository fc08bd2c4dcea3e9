"""
Pydantic schemas for API request/response validation.
"""
from .auth import LoginOut, LoginRequest, UserOut
from .history import EditOut, HistoryEdit
from .shift import BoardCreate, CartDelta, KPIGradeOut, SaveOut, ShiftCreate, ShiftOut

__all__ = [
    "LoginRequest",
    "LoginOut",
    "UserOut",
    "HistoryEdit",
    "EditOut",
    "ShiftCreate",
    "BoardCreate",
    "CartDelta",
    "KPIGradeOut",
    "ShiftOut",
    "SaveOut",
]
