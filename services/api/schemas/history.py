"""
Pydantic schemas for editing saved history entries.
"""
from typing import List

from pydantic import BaseModel, Field

from models import HistoryEntry
from .shift import CartDelta


class HistoryEdit(BaseModel):
    """
    Changes applied to a saved entry's cart, in order:
    `clear` first, then `remove`, then each delta.
    An edit that leaves the cart empty soft-deletes the entry.
    """
    clear: bool = False
    remove: List[str] = Field(default_factory=list, description="product ids to drop")
    changes: List[CartDelta] = Field(default_factory=list)


class EditOut(BaseModel):
    ok: bool
    message: str
    entry: HistoryEntry
