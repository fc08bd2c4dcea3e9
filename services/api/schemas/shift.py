"""
Pydantic schemas for the shift endpoints.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from models import AnalysisResult, Board, CartItem, HistoryEntry, Product


class ShiftCreate(BaseModel):
    """Open a new shift for the logged-in worker."""
    executor: Optional[str] = Field(
        None, description="Overrides the logged-in user's name on saved rows"
    )


class BoardCreate(BaseModel):
    """Board confirmation: dimensions in millimetres plus the batch it came from."""
    length: int = Field(..., description="Board length, mm")
    width: int = Field(..., description="Board width, mm")
    thickness: int = Field(..., description="Board thickness, mm")
    batch_number: str = Field("", description="Batch (partition) number")
    batch_id: Optional[str] = Field(
        None, description="Open batch id; supplies unit cost and KPI thresholds"
    )


class CartDelta(BaseModel):
    product_id: str = Field(..., min_length=1)
    delta: int = Field(..., description="+n / -n units; first add always starts at 1")
    product: Optional[Product] = Field(
        None, description="Client-cached product, used when the catalog is unavailable"
    )


class KPIGradeOut(BaseModel):
    level: str
    emoji: str
    send: bool


class ShiftOut(BaseModel):
    shift_id: str
    state: str
    executor: Optional[str] = None
    board: Optional[Board] = None
    cart: List[CartItem] = []
    item_count: int = 0
    result: Optional[AnalysisResult] = None
    yield_violation: Optional[str] = None
    yield_anomaly: bool = False
    can_save: bool = False


class SaveOut(BaseModel):
    ok: bool
    synced: bool
    message: str
    state: str
    entry: Optional[HistoryEntry] = None
    kpi: float = 0
    kpi_grade: Optional[KPIGradeOut] = None
