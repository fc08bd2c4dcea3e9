from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _board_id() -> str:
    return uuid4().hex


class Dimensions(BaseModel):
    """
    Nominal product dimensions in millimetres.

    Width/thickness may be approximations for irregular shapes
    (axe handles etc.), so floats are allowed.
    """
    model_config = ConfigDict(frozen=True)

    length: float = 0
    width: float = 0
    thickness: float = 0


class Product(BaseModel):
    """
    Catalog entry from the `Products` sheet. Read-only for the ledger.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str = ""
    dimensions: Dimensions = Field(default_factory=Dimensions)
    price: float = 0
    image: str = ""


class CartItem(BaseModel):
    """Units of one finished product cut from the current board."""
    model_config = ConfigDict(frozen=True)

    product: Product
    quantity: int = Field(..., ge=1)


class Board(BaseModel):
    """
    One unprocessed plank tracked through a shift.

    `id` is an opaque key; `created_at` is the elapsed-time anchor.
    Immutable once confirmed: a new board means a new record.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_board_id)
    created_at: datetime = Field(default_factory=_utc_now)
    length: int
    width: int
    thickness: int
    batch_number: str = ""

    @property
    def dims_label(self) -> str:
        return f"{self.length}x{self.width}x{self.thickness}"


class AnalysisResult(BaseModel):
    """
    Derived statistics for (board, cart) plus free-text commentary.
    Never mutated independently of the cart; always recomputed.
    """
    earnings: float = 0
    yield_percentage: int = 0
    board_volume_m3: float = 0
    products_volume_m3: float = 0
    message: str = ""
    motivational_quote: str = ""


class TimeStats(BaseModel):
    duration_fetch: int = 0     # seconds spent fetching the board
    duration_measure: int = 0   # seconds in the product grid
    duration_sawing: int = 0    # seconds between review and save


class SaveMetadata(BaseModel):
    """Extra columns written with a new shift row."""
    executor: Optional[str] = None
    time_stats: TimeStats = Field(default_factory=TimeStats)
    unit_cost: Optional[float] = None
    board_cost: Optional[float] = None
    kpi: Optional[float] = None


class HistoryEntry(BaseModel):
    """
    Persisted snapshot of one shift. Keyed by `board_id`:
    a second save for the same board overwrites the first.
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    board_id: str
    timestamp: datetime = Field(default_factory=_utc_now)
    batch_number: str = ""
    executor: Optional[str] = None

    earnings: float = 0
    yield_percentage: int = 0
    item_count: int = 0
    board_dims: str = ""        # "2000x150x50"
    board_volume: float = 0     # m3

    cart: List[CartItem] = Field(default_factory=list)
    time_stats: Optional[TimeStats] = None

    # "active" | "deleted" (soft delete keeps the row for audit)
    status: str = "active"

    @property
    def is_deleted(self) -> bool:
        return self.status == "deleted"


__all__ = [
    "Dimensions",
    "Product",
    "CartItem",
    "Board",
    "AnalysisResult",
    "TimeStats",
    "SaveMetadata",
    "HistoryEntry",
]
