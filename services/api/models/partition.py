# services/api/models/partition.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Partition(BaseModel):
    """
    Batch of boards, managed in the `Partitions` sheet.

    Nominal dims pre-fill the board form; zero means "not fixed for this batch".
    """
    id: str
    date: str = ""
    volume: float = 0
    length: int = 0
    width: int = 0
    thickness: int = 0
    start_board_id: str = ""
    end_board_id: str = ""
    close: bool = False
    unit_cost: Optional[float] = None      # cost per m3 of unprocessed wood
    bad_good_kpi: Optional[str] = None     # JSON string with per-batch KPISettings


class KPIConfig(BaseModel):
    emoji: str
    threshold: float
    send: bool = False
    condition: str = ">="   # one of >=, <, >, <=


class KPISettings(BaseModel):
    """
    KPI grading thresholds. Stored in the sheet as JSON with the
    key "very bad", hence the alias.
    """
    model_config = ConfigDict(populate_by_name=True)

    good: KPIConfig
    ok: KPIConfig
    bad: KPIConfig
    very_bad: KPIConfig = Field(..., alias="very bad")


DEFAULT_KPI_SETTINGS = KPISettings(
    good=KPIConfig(emoji="🟢", threshold=1.5, send=False, condition=">="),
    ok=KPIConfig(emoji="🟡", threshold=1.2, send=False, condition=">="),
    bad=KPIConfig(emoji="🟠", threshold=1.0, send=False, condition="<"),
    very_bad=KPIConfig(emoji="🔴", threshold=0.5, send=True, condition="<"),
)
