"""
Earnings, yield and KPI arithmetic for one board and its cart.

Everything here is pure: safe to call on every cart mutation.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from models import Board, CartItem
from models.partition import KPIConfig, KPISettings
from core.units import MM3_PER_M3, volume_mm3


@dataclass(frozen=True)
class ShiftStats:
    earnings: float = 0
    yield_percentage: int = 0
    board_volume_m3: float = 0
    products_volume_m3: float = 0


@dataclass(frozen=True)
class KPIGrade:
    level: str      # "good" | "ok" | "bad" | "very bad"
    emoji: str
    send: bool


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_stats(board: Optional[Board], cart: Iterable[CartItem]) -> ShiftStats:
    """
    Derive earnings, volumes and yield.

    Product volume is accumulated in mm3 and converted once. Yield is not
    clamped: more product than board (a data-entry error) shows up as >100.
    """
    earnings = 0.0
    products_mm3 = 0.0
    for item in cart:
        earnings += item.product.price * item.quantity
        dims = item.product.dimensions
        products_mm3 += volume_mm3(dims.length, dims.width, dims.thickness) * item.quantity

    board_mm3 = volume_mm3(board.length, board.width, board.thickness) if board else 0

    yield_percentage = round_half_up(products_mm3 / board_mm3 * 100) if board_mm3 > 0 else 0

    return ShiftStats(
        earnings=earnings,
        yield_percentage=yield_percentage,
        board_volume_m3=board_mm3 / MM3_PER_M3,
        products_volume_m3=products_mm3 / MM3_PER_M3,
    )


def yield_band_violation(yield_percentage: float, min_yield: float, max_yield: float) -> Optional[str]:
    """Return "low" / "high" when outside [min_yield, max_yield], else None."""
    if yield_percentage < min_yield:
        return "low"
    if yield_percentage > max_yield:
        return "high"
    return None


def is_yield_anomaly(yield_percentage: float) -> bool:
    # More finished volume than input volume: recorded as-is, flagged for review.
    return yield_percentage > 100


def board_cost(unit_cost: Optional[float], board_volume_m3: float) -> float:
    if not unit_cost or board_volume_m3 <= 0:
        return 0
    return unit_cost * board_volume_m3


def compute_kpi(earnings: float, board_volume_m3: float, unit_cost: Optional[float]) -> float:
    """
    KPI = product value / board cost. 0 when the batch has no unit cost,
    the board has no volume, or nothing was produced.
    """
    cost = board_cost(unit_cost, board_volume_m3)
    if cost <= 0 or earnings <= 0:
        return 0
    return earnings / cost


def _check(kpi: float, cfg: KPIConfig) -> bool:
    if cfg.condition == ">=":
        return kpi >= cfg.threshold
    if cfg.condition == "<=":
        return kpi <= cfg.threshold
    if cfg.condition == ">":
        return kpi > cfg.threshold
    if cfg.condition == "<":
        return kpi < cfg.threshold
    return False


def grade_kpi(kpi: Optional[float], settings: KPISettings) -> KPIGrade:
    """
    Order matters: good, ok, then "very bad" before "bad" because it is the
    narrower band. Anything unmatched (or a missing KPI) grades as bad.
    """
    if kpi is None or math.isnan(kpi):
        return KPIGrade("bad", settings.bad.emoji, settings.bad.send)

    for level, cfg in (
        ("good", settings.good),
        ("ok", settings.ok),
        ("very bad", settings.very_bad),
        ("bad", settings.bad),
    ):
        if _check(kpi, cfg):
            return KPIGrade(level, cfg.emoji, cfg.send)

    return KPIGrade("bad", settings.bad.emoji, settings.bad.send)
