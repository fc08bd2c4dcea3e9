# services/api/core/analytics.py
"""
Aggregates over the History sheet for the owner dashboard.

Rows come in as the plain dicts returned by `fetch_full_history`
(sheet column names: timestamp, executor, boardVolumeM3, ...).
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from models.converters import _safe_float
from models.partition import DEFAULT_KPI_SETTINGS, KPISettings
from core.stats import grade_kpi

logger = logging.getLogger(__name__)

UNKNOWN_EXECUTOR = "Unknown"


class ExecutorStats(BaseModel):
    name: str
    total_boards: int = 0
    total_volume_in: float = 0
    total_volume_out: float = 0
    avg_yield: float = 0
    total_earnings: float = 0
    total_board_cost: float = 0


class ProductStats(BaseModel):
    product: str
    total_quantity: float = 0
    total_amount: float = 0


class KPIStatusStats(BaseModel):
    level: str
    emoji: str
    count: int = 0
    total_earnings: float = 0
    total_board_cost: float = 0
    total_volume_in: float = 0
    avg_yield: float = 0


class HistorySummary(BaseModel):
    executors: List[ExecutorStats] = Field(default_factory=list)
    products: List[ProductStats] = Field(default_factory=list)
    kpi_statuses: List[KPIStatusStats] = Field(default_factory=list)
    total_volume_in: float = 0
    total_volume_out: float = 0
    total_earnings: float = 0
    total_board_cost: float = 0
    global_yield: float = 0
    row_count: int = 0


_LEVEL_ORDER = ("good", "ok", "bad", "very bad")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Accepts ISO timestamps ("2024-05-01T10:00:00Z") and the sheet's
    locale format ("01.05.2024, 10:00:00"). Returns None if neither parses.
    """
    if isinstance(value, datetime):
        return value
    s = str(value or "").strip()
    if not s:
        return None
    if "T" in s:
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
    for fmt in ("%d.%m.%Y, %H:%M:%S", "%d.%m.%Y, %H:%M", "%d.%m.%Y"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def _in_range(ts: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    # Naive sheet dates are compared naive; aware ones against aware bounds.
    def align(bound: datetime) -> datetime:
        if ts.tzinfo is None and bound.tzinfo is not None:
            return bound.replace(tzinfo=None)
        if ts.tzinfo is not None and bound.tzinfo is None:
            return bound.replace(tzinfo=ts.tzinfo)
        return bound

    if start is not None and ts < align(start):
        return False
    if end is not None and ts > align(end):
        return False
    return True


def product_quantities(raw: Any) -> Dict[str, tuple]:
    """
    Unpivot the products JSON column into {name: (quantity, amount)}.

    Two formats live in the sheet: the old {"name": 3} (no cost, amount 0)
    and the current {"name": {"count": 3, "cost": 120}}.
    """
    if not raw:
        return {}
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
    except ValueError as e:
        logger.warning("Unreadable products column %r: %s", raw, e)
        return {}
    if not isinstance(data, dict):
        return {}

    out = {}
    for name, value in data.items():
        if isinstance(value, dict) and "count" in value:
            qty = _safe_float(value.get("count"))
            out[name] = (qty, qty * _safe_float(value.get("cost")))
        else:
            out[name] = (_safe_float(value), 0.0)
    return out


def filter_rows(
    rows: Iterable[Dict[str, Any]],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Drop soft-deleted rows, then rows outside [start, end]."""
    out = []
    for row in rows:
        if str(row.get("status") or "").strip().lower() == "deleted":
            continue
        if start is not None or end is not None:
            ts = parse_timestamp(row.get("timestamp"))
            if ts is None or not _in_range(ts, start, end):
                continue
        out.append(row)
    return out


def summarize_history(
    rows: Iterable[Dict[str, Any]],
    kpi_settings: KPISettings = DEFAULT_KPI_SETTINGS,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> HistorySummary:
    """
    Per executor, per product and per KPI status totals over the active
    rows in the period. Global yield is volume out / volume in, not an
    average of row yields.
    """
    executors: Dict[str, ExecutorStats] = {}
    products: Dict[str, ProductStats] = {}
    statuses: Dict[str, KPIStatusStats] = {}
    status_yield: Dict[str, float] = {}

    summary = HistorySummary()
    active = filter_rows(rows, start, end)

    for row in active:
        vol_in = _safe_float(row.get("boardVolumeM3"))
        vol_out = _safe_float(row.get("productsVolumeM3"))
        earnings = _safe_float(row.get("earnings"))
        yld = _safe_float(row.get("yieldPercentage"))
        cost = _safe_float(row.get("board_cost"))

        name = str(row.get("executor") or "").strip() or UNKNOWN_EXECUTOR
        ex = executors.setdefault(name, ExecutorStats(name=name))
        ex.total_boards += 1
        ex.total_volume_in += vol_in
        ex.total_volume_out += vol_out
        ex.total_earnings += earnings
        ex.total_board_cost += cost
        # running average
        ex.avg_yield = (ex.avg_yield * (ex.total_boards - 1) + yld) / ex.total_boards

        summary.total_volume_in += vol_in
        summary.total_volume_out += vol_out
        summary.total_earnings += earnings
        summary.total_board_cost += cost

        kpi_raw = row.get("KPI")
        kpi = None if kpi_raw in (None, "") else _safe_float(kpi_raw, float("nan"))
        grade = grade_kpi(kpi, kpi_settings)
        st = statuses.setdefault(grade.level, KPIStatusStats(level=grade.level, emoji=grade.emoji))
        st.count += 1
        st.total_earnings += earnings
        st.total_board_cost += cost
        st.total_volume_in += vol_in
        status_yield[grade.level] = status_yield.get(grade.level, 0) + yld

        for product, (qty, amount) in product_quantities(row.get("products")).items():
            ps = products.setdefault(product, ProductStats(product=product))
            ps.total_quantity += qty
            ps.total_amount += amount

    for level, st in statuses.items():
        st.avg_yield = status_yield[level] / st.count if st.count else 0

    summary.executors = sorted(executors.values(), key=lambda e: e.total_earnings, reverse=True)
    summary.products = sorted(products.values(), key=lambda p: p.total_quantity, reverse=True)
    summary.kpi_statuses = sorted(statuses.values(), key=lambda s: _LEVEL_ORDER.index(s.level))
    summary.global_yield = (
        summary.total_volume_out / summary.total_volume_in * 100 if summary.total_volume_in > 0 else 0
    )
    summary.row_count = len(active)
    return summary
