# services/api/adapters/rows.py
"""
History row layout shared by the webhook and the direct Sheets backends.
Column names are the ones the History sheet already uses.
"""
from __future__ import annotations

import json
from datetime import datetime, tzinfo
from typing import Any, Dict, List

from models import AnalysisResult, Board, CartItem, SaveMetadata
from core.cart import item_count

HISTORY_HEADERS = [
    "timestamp",
    "boardId",
    "batchNumber",
    "boardLength",
    "boardWidth",
    "boardThickness",
    "boardVolumeM3",
    "products",
    "totalItems",
    "productsVolumeM3",
    "earnings",
    "yieldPercentage",
    "aiMessage",
    "executor",
    "durationFetch",
    "durationMeasure",
    "durationSawing",
    "unit_cost",
    "board_cost",
    "KPI",
    "status",
]

DEFAULT_EXECUTOR = "Unknown"


def sheet_timestamp(now: datetime, tz: tzinfo) -> str:
    """Locale format used by existing rows: "dd.mm.yyyy, hh:mm:ss"."""
    return now.astimezone(tz).strftime("%d.%m.%Y, %H:%M:%S")


def _m3(value: float) -> str:
    return f"{value:.4f}"


def products_with_cost(cart: List[CartItem]) -> str:
    """{"name": {"count": n, "cost": unit_price}}, pretty-printed."""
    data = {i.product.name: {"count": i.quantity, "cost": i.product.price} for i in cart}
    return json.dumps(data, indent=2, ensure_ascii=False)


def products_counts(cart: List[CartItem]) -> str:
    """{"name": n}: the shape written by manual edits."""
    data = {i.product.name: i.quantity for i in cart}
    return json.dumps(data, indent=2, ensure_ascii=False)


def shift_row(
    board: Board,
    cart: List[CartItem],
    result: AnalysisResult,
    metadata: SaveMetadata,
    now: datetime,
    tz: tzinfo,
) -> Dict[str, Any]:
    ts = metadata.time_stats
    row: Dict[str, Any] = {
        "timestamp": sheet_timestamp(now, tz),
        "boardId": board.id,
        "batchNumber": board.batch_number,
        "boardLength": board.length,
        "boardWidth": board.width,
        "boardThickness": board.thickness,
        "boardVolumeM3": _m3(result.board_volume_m3),
        "products": products_with_cost(cart),
        "totalItems": item_count(cart),
        "productsVolumeM3": _m3(result.products_volume_m3),
        "earnings": result.earnings,
        "yieldPercentage": result.yield_percentage,
        "aiMessage": result.message,
        "executor": metadata.executor or DEFAULT_EXECUTOR,
        "durationFetch": ts.duration_fetch,
        "durationMeasure": ts.duration_measure,
        "durationSawing": ts.duration_sawing,
    }
    # optional batch economics, only when the batch carries a unit cost
    if metadata.unit_cost is not None:
        row["unit_cost"] = metadata.unit_cost
    if metadata.board_cost is not None:
        row["board_cost"] = metadata.board_cost
    if metadata.kpi is not None:
        row["KPI"] = metadata.kpi
    return row


def update_row(board_id: str, batch_number: str, cart: List[CartItem], result: AnalysisResult) -> Dict[str, Any]:
    return {
        "boardId": board_id,
        "batchNumber": batch_number,
        "products": products_counts(cart),
        "totalItems": item_count(cart),
        "productsVolumeM3": _m3(result.products_volume_m3),
        "earnings": result.earnings,
        "yieldPercentage": result.yield_percentage,
    }


def soft_delete_row(board_id: str) -> Dict[str, Any]:
    return {"boardId": board_id, "status": "deleted"}
