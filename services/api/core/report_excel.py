# services/api/core/report_excel.py
"""
History Excel export

One workbook, four sheets:
- Summary   (period totals and global yield)
- Executors (per-worker totals)
- Products  (quantities and amounts)
- Boards    (the raw active rows, capped)
"""
from __future__ import annotations

import logging
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from core.analytics import HistorySummary

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="FF1F2937", end_color="FF1F2937", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFFFF")
THIN = Side(style="thin", color="FF9CA3AF")
CELL_BORDER = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)

BOARD_COLUMNS = [
    ("Date", "timestamp"),
    ("Board", "boardId"),
    ("Batch", "batchNumber"),
    ("Executor", "executor"),
    ("Board m3", "boardVolumeM3"),
    ("Products m3", "productsVolumeM3"),
    ("Items", "totalItems"),
    ("Earnings", "earnings"),
    ("Yield %", "yieldPercentage"),
    ("Board cost", "board_cost"),
    ("KPI", "KPI"),
]


def _write_table(ws: Worksheet, headers: Sequence[str], rows: List[List[Any]], widths: Sequence[int]) -> None:
    ws.append(list(headers))
    for c in ws[1]:
        c.fill = HEADER_FILL
        c.font = HEADER_FONT
        c.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        c.border = CELL_BORDER

    for r in rows:
        ws.append(r)
        for c in ws[ws.max_row]:
            c.border = CELL_BORDER

    for idx, w in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = w
    ws.freeze_panes = "A2"


def _num(v: Any) -> Any:
    """Sheet values arrive as strings ("0.0150"); write numbers where possible."""
    if isinstance(v, (int, float)):
        return v
    s = str(v or "").strip().replace(",", ".")
    try:
        return float(s)
    except ValueError:
        return s


def generate_history_excel(
    *,
    summary: HistorySummary,
    rows: List[Dict[str, Any]],
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    max_rows: int = 5000,
) -> bytes:
    """
    Build the analytics workbook and return it as xlsx bytes.

    `rows` should already be filtered (active, in period); only the first
    `max_rows` of them go into the Boards sheet.
    """
    wb = Workbook()

    # --- 1) Summary ---
    ws = wb.active
    ws.title = "Summary"
    period = "all time"
    if period_start or period_end:
        fmt = lambda d: d.strftime("%d.%m.%Y") if d else "..."
        period = f"{fmt(period_start)} - {fmt(period_end)}"
    _write_table(
        ws,
        ["Metric", "Value"],
        [
            ["Period", period],
            ["Boards", summary.row_count],
            ["Volume in, m3", round(summary.total_volume_in, 4)],
            ["Volume out, m3", round(summary.total_volume_out, 4)],
            ["Yield, %", round(summary.global_yield, 1)],
            ["Earnings", summary.total_earnings],
            ["Board cost", summary.total_board_cost],
        ],
        [24, 24],
    )
    for st in summary.kpi_statuses:
        ws.append([f"KPI {st.emoji} {st.level}", st.count])

    # --- 2) Executors ---
    _write_table(
        wb.create_sheet("Executors"),
        ["Executor", "Boards", "Volume in, m3", "Volume out, m3", "Avg yield, %", "Earnings", "Board cost"],
        [
            [
                e.name,
                e.total_boards,
                round(e.total_volume_in, 4),
                round(e.total_volume_out, 4),
                round(e.avg_yield, 1),
                e.total_earnings,
                e.total_board_cost,
            ]
            for e in summary.executors
        ],
        [24, 10, 16, 16, 14, 14, 14],
    )

    # --- 3) Products ---
    _write_table(
        wb.create_sheet("Products"),
        ["Product", "Quantity", "Amount"],
        [[p.product, p.total_quantity, p.total_amount] for p in summary.products],
        [32, 12, 14],
    )

    # --- 4) Boards ---
    if len(rows) > max_rows:
        logger.warning(f"Trimming boards sheet: {len(rows)} → {max_rows} rows (max_rows_per_report)")
        rows = rows[:max_rows]
    _write_table(
        wb.create_sheet("Boards"),
        [title for title, _ in BOARD_COLUMNS],
        [
            [r.get(key, "") if key in ("timestamp", "boardId", "batchNumber", "executor") else _num(r.get(key))
             for _, key in BOARD_COLUMNS]
            for r in rows
        ],
        [20, 34, 12, 20, 12, 12, 8, 12, 10, 12, 8],
    )

    # --- 5) Save to bytes ---
    output = BytesIO()
    wb.save(output)
    output.seek(0)

    logger.info(
        f"Generated history workbook: {len(summary.executors)} executors, {len(rows)} boards"
    )
    return output.getvalue()
