# services/api/routers/analytics.py
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from datetime import datetime
from typing import Optional
import io
import logging

from core.analytics import HistorySummary, filter_rows, summarize_history
from core.auth import Capability
from core.report_excel import generate_history_excel
from models.converters import kpi_settings_from_rows
from routers.auth import require
from settings import get_settings

logger = logging.getLogger(__name__)


def get_storage():
    from main import get_storage_adapter
    return get_storage_adapter()


router = APIRouter(
    prefix="/analytics",
    tags=["analytics"],
    dependencies=[Depends(require(Capability.VIEW_ANALYTICS))],
)


def _load(storage, start: Optional[datetime], end: Optional[datetime]):
    if storage is None:
        raise HTTPException(status_code=503, detail="No history backend configured")
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    rows = storage.fetch_full_history()
    kpi = kpi_settings_from_rows(storage.fetch_settings())
    return rows, kpi


@router.get("/summary", response_model=HistorySummary)
def summary(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    storage=Depends(get_storage),
):
    """Per executor / product / KPI status totals for [start, end]."""
    rows, kpi = _load(storage, start, end)
    return summarize_history(rows, kpi, start, end)


@router.get("/export")
def export_excel(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    storage=Depends(get_storage),
):
    rows, kpi = _load(storage, start, end)
    result = summarize_history(rows, kpi, start, end)

    try:
        excel_bytes = generate_history_excel(
            summary=result,
            rows=filter_rows(rows, start, end),
            period_start=start,
            period_end=end,
            max_rows=get_settings().max_rows_per_report,
        )
    except (ValueError, TypeError) as e:
        logger.error(f"Excel export failed: {e}")
        raise HTTPException(status_code=500, detail=f"EXCEL_BUILD_FAILED: {e}")

    fname = f"history_{datetime.now().strftime('%Y%m%d')}.xlsx"
    return StreamingResponse(
        io.BytesIO(excel_bytes),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{fname}"'},
    )
