from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from . import Board, Dimensions, HistoryEntry, Product
from .partition import DEFAULT_KPI_SETTINGS, KPISettings, Partition
from .user import Role, User

logger = logging.getLogger(__name__)

# Role labels as they are typed into the Users sheet
_ROLE_LABELS = {
    "власник": Role.OWNER,
    "owner": Role.OWNER,
    "сотрудник": Role.EMPLOYEE,
    "employee": Role.EMPLOYEE,
}


def _bool_from_sheet(v: Any) -> bool:
    """
    Convert Sheets-style boolean cells to Python bool.
    Accepts: TRUE/FALSE, 1/0, yes/no, y/n (case-insensitive).
    """
    if v is None:
        return False
    if isinstance(v, bool):
        return v
    s = str(v).strip().upper()
    return s in ("TRUE", "1", "YES", "Y")


def _safe_float(v: Any, default: float = 0) -> float:
    try:
        if v is None:
            return default
        s = str(v).strip().replace(",", ".")
        if s.lower() in ("", "nan", "null", "none"):
            return default
        return float(s)
    except (TypeError, ValueError):
        return default


def _safe_int(v: Any, default: int = 0) -> int:
    # allow "3.0" etc
    return int(_safe_float(v, default))


def role_from_sheet(value: Any) -> Role:
    """Unknown labels fall back to ADMIN, same as the client routing did."""
    s = str(value or "").strip().lower()
    if s in _ROLE_LABELS:
        return _ROLE_LABELS[s]
    try:
        return Role(s)
    except ValueError:
        return Role.ADMIN


def product_from_sheet(row: Dict[str, Any]) -> Product:
    return Product(
        id=str(row.get("id", "")),
        name=str(row.get("name") or ""),
        type=str(row.get("ProductType") or row.get("type") or ""),
        dimensions=Dimensions(
            length=_safe_float(row.get("length")),
            width=_safe_float(row.get("width")),
            thickness=_safe_float(row.get("thickness")),
        ),
        price=_safe_float(row.get("price")),
        image=product_image_url(str(row.get("name") or ""), row.get("image")),
    )


def product_image_url(product_name: str, custom_image_url: Optional[str], version: str = "1.0.0") -> str:
    """
    Absolute URLs are kept as-is, relative paths get a cache-busting
    version, and missing images default to /images/<name>.png.
    """
    custom = (custom_image_url or "").strip()
    if custom.startswith(("http://", "https://", "data:")):
        return custom
    if custom:
        sep = "&" if "?" in custom else "?"
        return f"{custom}{sep}v={version}"
    if product_name:
        return f"/images/{product_name}.png?v={version}"
    return ""


def partition_from_sheet(row: Dict[str, Any]) -> Partition:
    unit_cost = row.get("unit_cost")
    return Partition(
        id=str(row.get("id", "")),
        date=str(row.get("date") or ""),
        volume=_safe_float(row.get("V")),
        length=_safe_int(row.get("length")),
        width=_safe_int(row.get("width")),
        thickness=_safe_int(row.get("thickness")),
        start_board_id=str(row.get("startBoardId") or ""),
        end_board_id=str(row.get("endBoardId") or ""),
        close=_bool_from_sheet(row.get("close")),
        unit_cost=None if unit_cost in (None, "") else _safe_float(unit_cost),
        bad_good_kpi=(row.get("bad_good_kpi") or None),
    )


def user_from_sheet(row: Dict[str, Any]) -> User:
    return User(
        id=str(row.get("id") or ""),
        login=str(row.get("login") or ""),
        name=str(row.get("name") or ""),
        role=role_from_sheet(row.get("role")),
        password=str(row.get("password") or ""),
    )


def kpi_settings_from_json(raw: Optional[str], fallback: KPISettings = DEFAULT_KPI_SETTINGS) -> KPISettings:
    """Parse a `bad_good_kpi` JSON blob; bad or missing JSON yields `fallback`."""
    if not raw:
        return fallback
    try:
        return KPISettings.model_validate(json.loads(raw))
    except ValueError as e:
        logger.error("Failed to parse KPI settings: %s", e)
        return fallback


def kpi_settings_from_rows(rows: list[Dict[str, Any]], fallback: KPISettings = DEFAULT_KPI_SETTINGS) -> KPISettings:
    """Find key="bad_good_kpi" in the Settings sheet (key/value rows)."""
    row = next((r for r in rows if r.get("key") == "bad_good_kpi"), None)
    return kpi_settings_from_json((row or {}).get("value"), fallback)


def board_from_label(label: str, board_id: str, batch_number: str) -> Board:
    """
    Rebuild a Board from the "LxWxT" string kept in history.
    Unparseable parts become 0 (volume then reads as 0).
    """
    parts = (label or "").split("x")
    nums = [_safe_int(p) for p in parts] + [0, 0, 0]
    return Board(
        id=board_id,
        length=nums[0],
        width=nums[1],
        thickness=nums[2],
        batch_number=batch_number,
    )


def history_entry_from_json(row: Dict[str, Any]) -> Optional[HistoryEntry]:
    """Local history file row -> HistoryEntry. Broken rows are skipped."""
    try:
        return HistoryEntry.model_validate(row)
    except ValueError as e:
        logger.warning("Skipping unreadable history row %s: %s", row.get("board_id"), e)
        return None
