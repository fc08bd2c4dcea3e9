# services/api/adapters/sheets/__init__.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.errors import PersistenceError
from models import AnalysisResult, Board, CartItem, Product, SaveMetadata
from models.converters import _bool_from_sheet, partition_from_sheet, product_from_sheet, user_from_sheet
from models.partition import Partition
from models.user import User
from adapters.rows import HISTORY_HEADERS, shift_row, soft_delete_row, update_row

logger = logging.getLogger(__name__)


def _sa_client_from_json_or_path(google_sa_json: str) -> gspread.Client:
    """
    Accepts either:
      - absolute/relative path to a service-account JSON file, OR
      - a literal JSON string.
    Returns an authorized gspread Client.
    """
    if not google_sa_json:
        raise ValueError("GOOGLE_SA_JSON is required (path to file or inline JSON).")

    # Try to treat as inline JSON first
    try:
        parsed = json.loads(google_sa_json)
        creds = Credentials.from_service_account_info(
            parsed,
            scopes=["https://www.googleapis.com/auth/spreadsheets"],
        )
        return gspread.authorize(creds)
    except json.JSONDecodeError:
        # Not JSON; treat as file path
        creds = Credentials.from_service_account_file(
            google_sa_json,
            scopes=["https://www.googleapis.com/auth/spreadsheets"],
        )
        return gspread.authorize(creds)


# ========== Retry decorator for Google Sheets API calls ==========
def retry_sheets_api(func):
    """Decorator to retry Sheets API calls with exponential backoff on quota errors."""
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((gspread.exceptions.APIError,)),
        reraise=True,
    )
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


class SheetsShiftStore:
    """
    ShiftStore talking to the spreadsheet directly (service account),
    for deployments without the Apps Script web app.

    - History rows are upserted by boardId
    - Reference tabs (Products, Partitions, Users, Settings) are read-only
    """

    def __init__(
        self,
        google_sa_json: Optional[str],
        spreadsheet_id: Optional[str],
        tabs: Optional[Dict[str, str]] = None,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        client: Optional[gspread.Client] = None,
    ) -> None:
        if client is None and (not google_sa_json or not spreadsheet_id):
            raise ValueError("SheetsShiftStore requires GOOGLE_SA_JSON and SHEETS_SPREADSHEET_ID")

        self.tabs = {
            "history": "History",
            "products": "Products",
            "partitions": "Partitions",
            "users": "Users",
            "settings": "Settings",
            **(tabs or {}),
        }
        self.tz = tz or ZoneInfo("Europe/Moscow")
        self._clock = clock

        self.gc = client or _sa_client_from_json_or_path(google_sa_json)
        self.ss = self.gc.open_by_key(spreadsheet_id)

        self.ws: dict[str, gspread.Worksheet] = {}
        self.colmap: dict[str, dict[str, int]] = {}
        self.ws["history"] = self._ensure_worksheet(self.tabs["history"], len(HISTORY_HEADERS))
        self.colmap["history"] = self._ensure_headers("history", HISTORY_HEADERS)

    # ========== Worksheet helpers ==========

    def _ensure_worksheet(self, name: str, cols: int) -> gspread.Worksheet:
        try:
            return self.ss.worksheet(name)
        except gspread.WorksheetNotFound:
            return self.ss.add_worksheet(title=name, rows=200, cols=cols + 2)

    def _ensure_headers(self, key: str, base: List[str]) -> dict[str, int]:
        ws = self.ws[key]
        values = ws.get_values("1:1")
        existing = values[0] if values else []

        if not existing:
            ws.update("A1", [base])
            header = base[:]
        else:
            # If required base columns are missing, append them at the end.
            # If the sheet already has extra columns, KEEP them.
            missing = [c for c in base if c not in existing]
            header = existing + missing if missing else existing
            if header != existing:
                ws.update("1:1", [header])

        return {col: idx + 1 for idx, col in enumerate(header)}

    def _worksheet(self, key: str) -> Optional[gspread.Worksheet]:
        if key not in self.ws:
            try:
                self.ws[key] = self.ss.worksheet(self.tabs[key])
            except gspread.WorksheetNotFound:
                logger.warning(f"Worksheet {self.tabs[key]!r} not found")
                return None
        return self.ws[key]

    @retry_sheets_api
    def _get_all_dicts(self, key: str) -> list[dict[str, Any]]:
        """Get all rows from a tab as dictionaries. WITH RETRY."""
        ws = self._worksheet(key)
        if ws is None:
            return []
        rows = ws.get_all_values()
        if not rows:
            return []
        header = rows[0]
        out = []
        for r in rows[1:]:
            out.append({header[i]: (r[i] if i < len(r) else "") for i in range(len(header))})
        return out

    @retry_sheets_api
    def _append_rows(self, key: str, rows: list[list[Any]]) -> None:
        """Append rows to tab. WITH RETRY."""
        if rows:
            self.ws[key].append_rows(rows, value_input_option="USER_ENTERED")

    @retry_sheets_api
    def _update_cells(self, key: str, row_idx: int, updates: dict[str, Any]) -> None:
        """Update specific cells in a row. WITH RETRY."""
        colmap = self.colmap[key]
        data = []
        for k, v in updates.items():
            if k not in colmap:
                continue
            a1 = gspread.utils.rowcol_to_a1(row_idx, colmap[k])
            data.append({"range": a1, "values": [[v]]})
        if data:
            self.ws[key].batch_update(data)

    @retry_sheets_api
    def _find_row_by_value(self, key: str, col_name: str, value: str) -> Optional[int]:
        """Find row index by column value."""
        ws = self.ws[key]
        col_idx = self.colmap[key][col_name]
        col_vals = ws.col_values(col_idx)
        for i, v in enumerate(col_vals[1:], start=2):  # skip header
            if v == value:
                return i
        return None

    def _append_dict_row(self, key: str, data: dict[str, Any]) -> None:
        """Append one row using the SHEET'S CURRENT HEADER order."""
        header = sorted(self.colmap[key], key=self.colmap[key].get)
        row = [data.get(col, "") for col in header]
        self._append_rows(key, [row])

    def _write(self, name: str, board_id: str, fn: Callable[[], None]) -> bool:
        try:
            fn()
        except (gspread.exceptions.GSpreadException, OSError) as e:
            logger.error(f"Sheets {name} for board {board_id} failed: {e}")
            return False
        return True

    # ========== Shifts ==========

    def save_shift(
        self,
        board: Board,
        cart: List[CartItem],
        result: AnalysisResult,
        metadata: SaveMetadata,
    ) -> bool:
        row = shift_row(board, cart, result, metadata, self._clock(), self.tz)
        row["status"] = "active"

        def upsert() -> None:
            row_idx = self._find_row_by_value("history", "boardId", board.id)
            if row_idx is None:
                self._append_dict_row("history", row)
            else:
                self._update_cells("history", row_idx, row)

        return self._write("save_shift", board.id, upsert)

    def _update_existing(self, name: str, board_id: str, updates: dict[str, Any]) -> bool:
        def apply() -> None:
            row_idx = self._find_row_by_value("history", "boardId", board_id)
            if row_idx is None:
                raise gspread.exceptions.GSpreadException(f"No History row for boardId {board_id}")
            self._update_cells("history", row_idx, updates)

        return self._write(name, board_id, apply)

    def update_shift(
        self,
        board_id: str,
        batch_number: str,
        cart: List[CartItem],
        result: AnalysisResult,
    ) -> bool:
        return self._update_existing("update_shift", board_id, update_row(board_id, batch_number, cart, result))

    def soft_delete_shift(self, board_id: str) -> bool:
        return self._update_existing("soft_delete_shift", board_id, soft_delete_row(board_id))

    # ========== Reference data ==========

    def _read(self, key: str) -> List[Dict[str, Any]]:
        try:
            return self._get_all_dicts(key)
        except gspread.exceptions.GSpreadException as e:
            logger.warning(f"Sheets read {key} failed: {e}")
            return []

    def fetch_catalog(self) -> List[Product]:
        return [product_from_sheet(r) for r in self._read("products") if not _bool_from_sheet(r.get("close"))]

    def fetch_open_batches(self) -> List[Partition]:
        return [p for p in map(partition_from_sheet, self._read("partitions")) if not p.close]

    def fetch_users(self) -> List[User]:
        try:
            rows = self._get_all_dicts("users")
        except gspread.exceptions.GSpreadException as e:
            raise PersistenceError(f"Users tab unreadable: {e}") from e
        return [user_from_sheet(r) for r in rows]

    def fetch_settings(self) -> List[Dict[str, Any]]:
        return self._read("settings")

    def fetch_full_history(self) -> List[Dict[str, Any]]:
        return self._read("history")
