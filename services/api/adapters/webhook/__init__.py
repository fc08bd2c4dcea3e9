# services/api/adapters/webhook/__init__.py
"""
Apps Script web-app backend.

Writes are POSTs with a text/plain JSON body and an `action` field
(text/plain keeps the Apps Script side free of CORS preflight handling).
Reads are GETs with `?action=...`.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx
from cachetools import TTLCache
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import PersistenceError
from models import AnalysisResult, Board, CartItem, Product, SaveMetadata
from models.converters import _bool_from_sheet, partition_from_sheet, product_from_sheet, user_from_sheet
from models.partition import Partition
from models.user import User
from adapters.rows import shift_row, soft_delete_row, update_row

logger = logging.getLogger(__name__)


# ========== Retry decorator for webhook reads ==========
def retry_webhook_read(func):
    """Retry GETs on transport errors (timeouts, resets) with exponential backoff."""
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type((httpx.TransportError,)),
        reraise=True,
    )
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


class WebhookShiftStore:
    """
    ShiftStore backed by the Apps Script endpoint.

    - Write methods swallow transport / HTTP failures into False
    - Catalog and open batches are cached for `cache_ttl` seconds
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        cache_ttl: int = 60,
        tz: Optional[tzinfo] = None,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not url:
            raise ValueError("WebhookShiftStore requires WEBHOOK_URL")
        self.url = url
        self.tz = tz or ZoneInfo("Europe/Moscow")
        self._clock = clock
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._cache: TTLCache = TTLCache(maxsize=8, ttl=cache_ttl)

    def close(self) -> None:
        self._client.close()

    # ========== Transport ==========

    def _post(self, payload: Dict[str, Any]) -> bool:
        try:
            resp = self._client.post(
                self.url,
                content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
                headers={"Content-Type": "text/plain;charset=utf-8"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Webhook {payload.get('action')} for board {payload.get('boardId')} failed: {e}")
            return False
        return True

    @retry_webhook_read
    def _get_raw(self, action: str) -> Any:
        resp = self._client.get(self.url, params={"action": action})
        resp.raise_for_status()
        return resp.json()

    def _get_rows(self, action: str) -> List[Dict[str, Any]]:
        """GET ?action=...; any failure reads as an empty list."""
        try:
            data = self._get_raw(action)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Webhook read {action} failed: {e}")
            return []
        return [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []

    def _cached(self, key: str, loader: Callable[[], list]) -> list:
        if key in self._cache:
            return self._cache[key]
        value = loader()
        # an empty list is usually a failed read: do not pin it for the TTL
        if value:
            self._cache[key] = value
        return value

    def invalidate_cache(self) -> None:
        self._cache.clear()

    # ========== Shifts ==========

    def save_shift(
        self,
        board: Board,
        cart: List[CartItem],
        result: AnalysisResult,
        metadata: SaveMetadata,
    ) -> bool:
        payload = {"action": "add", **shift_row(board, cart, result, metadata, self._clock(), self.tz)}
        logger.info(f"Saving board {board.id} to webhook ({payload['totalItems']} items)")
        return self._post(payload)

    def update_shift(
        self,
        board_id: str,
        batch_number: str,
        cart: List[CartItem],
        result: AnalysisResult,
    ) -> bool:
        return self._post({"action": "update", **update_row(board_id, batch_number, cart, result)})

    def soft_delete_shift(self, board_id: str) -> bool:
        return self._post({"action": "update", **soft_delete_row(board_id)})

    # ========== Reference data ==========

    def fetch_catalog(self) -> List[Product]:
        def load() -> List[Product]:
            rows = self._get_rows("getProducts")
            return [product_from_sheet(r) for r in rows if not _bool_from_sheet(r.get("close"))]

        return self._cached("products", load)

    def fetch_open_batches(self) -> List[Partition]:
        def load() -> List[Partition]:
            return [p for p in map(partition_from_sheet, self._get_rows("getPartitions")) if not p.close]

        return self._cached("partitions", load)

    def fetch_users(self) -> List[User]:
        # raises: the login screen must tell "unreachable" from "wrong password"
        try:
            data = self._get_raw("getUsers")
        except (httpx.HTTPError, ValueError) as e:
            raise PersistenceError(f"getUsers failed: {e}") from e
        if not isinstance(data, list):
            raise PersistenceError("getUsers did not return a list")
        return [user_from_sheet(r) for r in data if isinstance(r, dict)]

    def fetch_settings(self) -> List[Dict[str, Any]]:
        return self._get_rows("getSettings")

    def fetch_full_history(self) -> List[Dict[str, Any]]:
        return self._get_rows("getAllHistory")
