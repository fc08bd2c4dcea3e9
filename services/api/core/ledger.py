# services/api/core/ledger.py
"""
Shift ledger: owns the (board, cart, analysis) triple of one shift and
the save / edit / soft-delete protocol against the remote store.

    EMPTY -> BOARD_SELECTED -> REVIEWED -> SAVED -> EMPTY

Remote failures never escape: they come back as an outcome with
ok=False and a user-facing message, and the ledger keeps its state.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Callable, List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from cachetools import TTLCache

from adapters.base import HistoryStore, ShiftStore
from models import AnalysisResult, Board, CartItem, HistoryEntry, Product, SaveMetadata, TimeStats
from models.converters import board_from_label, kpi_settings_from_json, kpi_settings_from_rows
from models.partition import DEFAULT_KPI_SETTINGS, KPISettings, Partition
from core import cart as cart_ops
from core.commentary import MANUAL_EDIT, build_commentary
from core.errors import (
    SaveInProgressError,
    ShiftClosedError,
    ValidationError,
    YieldOutOfRangeError,
)
from core.stats import (
    KPIGrade,
    ShiftStats,
    board_cost,
    compute_kpi,
    compute_stats,
    grade_kpi,
    is_yield_anomaly,
    yield_band_violation,
)
from core.validation import ensure_same_day, validate_board, validate_cart_for_save

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ShiftState(str, Enum):
    EMPTY = "empty"
    BOARD_SELECTED = "board_selected"
    REVIEWED = "reviewed"
    SAVED = "saved"


@dataclass
class LedgerConfig:
    min_yield: float = 10
    max_yield: float = 98
    yield_control_enabled: bool = False
    ai_analysis_enabled: bool = True
    commentary_url: str = ""
    http_timeout_seconds: float = 30.0
    timezone: tzinfo = field(default_factory=lambda: ZoneInfo("Europe/Moscow"))
    kpi_settings: KPISettings = field(default_factory=lambda: DEFAULT_KPI_SETTINGS)

    @classmethod
    def from_settings(cls, settings) -> "LedgerConfig":
        return cls(
            min_yield=settings.min_yield,
            max_yield=settings.max_yield,
            yield_control_enabled=settings.yield_control_enabled,
            ai_analysis_enabled=settings.ai_analysis_enabled,
            commentary_url=settings.commentary_url,
            http_timeout_seconds=settings.http_timeout_seconds,
            timezone=ZoneInfo(settings.local_timezone),
        )


@dataclass
class SaveOutcome:
    ok: bool
    synced: bool
    message: str
    entry: Optional[HistoryEntry] = None
    kpi: float = 0
    kpi_grade: Optional[KPIGrade] = None


@dataclass
class EditOutcome:
    ok: bool
    message: str
    entry: HistoryEntry


class ShiftTimers:
    """
    Wall-clock anchors for one shift. Purely informational: the durations
    end up in the saved row and never influence ledger state.
    """

    def __init__(self) -> None:
        self.fetch_started_at: Optional[datetime] = None
        self.measure_started_at: Optional[datetime] = None
        self.saw_started_at: Optional[datetime] = None
        self.analysis_started_at: Optional[datetime] = None

    def reset(self) -> None:
        self.__init__()

    def time_stats(self, now: datetime) -> TimeStats:
        def secs(start: Optional[datetime], end: datetime) -> int:
            if start is None:
                return 0
            return max(0, round((end - start).total_seconds()))

        fetch_end = self.measure_started_at or self.saw_started_at or now
        production_end = self.analysis_started_at or now
        return TimeStats(
            duration_fetch=secs(self.fetch_started_at, fetch_end),
            duration_measure=secs(self.saw_started_at, production_end),
            duration_sawing=secs(self.analysis_started_at, now),
        )


class ShiftLedger:
    """
    One shift for one worker. Not shared across shifts; the only
    concurrency rule is one save at a time.
    """

    def __init__(
        self,
        history: HistoryStore,
        store: Optional[ShiftStore] = None,
        config: Optional[LedgerConfig] = None,
        *,
        executor: Optional[str] = None,
        owner: Optional[str] = None,
        clock: Clock = _utc_now,
    ) -> None:
        self.history = history
        self.store = store
        self.config = config or LedgerConfig()
        self.executor = executor
        # login of the session that opened the shift
        self.owner = owner
        self._clock = clock

        self.state = ShiftState.EMPTY
        self.board: Optional[Board] = None
        self.partition: Optional[Partition] = None
        self.cart: List[CartItem] = []
        self.result: Optional[AnalysisResult] = None
        self.timers = ShiftTimers()

        # in-flight flag for save; acquired without blocking
        self._saving = threading.Lock()

    # ========== Timers ==========

    def mark_fetch(self) -> None:
        """Worker went to fetch a board: restarts the timers and drops the board."""
        self._ensure_not_saving()
        if self.state in (ShiftState.REVIEWED, ShiftState.SAVED):
            raise ShiftClosedError("Finish or reset the current shift before fetching a new board")
        self.timers.reset()
        self.timers.fetch_started_at = self._clock()
        self.board = None
        self.partition = None
        self.state = ShiftState.EMPTY

    def mark_measure(self) -> None:
        self.timers.measure_started_at = self._clock()

    # ========== Board ==========

    def confirm_board(
        self,
        length: int,
        width: int,
        thickness: int,
        batch_number: str,
        partition: Optional[Partition] = None,
    ) -> Board:
        """
        EMPTY -> BOARD_SELECTED. Re-confirming before review replaces the
        board (a new board record, the old one is never mutated).
        """
        self._ensure_not_saving()
        if self.state not in (ShiftState.EMPTY, ShiftState.BOARD_SELECTED):
            raise ShiftClosedError(f"Cannot change the board in state {self.state.value}")

        validate_board(length, width, thickness, batch_number)

        now = self._clock()
        self.board = Board(
            created_at=now,
            length=length,
            width=width,
            thickness=thickness,
            batch_number=batch_number.strip(),
        )
        self.partition = partition
        self.timers.saw_started_at = now
        self.state = ShiftState.BOARD_SELECTED
        logger.info(f"Board {self.board.id} confirmed: {self.board.dims_label} batch={self.board.batch_number}")
        return self.board

    # ========== Cart ==========

    def update_cart(self, product: Product, delta: int) -> List[CartItem]:
        self._set_cart(cart_ops.apply_delta(self.cart, product, delta))
        return self.cart

    def remove_item(self, product_id: str) -> List[CartItem]:
        self._set_cart(cart_ops.remove_item(self.cart, product_id))
        return self.cart

    def clear_cart(self) -> List[CartItem]:
        self._set_cart(cart_ops.clear(self.cart))
        return self.cart

    def _set_cart(self, new_cart: List[CartItem]) -> None:
        self._ensure_not_saving()
        if self.state == ShiftState.SAVED:
            raise ShiftClosedError("Shift already saved: start a new board")
        if new_cart is self.cart:
            return
        self.cart = new_cart
        if self.state == ShiftState.REVIEWED:
            self._recompute()

    def _recompute(self) -> None:
        """Refresh the numbers in place, keeping the commentary text."""
        stats = compute_stats(self.board, self.cart)
        self.result = self.result.model_copy(update=_stats_fields(stats)) if self.result else _result(stats, "", "")

    # ========== Review ==========

    def review(self) -> AnalysisResult:
        """
        BOARD_SELECTED -> REVIEWED. Always computes, even for an empty
        cart (the commentary then says the shift has not started).
        """
        self._ensure_not_saving()
        if self.state not in (ShiftState.BOARD_SELECTED, ShiftState.REVIEWED):
            raise ShiftClosedError(f"Cannot review in state {self.state.value}")

        self.timers.analysis_started_at = self._clock()
        stats = compute_stats(self.board, self.cart)
        message, quote = build_commentary(
            self.board,
            self.cart,
            stats,
            enabled=self.config.ai_analysis_enabled,
            url=self.config.commentary_url,
            timeout=self.config.http_timeout_seconds,
        )
        self.result = _result(stats, message, quote)
        self.state = ShiftState.REVIEWED
        return self.result

    def yield_violation(self) -> Optional[str]:
        if self.result is None:
            return None
        return yield_band_violation(self.result.yield_percentage, self.config.min_yield, self.config.max_yield)

    @property
    def yield_anomaly(self) -> bool:
        return bool(self.result) and is_yield_anomaly(self.result.yield_percentage)

    @property
    def can_save(self) -> bool:
        if self.state != ShiftState.REVIEWED or not self.cart:
            return False
        return not (self.config.yield_control_enabled and self.yield_violation())

    def kpi_settings(self) -> KPISettings:
        """Batch thresholds, then the sheet's `bad_good_kpi` row, then the defaults."""
        sheet = self._sheet_kpi_settings()
        if self.partition and self.partition.bad_good_kpi:
            return kpi_settings_from_json(self.partition.bad_good_kpi, sheet)
        return sheet

    def _sheet_kpi_settings(self) -> KPISettings:
        if self.store is None:
            return self.config.kpi_settings
        try:
            rows = self.store.fetch_settings()
        except Exception as e:
            logger.warning(f"Could not read KPI settings from the sheet, using defaults: {e}")
            return self.config.kpi_settings
        return kpi_settings_from_rows(rows, self.config.kpi_settings)

    # ========== Save ==========

    def save(self) -> SaveOutcome:
        """
        REVIEWED -> SAVED.

        The local history is updated first (keyed by board id), so a
        remote failure never loses the worker's input. On remote failure
        the shift stays REVIEWED and the user can save again.
        """
        if not self._saving.acquire(blocking=False):
            raise SaveInProgressError("Save already in progress for this shift")
        try:
            # checked under the in-flight flag: a save that finished while
            # this one waited has already moved the shift to SAVED
            if self.state == ShiftState.SAVED:
                raise ShiftClosedError("Shift already saved")
            if self.state != ShiftState.REVIEWED or self.board is None or self.result is None:
                raise ShiftClosedError("Review the shift before saving")

            validate_cart_for_save(self.cart)

            if self.config.yield_control_enabled and self.yield_violation():
                raise YieldOutOfRangeError(
                    self.result.yield_percentage, self.config.min_yield, self.config.max_yield
                )
            return self._save_locked()
        finally:
            self._saving.release()

    def _save_locked(self) -> SaveOutcome:
        board, cart, result = self.board, list(self.cart), self.result
        now = self._clock()

        unit_cost = self.partition.unit_cost if self.partition else None
        kpi = compute_kpi(result.earnings, result.board_volume_m3, unit_cost)
        grade = grade_kpi(kpi, self.kpi_settings()) if unit_cost else None
        metadata = SaveMetadata(
            executor=self.executor,
            time_stats=self.timers.time_stats(now),
            unit_cost=unit_cost,
            board_cost=board_cost(unit_cost, result.board_volume_m3) if unit_cost else None,
            kpi=kpi if unit_cost else None,
        )

        previous = self.history.get(board.id)
        entry = HistoryEntry(
            board_id=board.id,
            timestamp=now,
            batch_number=board.batch_number,
            executor=self.executor,
            earnings=result.earnings,
            yield_percentage=result.yield_percentage,
            item_count=cart_ops.item_count(cart),
            board_dims=board.dims_label,
            board_volume=result.board_volume_m3,
            cart=cart,
            time_stats=metadata.time_stats,
        )
        if previous is not None:
            entry = entry.model_copy(update={"id": previous.id})
        self.history.upsert(entry)

        if self.store is None:
            logger.info(f"No remote store configured; board {board.id} saved locally only")
            self.state = ShiftState.SAVED
            return SaveOutcome(
                ok=True,
                synced=False,
                message="Saved on this device only: no sheet is configured",
                entry=entry,
                kpi=kpi,
                kpi_grade=grade,
            )

        try:
            synced = bool(self.store.save_shift(board, cart, result, metadata))
        except Exception as e:
            logger.exception("save_shift failed for board %s: %s", board.id, e)
            synced = False

        if not synced:
            return SaveOutcome(
                ok=False,
                synced=False,
                message="Saved on this device, but the sheet was not updated. Try saving again.",
                entry=entry,
                kpi=kpi,
                kpi_grade=grade,
            )

        self.state = ShiftState.SAVED
        logger.info(f"Board {board.id} saved: earnings={result.earnings} yield={result.yield_percentage}%")
        return SaveOutcome(ok=True, synced=True, message="Saved", entry=entry, kpi=kpi, kpi_grade=grade)

    # ========== Next board / reset ==========

    def next_board(self) -> None:
        """SAVED -> EMPTY."""
        if self.state != ShiftState.SAVED:
            raise ShiftClosedError("Save the current shift before starting the next board")
        self.reset()

    def reset(self) -> None:
        """Drop the current triple (logout, discard)."""
        self._ensure_not_saving()
        self.state = ShiftState.EMPTY
        self.board = None
        self.partition = None
        self.cart = []
        self.result = None
        self.timers.reset()

    # ========== Edit existing entry ==========

    def edit_entry(self, board_id: str, new_cart: List[CartItem]) -> EditOutcome:
        """
        Apply an edited cart to a saved entry from today.

        Empty cart -> soft delete remotely, zero the local numbers (the
        entry stays in the list, status "deleted"). Otherwise recompute
        from the stored board dims and update the remote row.
        Local history changes only once the remote store accepted it.
        """
        entry = self.history.get(board_id)
        if entry is None:
            raise ValidationError(f"No history entry for board {board_id}")
        if entry.is_deleted:
            raise ValidationError(f"Entry for board {board_id} is already deleted")
        ensure_same_day(entry.timestamp, self._clock(), self.config.timezone)

        if not new_cart:
            ok = self._remote(lambda s: s.soft_delete_shift(board_id), "soft_delete_shift", board_id)
            updated = entry.model_copy(
                update={
                    "earnings": 0,
                    "yield_percentage": 0,
                    "item_count": 0,
                    "cart": [],
                    "status": "deleted",
                }
            )
        else:
            board = board_from_label(entry.board_dims, entry.board_id, entry.batch_number)
            stats = compute_stats(board, new_cart)
            result = _result(stats, *MANUAL_EDIT)
            ok = self._remote(
                lambda s: s.update_shift(board_id, entry.batch_number, new_cart, result),
                "update_shift",
                board_id,
            )
            updated = entry.model_copy(
                update={
                    "earnings": stats.earnings,
                    "yield_percentage": stats.yield_percentage,
                    "item_count": cart_ops.item_count(new_cart),
                    "cart": list(new_cart),
                }
            )

        if not ok:
            return EditOutcome(ok=False, message="Could not update the sheet. Check the connection.", entry=entry)

        self.history.upsert(updated)
        return EditOutcome(ok=True, message="Deleted" if updated.is_deleted else "Updated", entry=updated)

    def _remote(self, call: Callable[[ShiftStore], bool], name: str, board_id: str) -> bool:
        # No store configured: local history is the record.
        if self.store is None:
            return True
        try:
            return bool(call(self.store))
        except Exception as e:
            logger.exception("%s failed for board %s: %s", name, board_id, e)
            return False

    def _ensure_not_saving(self) -> None:
        if self._saving.locked():
            raise SaveInProgressError("Save in progress for this shift")


def _stats_fields(stats: ShiftStats) -> dict:
    return {
        "earnings": stats.earnings,
        "yield_percentage": stats.yield_percentage,
        "board_volume_m3": stats.board_volume_m3,
        "products_volume_m3": stats.products_volume_m3,
    }


def _result(stats: ShiftStats, message: str, quote: str) -> AnalysisResult:
    return AnalysisResult(message=message, motivational_quote=quote, **_stats_fields(stats))


class LedgerRegistry:
    """
    In-process shift ledgers keyed by shift id. One ledger per open
    shift; the API threadpool may touch different shifts concurrently.

    Entries expire `ttl` seconds after their last use, so shifts left
    open by a client that never came back do not accumulate.
    """

    def __init__(self, ttl: float = 12 * 60 * 60, maxsize: int = 1024, timer: Callable[[], float] = time.monotonic):
        self._ledgers: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._lock = threading.Lock()

    def open(self, ledger: ShiftLedger) -> str:
        shift_id = uuid4().hex
        with self._lock:
            self._ledgers[shift_id] = ledger
        return shift_id

    def get(self, shift_id: str) -> Optional[ShiftLedger]:
        with self._lock:
            ledger = self._ledgers.get(shift_id)
            if ledger is not None:
                # re-insert to restart the expiry clock
                self._ledgers[shift_id] = ledger
            return ledger

    def close(self, shift_id: str) -> Optional[ShiftLedger]:
        with self._lock:
            return self._ledgers.pop(shift_id, None)

    def __len__(self) -> int:
        with self._lock:
            self._ledgers.expire()
            return len(self._ledgers)
