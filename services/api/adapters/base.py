"""
Storage adapter interfaces for LumberTrack.
Defines the contracts the remote store and the local history must implement.
"""

from typing import Protocol, List, Dict, Any, Optional

from models import AnalysisResult, Board, CartItem, HistoryEntry, Product, SaveMetadata
from models.partition import Partition
from models.user import User


class ShiftStore(Protocol):
    """
    Protocol for the remote shift store (Apps Script webhook or a
    spreadsheet accessed directly).

    This allows swapping between backends without changing the ledger
    or router code.

    NOTE:
    - Write methods return a success flag. They must not raise on
      network / HTTP failures; the ledger decides what the user sees.
    - Read methods return empty lists when nothing can be fetched.
    """

    # ========== Shifts ==========

    def save_shift(
        self,
        board: Board,
        cart: List[CartItem],
        result: AnalysisResult,
        metadata: SaveMetadata,
    ) -> bool:
        """
        Create or overwrite the remote record for `board.id`.

        Must be idempotent: saving the same board twice yields one
        logical record.
        """
        ...

    def update_shift(
        self,
        board_id: str,
        batch_number: str,
        cart: List[CartItem],
        result: AnalysisResult,
    ) -> bool:
        """
        Partial update of an existing record: products, item count,
        product volume, earnings, yield.
        """
        ...

    def soft_delete_shift(self, board_id: str) -> bool:
        """
        Mark a record as deleted (status column). The row is kept.
        """
        ...

    # ========== Reference data ==========

    def fetch_catalog(self) -> List[Product]:
        """Open (not closed) products."""
        ...

    def fetch_open_batches(self) -> List[Partition]:
        """Partitions whose `close` flag is not set."""
        ...

    def fetch_users(self) -> List[User]:
        """
        All users from the Users sheet.

        Unlike the other reads this raises on transport failure, so the
        login screen can tell "wrong password" from "server unreachable".
        """
        ...

    def fetch_settings(self) -> List[Dict[str, Any]]:
        """Key/value rows from the Settings sheet."""
        ...

    def fetch_full_history(self) -> List[Dict[str, Any]]:
        """Every history row, including soft-deleted ones."""
        ...


class HistoryStore(Protocol):
    """
    Local persisted history. The ledger only sees plain lists of
    HistoryEntry going in and out.
    """

    def load(self) -> List[HistoryEntry]:
        ...

    def save(self, entries: List[HistoryEntry]) -> None:
        ...

    def get(self, board_id: str) -> Optional[HistoryEntry]:
        ...

    def upsert(self, entry: HistoryEntry) -> None:
        """Insert, or replace the entry with the same board_id."""
        ...

    def clear(self) -> None:
        ...
