"""
JSON file history store for LumberTrack.
Local history of saved shifts: the fallback of record when the sheet
is unreachable. Single file, newest entry first.
"""
import json
import logging
import threading
from typing import List, Dict, Any, Optional
from pathlib import Path

from models import HistoryEntry
from models.converters import history_entry_from_json

logger = logging.getLogger(__name__)


class JsonHistoryStore:
    """
    JSON file-based history store.
    Uses atomic file operations for basic consistency and a process-local
    lock around read-modify-write cycles.
    """

    def __init__(self, data_dir: str = "data", filename: str = "history.json"):
        """
        Initialize the JSON history store.

        Args:
            data_dir: Directory to store the JSON file
            filename: History file name inside data_dir
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.history_file = self.data_dir / filename
        self._lock = threading.Lock()

        if not self.history_file.exists():
            self._write_file(self.history_file, [])

    def _read_file(self, filepath: Path) -> List[Dict[str, Any]]:
        """Read and parse a JSON file."""
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            logger.error("History file %s is corrupted, starting empty: %s", filepath, e)
            return []
        return data if isinstance(data, list) else []

    def _write_file(self, filepath: Path, data: List[Dict[str, Any]]) -> None:
        """Write data to a JSON file atomically."""
        # Write to temporary file first
        tmp_file = filepath.with_suffix(".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        # Atomic rename
        tmp_file.replace(filepath)

    def _load_unlocked(self) -> List[HistoryEntry]:
        entries = []
        for row in self._read_file(self.history_file):
            entry = history_entry_from_json(row)
            if entry is not None:
                entries.append(entry)
        return entries

    def _save_unlocked(self, entries: List[HistoryEntry]) -> None:
        self._write_file(
            self.history_file,
            [e.model_dump(mode="json") for e in entries],
        )

    def load(self) -> List[HistoryEntry]:
        """All entries, newest first."""
        with self._lock:
            return self._load_unlocked()

    def save(self, entries: List[HistoryEntry]) -> None:
        """Replace the whole history with `entries`."""
        with self._lock:
            self._save_unlocked(entries)

    def get(self, board_id: str) -> Optional[HistoryEntry]:
        return next((e for e in self.load() if e.board_id == board_id), None)

    def upsert(self, entry: HistoryEntry) -> None:
        """Replace the entry for the same board in place, or prepend a new one."""
        with self._lock:
            entries = self._load_unlocked()
            idx = next((i for i, e in enumerate(entries) if e.board_id == entry.board_id), None)
            if idx is not None:
                entries[idx] = entry
            else:
                entries.insert(0, entry)
            self._save_unlocked(entries)

    def clear(self) -> None:
        self.save([])
