"""
Tests for the JSON file history store.

Run with: pytest tests/test_history_store.py -v
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.json import JsonHistoryStore
from models import CartItem, HistoryEntry


def entry(board_id, earnings=0, cart=()):
    return HistoryEntry(board_id=board_id, earnings=earnings, cart=list(cart), board_dims="2000x150x50")


class TestJsonHistoryStore:
    """Tests for JsonHistoryStore."""

    def test_starts_empty(self, tmp_path):
        store = JsonHistoryStore(data_dir=str(tmp_path))
        assert store.load() == []
        assert (tmp_path / "history.json").exists()

    def test_upsert_prepends_new(self, history):
        history.upsert(entry("a"))
        history.upsert(entry("b"))
        assert [e.board_id for e in history.load()] == ["b", "a"]

    def test_upsert_replaces_in_place(self, history, plank):
        history.upsert(entry("a", 1))
        history.upsert(entry("b", 2))
        history.upsert(entry("a", 3, [CartItem(product=plank, quantity=2)]))

        entries = history.load()
        assert [e.board_id for e in entries] == ["b", "a"]
        assert entries[1].earnings == 3
        assert entries[1].cart[0].product == plank

    def test_get(self, history):
        history.upsert(entry("a", 5))
        assert history.get("a").earnings == 5
        assert history.get("zzz") is None

    def test_persists_across_instances(self, tmp_path):
        JsonHistoryStore(data_dir=str(tmp_path)).upsert(entry("a", 7))
        assert JsonHistoryStore(data_dir=str(tmp_path)).get("a").earnings == 7

    def test_save_and_clear(self, history):
        history.save([entry("x"), entry("y")])
        assert len(history.load()) == 2
        history.clear()
        assert history.load() == []

    def test_corrupted_file_reads_empty(self, tmp_path):
        store = JsonHistoryStore(data_dir=str(tmp_path))
        (tmp_path / "history.json").write_text("{not json", encoding="utf-8")
        assert store.load() == []

    def test_broken_rows_skipped(self, tmp_path):
        store = JsonHistoryStore(data_dir=str(tmp_path))
        store.upsert(entry("good"))
        raw = (tmp_path / "history.json").read_text(encoding="utf-8")
        (tmp_path / "history.json").write_text(
            raw.replace("[", '[{"earnings": "lots"},', 1), encoding="utf-8"
        )
        assert [e.board_id for e in store.load()] == ["good"]
