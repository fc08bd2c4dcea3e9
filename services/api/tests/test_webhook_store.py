"""
Tests for the Apps Script webhook backend (httpx MockTransport, no network).

Run with: pytest tests/test_webhook_store.py -v
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.webhook import WebhookShiftStore
from core.errors import PersistenceError
from core.stats import compute_stats
from models import AnalysisResult, Board, CartItem, SaveMetadata, TimeStats
from models.user import Role

URL = "https://script.google.com/macros/s/abc/exec"
NOW = datetime(2024, 5, 14, 9, 5, 7, tzinfo=timezone.utc)


class Recorder:
    """MockTransport handler that records requests and answers from a table."""

    def __init__(self, get_replies=None, post_status=200):
        self.requests = []
        self.get_replies = get_replies or {}
        self.post_status = post_status

    def __call__(self, request):
        self.requests.append(request)
        if request.method == "POST":
            return httpx.Response(self.post_status, text="ok")
        reply = self.get_replies.get(request.url.params.get("action"))
        if isinstance(reply, Exception):
            raise reply
        return httpx.Response(200, json=reply if reply is not None else [])

    def posted(self):
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]


def make_store(recorder):
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    return WebhookShiftStore(URL, client=client, clock=lambda: NOW)


def shift(plank):
    board = Board(id="board-1", length=2000, width=150, thickness=50, batch_number="B-1")
    cart = [CartItem(product=plank, quantity=2)]
    s = compute_stats(board, cart)
    result = AnalysisResult(
        earnings=s.earnings,
        yield_percentage=s.yield_percentage,
        board_volume_m3=s.board_volume_m3,
        products_volume_m3=s.products_volume_m3,
        message="Calculation completed.",
    )
    return board, cart, result


class TestWrites:
    """Payload shapes of the three write actions."""

    def test_save_shift_payload(self, plank):
        rec = Recorder()
        board, cart, result = shift(plank)
        metadata = SaveMetadata(executor="Ivan", time_stats=TimeStats(duration_fetch=30, duration_measure=60))

        assert make_store(rec).save_shift(board, cart, result, metadata)

        request = rec.requests[0]
        assert request.headers["content-type"].startswith("text/plain")
        payload = rec.posted()[0]
        assert payload["action"] == "add"
        assert payload["boardId"] == "board-1"
        assert payload["batchNumber"] == "B-1"
        assert payload["boardVolumeM3"] == "0.0150"
        assert payload["productsVolumeM3"] == "0.0038"
        assert payload["totalItems"] == 2
        assert payload["earnings"] == 300
        assert payload["yieldPercentage"] == 26
        assert payload["executor"] == "Ivan"
        assert payload["durationFetch"] == 30
        # 09:05:07 UTC is 12:05:07 in Moscow
        assert payload["timestamp"] == "14.05.2024, 12:05:07"
        assert json.loads(payload["products"]) == {"Plank": {"count": 2, "cost": 150}}
        assert "KPI" not in payload
        assert "unit_cost" not in payload

    def test_save_shift_with_batch_economics(self, plank):
        rec = Recorder()
        board, cart, result = shift(plank)
        metadata = SaveMetadata(unit_cost=10000, board_cost=150, kpi=2.0)
        make_store(rec).save_shift(board, cart, result, metadata)

        payload = rec.posted()[0]
        assert payload["unit_cost"] == 10000
        assert payload["board_cost"] == 150
        assert payload["KPI"] == 2.0
        assert payload["executor"] == "Unknown"

    def test_update_payload(self, plank):
        rec = Recorder()
        _, cart, result = shift(plank)
        assert make_store(rec).update_shift("board-1", "B-1", cart, result)

        payload = rec.posted()[0]
        assert payload["action"] == "update"
        assert json.loads(payload["products"]) == {"Plank": 2}
        assert payload["totalItems"] == 2
        assert "status" not in payload

    def test_soft_delete_payload(self):
        rec = Recorder()
        assert make_store(rec).soft_delete_shift("board-1")
        assert rec.posted() == [{"action": "update", "boardId": "board-1", "status": "deleted"}]

    def test_http_error_returns_false(self, plank):
        board, cart, result = shift(plank)
        store = make_store(Recorder(post_status=500))
        assert store.save_shift(board, cart, result, SaveMetadata()) is False

    def test_transport_error_returns_false(self):
        def boom(request):
            raise httpx.ConnectError("down", request=request)

        store = WebhookShiftStore(URL, client=httpx.Client(transport=httpx.MockTransport(boom)))
        assert store.soft_delete_shift("board-1") is False


class TestReads:
    """GET ?action=... reads."""

    def test_catalog_filters_closed_and_caches(self):
        rec = Recorder(get_replies={"getProducts": [
            {"id": 1, "name": "Plank", "price": "150", "length": 800, "width": 60, "thickness": 40,
             "ProductType": "board", "close": ""},
            {"id": 2, "name": "Old", "price": 10, "close": "TRUE"},
        ]})
        store = make_store(rec)

        products = store.fetch_catalog()
        assert [p.id for p in products] == ["1"]
        assert products[0].price == 150
        assert products[0].type == "board"
        assert products[0].image == "/images/Plank.png?v=1.0.0"

        store.fetch_catalog()
        assert len(rec.requests) == 1
        store.invalidate_cache()
        store.fetch_catalog()
        assert len(rec.requests) == 2

    def test_open_batches(self):
        rec = Recorder(get_replies={"getPartitions": [
            {"id": "7", "V": "1,5", "close": "false", "unit_cost": "10000"},
            {"id": "8", "close": "true"},
        ]})
        batches = make_store(rec).fetch_open_batches()
        assert [b.id for b in batches] == ["7"]
        assert batches[0].volume == 1.5
        assert batches[0].unit_cost == 10000

    def test_users_roles(self):
        rec = Recorder(get_replies={"getUsers": [
            {"id": 1, "login": "boss", "name": "Owner", "role": "Власник", "password": "x"},
        ]})
        users = make_store(rec).fetch_users()
        assert users[0].role == Role.OWNER

    def test_users_raise_when_unreachable(self):
        rec = Recorder(get_replies={"getUsers": {"error": "not a list"}})
        with pytest.raises(PersistenceError):
            make_store(rec).fetch_users()

    def test_failed_read_is_empty_and_not_cached(self):
        rec = Recorder(get_replies={"getProducts": {"error": "quota"}})
        store = make_store(rec)
        assert store.fetch_catalog() == []
        store.fetch_catalog()
        assert len(rec.requests) == 2

    def test_transport_errors_retried(self):
        calls = []

        def flaky(request):
            calls.append(request)
            if len(calls) < 2:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json=[{"key": "bad_good_kpi", "value": "{}"}])

        store = WebhookShiftStore(URL, client=httpx.Client(transport=httpx.MockTransport(flaky)))
        assert store.fetch_settings() == [{"key": "bad_good_kpi", "value": "{}"}]
        assert len(calls) == 2

    def test_requires_url(self):
        with pytest.raises(ValueError):
            WebhookShiftStore("")
