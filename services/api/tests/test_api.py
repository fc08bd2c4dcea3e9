"""
HTTP surface tests (FastAPI TestClient, in-memory fake store).

Run with: pytest tests/test_api.py -v
"""
import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import main
from core.auth import hash_password
from core.errors import PersistenceError
from core.ledger import LedgerConfig, LedgerRegistry
from models.user import Role, User

USERS = [
    User(id="1", login="ivan", name="Ivan", role=Role.EMPLOYEE, password="secret"),
    User(id="2", login="boss", name="Owner", role=Role.OWNER, password=hash_password("hunter2")),
    User(id="3", login="petro", name="Petro", role=Role.EMPLOYEE, password="pw"),
]


@pytest.fixture
def api(monkeypatch, store, history):
    store.users = USERS
    monkeypatch.setattr(main, "storage_adapter", store)
    monkeypatch.setattr(main, "history_store", history)
    monkeypatch.setattr(main, "ledger_registry", LedgerRegistry())
    monkeypatch.setattr(main, "ledger_config", LedgerConfig(ai_analysis_enabled=False))
    return TestClient(main.app)


def login(api, name, password):
    resp = api.post("/auth/login", json={"login": name, "password": password})
    assert resp.status_code == 200, resp.text
    return {"X-Session-Token": resp.json()["token"]}


def open_shift(api, headers):
    resp = api.post("/shifts", json={}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["shift_id"]


def reviewed_shift(api, headers, taps=2):
    sid = open_shift(api, headers)
    assert api.post(f"/shifts/{sid}/board", json={
        "length": 2000, "width": 150, "thickness": 50, "batch_number": "B-1"
    }, headers=headers).status_code == 200
    for _ in range(taps):
        api.post(f"/shifts/{sid}/cart", json={"product_id": "p1", "delta": 1}, headers=headers)
    assert api.post(f"/shifts/{sid}/review", headers=headers).status_code == 200
    return sid


class TestHealth:
    """Liveness and readiness."""

    def test_healthz(self, api):
        resp = api.get("/healthz")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert "X-Request-ID" in resp.headers

    def test_readyz(self, api):
        resp = api.get("/readyz")
        assert resp.status_code == 200
        assert resp.json()["catalog_size"] == 2

    def test_readyz_empty_catalog(self, api, store):
        store.products = []
        assert api.get("/readyz").status_code == 503


class TestAuth:
    """Login and sessions."""

    def test_login(self, api):
        resp = api.post("/auth/login", json={"login": "IVAN", "password": "secret"})
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["role"] == "employee"
        assert "record_shifts" in user["capabilities"]
        assert "password" not in user

    def test_bad_password(self, api):
        resp = api.post("/auth/login", json={"login": "ivan", "password": "nope"})
        assert resp.status_code == 401

    def test_me_and_logout(self, api):
        headers = login(api, "boss", "hunter2")
        assert api.get("/auth/me", headers=headers).json()["role"] == "owner"
        assert api.post("/auth/logout", headers=headers).status_code == 204
        assert api.get("/auth/me", headers=headers).status_code == 401

    def test_no_token(self, api):
        assert api.get("/catalog/products").status_code == 401

    def test_local_session_without_user_directory(self, api, monkeypatch):
        """No Users sheet: any login gets a local session with the configured role."""
        monkeypatch.setattr(main, "storage_adapter", None)
        resp = api.post("/auth/login", json={"login": "ivan", "password": "anything"})
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["login"] == "ivan"
        assert user["role"] == "employee"

    def test_user_directory_unreachable(self, api, store, monkeypatch):
        def boom():
            raise PersistenceError("getUsers failed")
        monkeypatch.setattr(store, "fetch_users", boom)
        resp = api.post("/auth/login", json={"login": "ivan", "password": "secret"})
        assert resp.status_code == 502


class TestCatalog:
    """Reference data."""

    def test_products(self, api):
        headers = login(api, "ivan", "secret")
        resp = api.get("/catalog/products", headers=headers)
        assert [p["id"] for p in resp.json()] == ["p1", "p2"]

    def test_kpi_settings_default(self, api):
        headers = login(api, "ivan", "secret")
        body = api.get("/catalog/kpi-settings", headers=headers).json()
        assert body["good"]["threshold"] == 1.5

    def test_refresh_needs_owner(self, api):
        assert api.post("/catalog/refresh", headers=login(api, "ivan", "secret")).status_code == 403
        assert api.post("/catalog/refresh", headers=login(api, "boss", "hunter2")).status_code == 200


class TestShiftFlow:
    """Board -> cart -> review -> save -> next."""

    def test_happy_path(self, api, store):
        headers = login(api, "ivan", "secret")
        sid = reviewed_shift(api, headers)

        shift = api.get(f"/shifts/{sid}", headers=headers).json()
        assert shift["state"] == "reviewed"
        assert shift["result"]["earnings"] == 300
        assert shift["result"]["yield_percentage"] == 26
        assert shift["can_save"] is True

        resp = api.post(f"/shifts/{sid}/save", headers=headers)
        body = resp.json()
        assert body["ok"] and body["synced"]
        assert body["state"] == "saved"
        assert store.saved[0][3].executor == "Ivan"

        assert api.post(f"/shifts/{sid}/next", headers=headers).json()["state"] == "empty"

    def test_owner_cannot_open_shift(self, api):
        resp = api.post("/shifts", json={}, headers=login(api, "boss", "hunter2"))
        assert resp.status_code == 403

    def test_bad_board(self, api):
        headers = login(api, "ivan", "secret")
        sid = open_shift(api, headers)
        resp = api.post(f"/shifts/{sid}/board", json={
            "length": 0, "width": 150, "thickness": 50, "batch_number": "B-1"
        }, headers=headers)
        assert resp.status_code == 400

    def test_unknown_product(self, api):
        headers = login(api, "ivan", "secret")
        sid = open_shift(api, headers)
        resp = api.post(f"/shifts/{sid}/cart", json={"product_id": "zzz", "delta": 1}, headers=headers)
        assert resp.status_code == 404

    def test_unknown_product_with_client_price_rejected(self, api, store):
        """A client-supplied product is not trusted while the catalog is available."""
        headers = login(api, "ivan", "secret")
        sid = open_shift(api, headers)
        resp = api.post(f"/shifts/{sid}/cart", json={
            "product_id": "zzz",
            "delta": 1,
            "product": {"id": "zzz", "name": "Gold plank", "price": 1000000},
        }, headers=headers)
        assert resp.status_code == 404
        assert api.get(f"/shifts/{sid}", headers=headers).json()["cart"] == []

    def test_other_users_shift_forbidden(self, api):
        sid = open_shift(api, login(api, "ivan", "secret"))
        other = login(api, "petro", "pw")
        assert api.get(f"/shifts/{sid}", headers=other).status_code == 403
        resp = api.post(f"/shifts/{sid}/cart", json={"product_id": "p1", "delta": 1}, headers=other)
        assert resp.status_code == 403
        assert api.delete(f"/shifts/{sid}", headers=other).status_code == 403

    def test_save_before_review_conflicts(self, api):
        headers = login(api, "ivan", "secret")
        sid = open_shift(api, headers)
        assert api.post(f"/shifts/{sid}/save", headers=headers).status_code == 409

    def test_remote_failure_is_reported_not_raised(self, api, store, history):
        headers = login(api, "ivan", "secret")
        sid = reviewed_shift(api, headers)
        store.fail_writes = True

        body = api.post(f"/shifts/{sid}/save", headers=headers).json()
        assert body["ok"] is False
        assert body["state"] == "reviewed"
        assert len(history.load()) == 1

    def test_yield_gate(self, api, monkeypatch):
        monkeypatch.setattr(
            main, "ledger_config",
            LedgerConfig(ai_analysis_enabled=False, yield_control_enabled=True, min_yield=30),
        )
        headers = login(api, "ivan", "secret")
        sid = reviewed_shift(api, headers)
        resp = api.post(f"/shifts/{sid}/save", headers=headers)
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "YIELD_OUT_OF_RANGE"

    def test_unknown_shift(self, api):
        headers = login(api, "ivan", "secret")
        assert api.get("/shifts/nope", headers=headers).status_code == 404

    def test_close_shift(self, api):
        headers = login(api, "ivan", "secret")
        sid = open_shift(api, headers)
        assert api.delete(f"/shifts/{sid}", headers=headers).status_code == 204
        assert api.get(f"/shifts/{sid}", headers=headers).status_code == 404


class TestHistoryEdit:
    """Same-day edits through the API."""

    def saved(self, api, headers):
        sid = reviewed_shift(api, headers)
        return api.post(f"/shifts/{sid}/save", headers=headers).json()["entry"]["board_id"]

    def test_list(self, api):
        headers = login(api, "ivan", "secret")
        board_id = self.saved(api, headers)
        entries = api.get("/history", headers=headers).json()
        assert [e["board_id"] for e in entries] == [board_id]

    def test_edit_changes(self, api, store):
        headers = login(api, "ivan", "secret")
        board_id = self.saved(api, headers)
        resp = api.patch(f"/history/{board_id}", json={
            "changes": [{"product_id": "p1", "delta": -1}, {"product_id": "p2", "delta": 1}]
        }, headers=headers)
        body = resp.json()
        assert body["ok"]
        assert body["entry"]["earnings"] == 150 + 90
        assert len(store.updated) == 1

    def test_clear_soft_deletes(self, api, store):
        headers = login(api, "ivan", "secret")
        board_id = self.saved(api, headers)
        body = api.patch(f"/history/{board_id}", json={"clear": True}, headers=headers).json()
        assert body["ok"]
        assert body["entry"]["status"] == "deleted"
        assert store.deleted == [board_id]

        active = api.get("/history?include_deleted=false", headers=headers).json()
        assert active == []

    def test_other_workers_entry(self, api):
        board_id = self.saved(api, login(api, "ivan", "secret"))
        resp = api.patch(f"/history/{board_id}", json={"clear": True}, headers=login(api, "petro", "pw"))
        assert resp.status_code == 403

    def test_unknown_entry(self, api):
        headers = login(api, "ivan", "secret")
        assert api.patch("/history/nope", json={"clear": True}, headers=headers).status_code == 404

    def test_edit_with_unknown_priced_product(self, api):
        headers = login(api, "ivan", "secret")
        board_id = self.saved(api, headers)
        resp = api.patch(f"/history/{board_id}", json={"changes": [
            {"product_id": "zzz", "delta": 1, "product": {"id": "zzz", "name": "Gold", "price": 1000000}},
        ]}, headers=headers)
        assert resp.status_code == 404


class TestAnalytics:
    """Owner dashboard endpoints."""

    ROWS = [
        {"timestamp": "14.05.2024, 10:00:00", "executor": "Ivan", "boardVolumeM3": "0.015",
         "productsVolumeM3": "0.0075", "earnings": "300", "yieldPercentage": "50", "KPI": "2",
         "products": '{"Plank": {"count": 2, "cost": 150}}'},
        {"timestamp": "15.05.2024, 10:00:00", "executor": "Ivan", "status": "deleted",
         "boardVolumeM3": "0.015", "earnings": "999"},
    ]

    def test_summary(self, api, store):
        store.history_rows = self.ROWS
        resp = api.get("/analytics/summary", headers=login(api, "boss", "hunter2"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["row_count"] == 1
        assert body["total_earnings"] == 300
        assert body["global_yield"] == pytest.approx(50)

    def test_summary_period(self, api, store):
        store.history_rows = self.ROWS
        resp = api.get(
            "/analytics/summary",
            params={"start": "2024-05-15T00:00:00", "end": "2024-05-31T00:00:00"},
            headers=login(api, "boss", "hunter2"),
        )
        assert resp.json()["row_count"] == 0

    def test_employee_forbidden(self, api):
        assert api.get("/analytics/summary", headers=login(api, "ivan", "secret")).status_code == 403

    def test_export(self, api, store):
        store.history_rows = self.ROWS
        resp = api.get("/analytics/export", headers=login(api, "boss", "hunter2"))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert resp.content[:2] == b"PK"


class TestLocalOnly:
    """No remote store: the whole shift still runs and saves on this server."""

    @pytest.fixture
    def local(self, api, monkeypatch):
        monkeypatch.setattr(main, "storage_adapter", None)
        return api

    def test_shift_saved_locally(self, local, history, plank):
        headers = login(local, "ivan", "whatever")
        sid = open_shift(local, headers)
        assert local.post(f"/shifts/{sid}/board", json={
            "length": 2000, "width": 150, "thickness": 50, "batch_number": "B-1"
        }, headers=headers).status_code == 200

        # no catalog to look in: the client's cached product is used
        for _ in range(2):
            resp = local.post(f"/shifts/{sid}/cart", json={
                "product_id": "p1", "delta": 1, "product": plank.model_dump(),
            }, headers=headers)
            assert resp.status_code == 200

        assert local.post(f"/shifts/{sid}/review", headers=headers).status_code == 200
        body = local.post(f"/shifts/{sid}/save", headers=headers).json()
        assert body["ok"] is True
        assert body["synced"] is False
        assert body["state"] == "saved"
        assert body["entry"]["earnings"] == 300

        entries = history.load()
        assert [e.executor for e in entries] == ["ivan"]

    def test_catalog_is_empty(self, local):
        headers = login(local, "ivan", "whatever")
        assert local.get("/catalog/products", headers=headers).json() == []
