"""
Route tests for the allocation, override and health endpoints.
The engine runs against the in-memory store.
"""

import uuid
import warnings
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from allocator.api.allocations import to_http_error
from allocator.api.router import api_router
from allocator.config import settings
from allocator.dependencies import get_engine, get_store
from allocator.engine.errors import (
    AllocationError,
    AllocationNotFoundError,
    OverrideConflictError,
    StoreError,
    ValidationError,
)
from allocator.engine.orchestrator import AllocationEngine
from allocator.store.memory_store import MemoryAllocationStore


class FailingStore(MemoryAllocationStore):
    async def load_locations(self, organization_id):
        raise StoreError("connection refused", "ERR_STORE_READ")

    async def health_check(self):
        raise StoreError("connection refused", "ERR_STORE_READ")


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(api_router)
    return app


@pytest.fixture
def client(app, memory_store, tracked):
    app.dependency_overrides[get_store] = lambda: memory_store
    app.dependency_overrides[get_engine] = lambda: AllocationEngine(
        memory_store, tracked=tracked, skip_categories=[], cascade_sessions=True
    )
    return TestClient(app)


@pytest.fixture
def failing_client(app, tracked):
    store = FailingStore()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_engine] = lambda: AllocationEngine(store, tracked=tracked)
    return TestClient(app)


def _recompute(client, month="2025-01", json=None):
    return client.post(f"/api/v1/organizations/org-1/allocations/{month}/recompute", json=json)


def _rows(client):
    response = client.get("/api/v1/organizations/org-1/allocations/2025-01")
    assert response.status_code == 200
    return {(a["expense_category"], a["location_code"]): a for a in response.json()["allocations"]}


class TestRecompute:

    def test_recompute_month(self, client):
        response = _recompute(client)
        assert response.status_code == 200

        body = response.json()
        assert body["status"] == "COMPLETED_WITH_WARNINGS"
        assert body["rows_written"] == 5
        assert body["session_allocations_written"] == 8
        assert {a["expense_category"] for a in body["allocated"]} == {"Utilities", "Insurance", "Janitorial"}

    def test_recompute_without_cascade(self, client):
        response = _recompute(client, json={"cascade_sessions": False})
        assert response.json()["session_allocations_written"] == 0

    def test_bad_month_is_422(self, client):
        response = _recompute(client, month="2025-13")
        assert response.status_code == 422
        assert response.json()["detail"]["error_code"] == "ERR_INVALID_MONTH"
        assert response.json()["detail"]["retryable"] is False

    def test_store_failure_is_503(self, failing_client):
        response = _recompute(failing_client)
        assert response.status_code == 503
        assert response.json()["detail"]["error_code"] == "ERR_STORE_READ"
        assert response.json()["detail"]["retryable"] is True

    def test_recompute_all_months(self, client):
        response = client.post("/api/v1/organizations/org-1/allocations/recompute", json={})
        assert response.status_code == 200
        assert [m["month"] for m in response.json()] == ["2025-01"]
        assert response.json()[0]["success"] is True


class TestErrorMapping:

    @pytest.mark.parametrize("error,status_code", [
        (ValidationError("bad amount", "ERR_INVALID_AMOUNT"), 422),
        (AllocationNotFoundError("abc"), 404),
        (OverrideConflictError("overridden"), 409),
        (StoreError("down", "ERR_STORE_READ"), 503),
        (AllocationError("boom", "ERR_INTERNAL"), 500),
    ])
    def test_status_codes(self, error, status_code):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            exc = to_http_error(error)
        assert exc.status_code == status_code
        assert exc.detail["error_code"] == error.error_code


class TestReadAllocations:

    def test_list_after_recompute(self, client):
        _recompute(client)
        response = client.get("/api/v1/organizations/org-1/allocations/2025-01")
        body = response.json()

        assert len(body["allocations"]) == 5
        assert Decimal(body["total_allocated"]) == Decimal("3925.00")
        rows = _rows(client)
        assert Decimal(rows[("Utilities", "SC")]["allocated_amount"]) == Decimal("283.33")
        assert rows[("Utilities", "SC")]["state"] == "COMPUTED"

    def test_empty_month(self, client):
        response = client.get("/api/v1/organizations/org-1/allocations/2024-06")
        assert response.status_code == 200
        assert response.json()["allocations"] == []

    def test_session_rows(self, client):
        _recompute(client)
        response = client.get("/api/v1/organizations/org-1/allocations/2025-01/sessions")
        assert response.status_code == 200
        assert len(response.json()["session_allocations"]) == 8


class TestOverrides:

    def test_apply_and_clear(self, client):
        _recompute(client)
        target = _rows(client)[("Utilities", "SC")]
        url = f"/api/v1/allocations/{target['allocation_id']}/override"

        response = client.put(url, json={"override_amount": "250.00", "notes": "per lease"})
        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "OVERRIDDEN"
        assert Decimal(body["allocated_amount"]) == Decimal("250.00")
        assert Decimal(body["computed_allocated_amount"]) == Decimal("283.33")
        assert Decimal(body["bingo_amount"]) == Decimal("125.00")

        # survives a recompute
        _recompute(client)
        assert _rows(client)[("Utilities", "SC")]["state"] == "OVERRIDDEN"

        response = client.delete(url)
        assert response.status_code == 200
        assert response.json()["state"] == "COMPUTED"

    def test_negative_amount_rejected(self, client):
        _recompute(client)
        target = _rows(client)[("Utilities", "SC")]
        response = client.put(
            f"/api/v1/allocations/{target['allocation_id']}/override",
            json={"override_amount": "-5"},
        )
        assert response.status_code == 422

    def test_unknown_allocation_is_404(self, client):
        response = client.put(
            f"/api/v1/allocations/{uuid.uuid4()}/override", json={"override_amount": "1"}
        )
        assert response.status_code == 404
        assert client.delete(f"/api/v1/allocations/{uuid.uuid4()}/override").status_code == 404


class TestApiKey:

    def test_missing_key_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret")
        response = client.get("/api/v1/organizations/org-1/allocations/2025-01")
        assert response.status_code == 401

    def test_valid_key_accepted(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret")
        response = client.get(
            "/api/v1/organizations/org-1/allocations/2025-01", headers={"X-API-Key": "secret"}
        )
        assert response.status_code == 200


class TestHealth:

    def test_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert client.get("/health/ready").json() == {"ready": True}

    def test_degraded_still_200(self, failing_client):
        response = failing_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["database_error"] == "connection refused"
        assert failing_client.get("/health/ready").json() == {"ready": False}


class TestJobs:

    def test_bad_month_rejected_before_enqueue(self, client):
        response = client.post(
            "/api/v1/jobs/organizations/org-1/recompute", json={"months": ["2025-1x"]}
        )
        assert response.status_code == 422
        assert response.json()["detail"]["error_code"] == "ERR_INVALID_MONTH"

    def test_enqueue(self, client, monkeypatch):
        calls = []

        def fake_enqueue(organization_id, months=None, preserve_overrides=None):
            calls.append((organization_id, months, preserve_overrides))
            return "job-1"

        monkeypatch.setattr("allocator.worker.jobs.enqueue_recompute", fake_enqueue)
        response = client.post(
            "/api/v1/jobs/organizations/org-1/recompute", json={"months": ["2025-01"]}
        )
        assert response.status_code == 202
        assert response.json()["job_id"] == "job-1"
        assert calls == [("org-1", ["2025-01"], None)]

    def test_queue_down_is_503(self, client, monkeypatch):
        def broken_enqueue(*args, **kwargs):
            raise ConnectionError("redis unreachable")

        monkeypatch.setattr("allocator.worker.jobs.enqueue_recompute", broken_enqueue)
        response = client.post("/api/v1/jobs/organizations/org-1/recompute")
        assert response.status_code == 503
