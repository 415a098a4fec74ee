"""API tests for the inventory service against a throwaway SQLite database."""

import importlib
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

SERVICE_DIR = Path(__file__).resolve().parent


@pytest.fixture
def service(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'inventory.db'}")
    monkeypatch.syspath_prepend(str(SERVICE_DIR))
    for name in ("main", "repo"):
        monkeypatch.delitem(sys.modules, name, raising=False)
    main = importlib.import_module("main")
    repo = importlib.import_module("repo")
    with TestClient(main.app) as client:
        inv = repo.InventoryRepo()
        inv.upsert(101, 10)
        inv.upsert(102, 1)
        yield client, inv


def test_health(service):
    client, _ = service
    assert client.get("/health").json() == {"ok": True}


def test_check_availability(service):
    client, _ = service
    r = client.post(
        "/api/v1/inventory/bulk/check-availability",
        json={"bookQuantities": {"101": 2, "102": 5, "999": 1}},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["availabilityMap"] == {"101": True, "102": False, "999": False}
    assert body["allAvailable"] is False


def test_reduce_all_or_nothing(service):
    client, inv = service
    r = client.patch("/api/v1/inventory/bulk/reduce", json={"bookQuantities": {"101": 2, "102": 5}})
    assert r.status_code == 400
    assert r.json()["unavailableBookIds"] == [102]
    assert inv.get(101) == 10 and inv.get(102) == 1

    r = client.patch("/api/v1/inventory/bulk/reduce", json={"bookQuantities": {"101": 2, "102": 1}})
    assert r.status_code == 200
    assert r.json() == {"reduced": True}
    assert inv.get(101) == 8 and inv.get(102) == 0


def test_invalid_quantities_rejected(service):
    client, _ = service
    r = client.patch("/api/v1/inventory/bulk/reduce", json={"bookQuantities": {"101": 0}})
    assert r.status_code == 400
    assert "message" in r.json()


def test_request_id_echoed(service):
    client, _ = service
    r = client.get("/health", headers={"X-Request-ID": "rid-9"})
    assert r.headers["X-Request-ID"] == "rid-9"
