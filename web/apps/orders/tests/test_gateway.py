"""Tests for gateway trust, request size limits, logging context and health."""

import hmac
import logging

import pytest

from apps.orders.http_adapters import _inventory_cb
from gateway.logging_filters import RequestIdFilter
from gateway.middleware import REQUEST_ID_CTX


@pytest.mark.django_db
def test_gateway_secret_disabled_without_secret(client):
    assert client.get("/api/v1/order/getAll").status_code == 200


@pytest.mark.django_db
def test_gateway_secret_missing_header(client, settings):
    settings.GATEWAY_SECRET = "s3cret"
    r = client.get("/api/v1/order/getAll")
    assert r.status_code == 403
    body = r.json()
    assert body["message"] == "Direct access not allowed. Please use the API Gateway."
    assert body["path"] == "/api/v1/order/getAll"


@pytest.mark.django_db
def test_gateway_secret_wrong_header(client, settings):
    settings.GATEWAY_SECRET = "s3cret"
    r = client.get("/api/v1/order/getAll", HTTP_X_GATEWAY_SECRET="guess")
    assert r.status_code == 403
    assert r.json()["message"] == "Invalid gateway credentials."


@pytest.mark.django_db
def test_gateway_secret_accepted(client, settings):
    settings.GATEWAY_SECRET = "s3cret"
    r = client.get("/api/v1/order/getAll", HTTP_X_GATEWAY_SECRET="s3cret")
    assert r.status_code == 200


@pytest.mark.django_db
def test_gateway_public_paths_skip_secret(client, settings):
    settings.GATEWAY_SECRET = "s3cret"
    assert client.get("/api/v1/order/ping").status_code == 200
    assert client.get("/health/").status_code == 200


def test_payload_too_large(client, settings):
    settings.API_MAX_BYTES = 10
    r = client.post(
        "/api/v1/order/place",
        data={"userId": 1, "bookOrder": {"101": 1}},
        content_type="application/json",
    )
    assert r.status_code == 413
    assert r.json()["detail"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.django_db
def test_health_reports_components(client):
    r = client.get("/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["db"] == {"ok": True}
    assert body["components"]["catalog"] == {"circuit": "CLOSED"}


@pytest.mark.django_db
def test_health_shows_open_circuit_without_failing(client):
    for _ in range(_inventory_cb.fail_threshold):
        _inventory_cb.on_failure()
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json()["components"]["inventory"] == {"circuit": "OPEN"}


def test_request_id_filter_uses_context():
    record = logging.LogRecord("orders", logging.INFO, __file__, 1, "msg", None, None)
    token = REQUEST_ID_CTX.set("rid-1")
    try:
        assert RequestIdFilter().filter(record) is True
    finally:
        REQUEST_ID_CTX.reset(token)
    assert record.request_id == "rid-1"


def test_request_id_filter_keeps_explicit_value():
    record = logging.LogRecord("orders", logging.INFO, __file__, 1, "msg", None, None)
    record.request_id = "explicit"
    RequestIdFilter().filter(record)
    assert record.request_id == "explicit"


@pytest.mark.django_db
def test_gateway_secret_compared_in_constant_time(client, settings, monkeypatch):
    settings.GATEWAY_SECRET = "s3cret"
    seen = []
    real = hmac.compare_digest

    def spy(a, b):
        seen.append((a, b))
        return real(a, b)

    monkeypatch.setattr("gateway.middleware.hmac.compare_digest", spy)
    assert client.get("/api/v1/order/getAll", HTTP_X_GATEWAY_SECRET="s3cre").status_code == 403
    assert client.get("/api/v1/order/getAll", HTTP_X_GATEWAY_SECRET="s3cret").status_code == 200
    assert seen == [(b"s3cre", b"s3cret"), (b"s3cret", b"s3cret")]
