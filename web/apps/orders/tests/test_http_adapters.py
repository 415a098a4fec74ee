"""Unit tests for the HTTP adapters to the catalog and inventory services.

These tests monkeypatch ``httpx.Client.request`` and ``time.sleep`` to
verify response decoding, the retry policy, header propagation and the
circuit breaker without any network access.
"""

from decimal import Decimal

import httpx
import pytest

from apps.orders.errors import (
    CatalogUnavailable,
    InsufficientStock,
    InventoryUnavailable,
    PriceNotFound,
    ValidationError,
)
from apps.orders.http_adapters import (
    GENERIC_DOWNSTREAM_MESSAGE,
    CircuitBreaker,
    CircuitOpen,
    HttpPriceQuoteClient,
    HttpStockReservationClient,
    _catalog_cb,
    decode_error,
)
from gateway.middleware import REQUEST_ID_CTX


class DummyResp:
    """Minimal httpx-like response stub for adapter tests.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | None): JSON body to return from ``json()``.
    """

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("no body")
        return self._json


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)


def script(monkeypatch, *outcomes):
    """Patch ``httpx.Client.request`` to play back responses or errors."""
    calls = []

    def fake_request(self, method, url, json=None, headers=None, **kw):
        calls.append({"method": method, "url": url, "json": json, "headers": dict(headers or {})})
        outcome = outcomes[min(len(calls), len(outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    return calls


def test_get_prices_ok(monkeypatch):
    calls = script(monkeypatch, DummyResp(200, {"bookPrice": {"101": 399.0, "102": 249.5}}))
    prices = HttpPriceQuoteClient(base_url="http://catalog").get_prices([101, 102])
    assert prices == {101: Decimal("399.0"), 102: Decimal("249.5")}
    assert calls[0]["method"] == "POST"
    assert calls[0]["url"] == "http://catalog/api/v1/book/bulk/prices"
    assert calls[0]["json"] == {"bookIds": [101, 102]}


def test_get_prices_incomplete_map_is_price_not_found(monkeypatch):
    script(monkeypatch, DummyResp(200, {"bookPrice": {"101": 399.0}}))
    with pytest.raises(PriceNotFound) as e:
        HttpPriceQuoteClient(base_url="http://catalog").get_prices([101, 102])
    assert e.value.book_ids == [102]


@pytest.mark.parametrize(
    "status, error",
    [(400, ValidationError), (404, PriceNotFound), (409, CatalogUnavailable)],
)
def test_get_prices_maps_business_errors(monkeypatch, status, error):
    calls = script(monkeypatch, DummyResp(status, {"message": "Book ID not found: [7]"}))
    with pytest.raises(error) as e:
        HttpPriceQuoteClient(base_url="http://catalog").get_prices([7])
    assert "Book ID not found: [7]" in e.value.message
    assert len(calls) == 1


def test_get_prices_404_names_only_missing_books(monkeypatch):
    script(
        monkeypatch,
        DummyResp(404, {"message": "Book ID not found: [999]", "missingBookIds": [999]}),
    )
    with pytest.raises(PriceNotFound) as e:
        HttpPriceQuoteClient(base_url="http://catalog").get_prices([101, 102, 999])
    assert e.value.book_ids == [999]


def test_get_prices_404_without_ids_names_every_book(monkeypatch):
    script(monkeypatch, DummyResp(404, {"message": "not found"}))
    with pytest.raises(PriceNotFound) as e:
        HttpPriceQuoteClient(base_url="http://catalog").get_prices([102, 101])
    assert e.value.book_ids == [101, 102]


def test_get_prices_retries_on_5xx(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 2
    calls = script(monkeypatch, DummyResp(503), DummyResp(200, {"bookPrice": {"101": 10}}))
    assert HttpPriceQuoteClient(base_url="http://catalog").get_prices([101]) == {101: Decimal("10")}
    assert len(calls) == 2
    assert calls[1]["headers"]["X-Retry-Count"] == "1"


def test_get_prices_gives_up_after_retries(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 2
    calls = script(monkeypatch, httpx.ConnectError("boom"))
    with pytest.raises(CatalogUnavailable):
        HttpPriceQuoteClient(base_url="http://catalog").get_prices([101])
    assert len(calls) == 3


def test_request_headers_carry_request_id_and_secret(monkeypatch, settings):
    settings.GATEWAY_SECRET = "s3cret"
    calls = script(monkeypatch, DummyResp(200, {"bookPrice": {"101": 1}}))
    token = REQUEST_ID_CTX.set("req-123")
    try:
        HttpPriceQuoteClient(base_url="http://catalog").get_prices([101])
    finally:
        REQUEST_ID_CTX.reset(token)
    assert calls[0]["headers"]["X-Request-ID"] == "req-123"
    assert calls[0]["headers"]["X-Gateway-Secret"] == "s3cret"


def test_check_availability_ok(monkeypatch):
    calls = script(
        monkeypatch,
        DummyResp(200, {"availabilityMap": {"101": True, "102": False}, "allAvailable": False, "message": ""}),
    )
    out = HttpStockReservationClient(base_url="http://inventory").check_bulk_availability({101: 1, 102: 5})
    assert out == {101: True, 102: False}
    assert calls[0]["json"] == {"bookQuantities": {"101": 1, "102": 5}}


def test_check_availability_error_is_unavailable(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 0
    script(monkeypatch, DummyResp(500, {"message": "db"}))
    with pytest.raises(InventoryUnavailable):
        HttpStockReservationClient(base_url="http://inventory").check_bulk_availability({101: 1})


def test_reduce_ok(monkeypatch):
    calls = script(monkeypatch, DummyResp(200, {"reduced": True}))
    HttpStockReservationClient(base_url="http://inventory").reduce_bulk_inventory({101: 2})
    assert calls[0]["method"] == "PATCH"
    assert calls[0]["url"] == "http://inventory/api/v1/inventory/bulk/reduce"


@pytest.mark.parametrize("status", [400, 404, 409, 422])
def test_reduce_rejection_is_insufficient_stock(monkeypatch, status):
    script(monkeypatch, DummyResp(status, {"message": "Insufficient stock for books: [102]", "unavailableBookIds": [102]}))
    with pytest.raises(InsufficientStock) as e:
        HttpStockReservationClient(base_url="http://inventory").reduce_bulk_inventory({101: 1, 102: 1})
    assert e.value.book_ids == [102]


def test_reduce_not_retried_on_5xx(monkeypatch, settings, no_sleep):
    """The server may have applied the reduction; a 5xx is not replayed."""
    settings.HTTP_RETRY_MAX = 3
    calls = script(monkeypatch, DummyResp(502), DummyResp(200, {"reduced": True}))
    with pytest.raises(InventoryUnavailable):
        HttpStockReservationClient(base_url="http://inventory").reduce_bulk_inventory({101: 1})
    assert len(calls) == 1


def test_reduce_not_retried_on_read_timeout(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 3
    calls = script(monkeypatch, httpx.ReadTimeout("slow"), DummyResp(200, {"reduced": True}))
    with pytest.raises(InventoryUnavailable):
        HttpStockReservationClient(base_url="http://inventory").reduce_bulk_inventory({101: 1})
    assert len(calls) == 1


def test_reduce_retried_when_connection_refused(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 3
    calls = script(monkeypatch, httpx.ConnectError("refused"), DummyResp(200, {"reduced": True}))
    HttpStockReservationClient(base_url="http://inventory").reduce_bulk_inventory({101: 1})
    assert len(calls) == 2


def test_decode_error_falls_back_to_generic_message():
    assert decode_error(DummyResp(500)) == (500, GENERIC_DOWNSTREAM_MESSAGE)
    assert decode_error(DummyResp(404, {"message": "nope"})) == (404, "nope")
    assert decode_error(DummyResp(400, ["unexpected"])) == (400, GENERIC_DOWNSTREAM_MESSAGE)


def test_catalog_circuit_opens_after_failures(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 0
    calls = script(monkeypatch, DummyResp(500))
    client = HttpPriceQuoteClient(base_url="http://catalog")
    for _ in range(_catalog_cb.fail_threshold):
        with pytest.raises(CatalogUnavailable):
            client.get_prices([101])
    assert _catalog_cb.state == "OPEN"

    sent = len(calls)
    with pytest.raises(CatalogUnavailable) as e:
        client.get_prices([101])
    assert "CIRCUIT_OPEN" in e.value.message
    assert len(calls) == sent


def test_circuit_breaker_half_open_probe(monkeypatch):
    clock = {"t": 100.0}
    monkeypatch.setattr("time.monotonic", lambda: clock["t"])
    cb = CircuitBreaker("test", fail_threshold=1, reset_timeout=10)

    cb.before_call()
    cb.on_failure()
    assert cb.state == "OPEN"
    with pytest.raises(CircuitOpen):
        cb.before_call()

    clock["t"] += 10
    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(CircuitOpen):
        cb.before_call()  # single probe in flight
    cb.on_failure()
    assert cb.state == "OPEN"

    clock["t"] += 10
    cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"
