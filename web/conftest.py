import pytest


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings, monkeypatch):
    from django.core.cache import cache

    from apps.orders import adapters, providers
    from apps.orders.http_adapters import _catalog_cb, _inventory_cb

    settings.USE_HTTP_ADAPTERS = False
    settings.GATEWAY_SECRET = ""
    # fresh stock and prices per test; the provider stubs are process-wide
    monkeypatch.setattr(providers, "_catalog_stub", adapters.CatalogStub())
    monkeypatch.setattr(providers, "_inventory_stub", adapters.InventoryStub())
    # throttle counters live in the default cache
    cache.clear()
    _catalog_cb.on_success()
    _inventory_cb.on_success()
    yield
    _catalog_cb.on_success()
    _inventory_cb.on_success()


@pytest.fixture
def catalog_stub():
    from apps.orders import providers

    return providers._catalog_stub


@pytest.fixture
def inventory_stub():
    from apps.orders import providers

    return providers._inventory_stub
