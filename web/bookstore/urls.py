from django.urls import include, path

urlpatterns = [
    path("", include("apps.monitoring.urls")),
    path("api/v1/order/", include(("apps.orders.urls", "orders"), namespace="orders")),
    # bare paths as published behind the gateway
    path("order/", include(("apps.orders.urls", "orders"), namespace="orders-root")),
]
