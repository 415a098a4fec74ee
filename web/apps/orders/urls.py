from django.urls import path

from .views import (
    CancelOrderView,
    DeleteOrderView,
    DeleteUserOrdersView,
    ListOrdersView,
    OrdersByStatusView,
    OrdersByUserView,
    OrdersPingView,
    PlaceOrderView,
    RetrieveOrderView,
    UpdateOrderStatusView,
)

app_name = "orders"

urlpatterns = [
    path("ping", OrdersPingView.as_view(), name="ping"),
    path("place", PlaceOrderView.as_view(), name="place"),
    path("getAll", ListOrdersView.as_view(), name="list"),
    path("getById/<int:order_id>", RetrieveOrderView.as_view(), name="detail"),
    path("status/<str:order_status>", OrdersByStatusView.as_view(), name="by-status"),
    path("getByStatus/<str:order_status>", OrdersByStatusView.as_view(), name="by-status-legacy"),
    path("getByUser/<int:user_id>", OrdersByUserView.as_view(), name="by-user"),
    path("update/<int:order_id>", UpdateOrderStatusView.as_view(), name="update"),
    path("cancel/<int:order_id>", CancelOrderView.as_view(), name="cancel"),
    path("delete/<int:order_id>", DeleteOrderView.as_view(), name="delete"),
    path("deleteByUser/<int:user_id>", DeleteUserOrdersView.as_view(), name="delete-by-user"),
]
