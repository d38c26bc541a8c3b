from django.urls import path

from .views import (
    AdminOrderDetailView,
    AdminOrdersView,
    CaptureView,
    CartItemDetailView,
    CartItemsView,
    CartView,
    CheckoutView,
    ClientOrderDetailView,
    ClientOrdersView,
    GatewayOrderView,
    PlaceOrderView,
)

app_name = "checkout"

urlpatterns = [
    path("cart/", CartView.as_view(), name="cart"),  # GET resolved cart / DELETE clear
    path("cart/items/", CartItemsView.as_view(), name="cart-items"),
    path("cart/items/<int:product_id>/", CartItemDetailView.as_view(), name="cart-item"),
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("checkout/gateway-order/", GatewayOrderView.as_view(), name="gateway-order"),
    path("checkout/capture/", CaptureView.as_view(), name="capture"),
    path("checkout/place/", PlaceOrderView.as_view(), name="place"),
    path("orders/", ClientOrdersView.as_view(), name="orders"),
    path("orders/<int:oid>/", ClientOrderDetailView.as_view(), name="order-detail"),
    path("admin/orders/", AdminOrdersView.as_view(), name="admin-orders"),
    path("admin/orders/<int:oid>/", AdminOrderDetailView.as_view(), name="admin-order-detail"),
]
