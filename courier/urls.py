from django.urls import path

from .views import (
    AcceptDeliveryView,
    AvailableDeliveriesView,
    ConfirmDeliveryView,
    CourierMetricsView,
    CurrentDeliveryView,
)


urlpatterns = [
    path("available/", AvailableDeliveriesView.as_view(), name="deliveries-available"),
    path("<uuid:order_id>/accept/", AcceptDeliveryView.as_view(), name="delivery-accept"),
    path("current/", CurrentDeliveryView.as_view(), name="delivery-current"),
    path("metrics/", CourierMetricsView.as_view(), name="courier-metrics"),
    path("confirm/", ConfirmDeliveryView.as_view(), name="delivery-confirm"),
]
