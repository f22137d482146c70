"""
Buyer-facing tracking phrases and seller/courier timing metrics.

Everything here is derived from stored timestamps and statuses, so it is safe
to recompute on every poll.
"""
from datetime import datetime
from typing import Iterable, Optional, Tuple

from courier.models import Delivery

from .models import Order

AWAITING_PAYMENT = "Awaiting payment confirmation."
BEING_PACKED = "Your order is being prepared by the seller (packing)."
PREPARING_SHIPMENT = "Your payment was confirmed. The seller is preparing the shipment."
SELF_DELIVERY_DISPATCHED = "The seller has dispatched your order (own delivery). It is on its way."
SEARCHING_COURIER = "We are looking for an available courier. Thanks for your patience."
COURIER_EN_ROUTE_TO_STORE = "A courier was found and is on the way to the store to pick up your order."
COURIER_IN_TRANSIT = "The courier has picked up your order and is on the way to you!"
IN_TRANSIT = "Your order is in transit."
COMPLETED = "Order completed! Receipt confirmed."
UNKNOWN = "Unknown status."

NOT_AVAILABLE = "N/A"


def tracking_message(
    order_status: str,
    delivery_method: str,
    delivery_status: Optional[str] = None,
    courier_assigned: bool = False,
    picked_up_at: Optional[datetime] = None,
) -> str:
    if order_status == Order.Status.PENDING_PAYMENT:
        return AWAITING_PAYMENT
    if order_status == Order.Status.COMPLETED:
        return COMPLETED

    if order_status == Order.Status.PROCESSING:
        if delivery_method == Order.DeliveryMethod.SELLER or delivery_status is None:
            return BEING_PACKED
        return PREPARING_SHIPMENT

    if order_status == Order.Status.DELIVERING:
        if delivery_method == Order.DeliveryMethod.SELLER:
            return SELF_DELIVERY_DISPATCHED
        if delivery_method in (Order.DeliveryMethod.CONTRACTED, Order.DeliveryMethod.MARKETPLACE):
            if not courier_assigned:
                return SEARCHING_COURIER
            if picked_up_at:
                return COURIER_IN_TRANSIT
            if delivery_status == Delivery.Status.ACCEPTED:
                return COURIER_EN_ROUTE_TO_STORE
        return IN_TRANSIT

    return UNKNOWN


def tracking_message_for(order: Order) -> str:
    delivery = getattr(order, "delivery", None)
    if delivery is None:
        return tracking_message(order.status, order.delivery_method)
    return tracking_message(
        order.status,
        order.delivery_method,
        delivery_status=delivery.status,
        courier_assigned=delivery.courier_id is not None,
        picked_up_at=delivery.picked_up_at,
    )


def format_duration(total_seconds) -> str:
    """Formats seconds as ``"1h 2m 3s"``, dropping zero parts; ``None`` is ``"N/A"``."""
    if total_seconds is None:
        return NOT_AVAILABLE
    total_seconds = max(int(total_seconds), 0)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return " ".join(parts)


def _durations(pairs: Iterable[Tuple[datetime, datetime]]):
    return [(end - start).total_seconds() for start, end in pairs if start and end]


def _summary(durations):
    if not durations:
        return None, None, None
    return sum(durations) / len(durations), min(durations), max(durations)


def seller_metrics(seller):
    deliveries = Delivery.objects.filter(order__shop__owner=seller)

    packing = _durations(
        deliveries.filter(packing_started_at__isnull=False).values_list("order__created_at", "packing_started_at")
    )
    self_delivery = _durations(
        deliveries.filter(
            order__delivery_method=Order.DeliveryMethod.SELLER,
            packing_started_at__isnull=False,
            delivered_at__isnull=False,
        ).values_list("packing_started_at", "delivered_at")
    )

    avg_packing = _summary(packing)[0]
    avg_self, min_self, max_self = _summary(self_delivery)
    return {
        "avg_packing_time": format_duration(avg_packing),
        "avg_self_delivery_time": format_duration(avg_self),
        "min_self_delivery_time": format_duration(min_self),
        "max_self_delivery_time": format_duration(max_self),
    }


def courier_metrics(courier):
    deliveries = Delivery.objects.filter(courier=courier)

    delivery_times = _durations(
        deliveries.filter(picked_up_at__isnull=False, delivered_at__isnull=False).values_list(
            "picked_up_at", "delivered_at"
        )
    )
    pickup_times = _durations(
        deliveries.filter(packing_started_at__isnull=False, picked_up_at__isnull=False).values_list(
            "packing_started_at", "picked_up_at"
        )
    )

    avg_delivery, min_delivery, max_delivery = _summary(delivery_times)
    return {
        "avg_delivery_time": format_duration(avg_delivery),
        "min_delivery_time": format_duration(min_delivery),
        "max_delivery_time": format_duration(max_delivery),
        "avg_pickup_speed": format_duration(_summary(pickup_times)[0]),
        "completed_deliveries": deliveries.filter(status=Delivery.Status.DELIVERED_CONFIRMED).count(),
    }
