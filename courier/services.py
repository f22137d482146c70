from __future__ import annotations

import logging
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from core.exceptions import ConflictError, NotFoundError, ValidationError
from order.models import Order

from .models import Delivery

logger = logging.getLogger(__name__)
User = get_user_model()


def reserve_courier(courier_id) -> None:
    """Flips a courier from available to busy, or fails if someone got there first."""
    updated = User.objects.filter(
        id=courier_id,
        role=User.Role.COURIER,
        is_available=True,
    ).update(is_available=False, updated_at=timezone.now())
    if updated == 0:
        raise ConflictError("Courier is busy with another delivery.")


def release_courier(courier_id) -> None:
    User.objects.filter(id=courier_id, role=User.Role.COURIER).update(
        is_available=True,
        updated_at=timezone.now(),
    )


@transaction.atomic
def open_delivery(order: Order, method: str, courier_id=None) -> Delivery:
    """
    Creates the transport leg for an order being routed.

    Contracted deliveries start assigned and accepted, which reserves the
    store's courier. Marketplace deliveries start requested and unassigned.
    Self-delivery starts accepted with packing already under way.
    """
    now = timezone.now()
    fields = {"order": order, "method": method}

    if method == Order.DeliveryMethod.CONTRACTED:
        if not courier_id:
            raise ValidationError("This store has no contracted courier.")
        reserve_courier(courier_id)
        fields.update(courier_id=courier_id, status=Delivery.Status.ACCEPTED, accepted_at=now)
    elif method == Order.DeliveryMethod.MARKETPLACE:
        fields.update(status=Delivery.Status.REQUESTED)
    elif method == Order.DeliveryMethod.SELLER:
        fields.update(status=Delivery.Status.ACCEPTED, accepted_at=now, packing_started_at=now)
    else:
        raise ValidationError(f"Unsupported delivery method: {method}")

    delivery = Delivery.objects.create(**fields)
    logger.info("Delivery opened order=%s method=%s courier=%s", order.id, method, courier_id)
    return delivery


def list_available_deliveries(courier):
    if not courier.is_available:
        return Delivery.objects.none()
    return (
        Delivery.objects.filter(
            method=Order.DeliveryMethod.MARKETPLACE,
            status=Delivery.Status.REQUESTED,
            courier__isnull=True,
            order__status=Order.Status.DELIVERING,
        )
        .select_related("order", "order__shop")
        .order_by("created_at")
    )


@transaction.atomic
def claim_delivery(order_id, courier) -> Delivery:
    """
    Assigns an unassigned marketplace delivery to ``courier``.

    Both steps are compare-and-set updates: the courier must still be
    available, and the delivery must still be requested and unassigned.
    A lost race on the delivery rolls back the availability flip.
    """
    if not Delivery.objects.filter(order_id=order_id, method=Order.DeliveryMethod.MARKETPLACE).exists():
        raise NotFoundError("Delivery not found.")

    reserve_courier(courier.id)

    now = timezone.now()
    claimed = Delivery.objects.filter(
        order_id=order_id,
        method=Order.DeliveryMethod.MARKETPLACE,
        status=Delivery.Status.REQUESTED,
        courier__isnull=True,
        order__status=Order.Status.DELIVERING,
    ).update(courier=courier, status=Delivery.Status.ACCEPTED, accepted_at=now, updated_at=now)
    if claimed == 0:
        logger.info("Claim lost order=%s courier=%s", order_id, courier.id)
        raise ConflictError("Delivery already taken.")

    logger.info("Delivery claimed order=%s courier=%s", order_id, courier.id)
    return Delivery.objects.select_related("order", "order__shop").get(order_id=order_id)


@transaction.atomic
def current_delivery(courier) -> Optional[Delivery]:
    delivery = (
        Delivery.objects.filter(courier=courier, status__in=Delivery.ACTIVE_STATUSES)
        .select_related("order", "order__shop")
        .order_by("-accepted_at")
        .first()
    )
    if delivery is None and not courier.is_available:
        # Busy flag with nothing assigned; put the courier back in the pool.
        release_courier(courier.id)
        courier.is_available = True
        logger.warning("Repaired availability for courier=%s with no active delivery", courier.id)
    return delivery
