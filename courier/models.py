import uuid
from django.conf import settings
from django.db import models

from order.models import Order


class Delivery(models.Model):
    class Status(models.TextChoices):
        REQUESTED = "requested", "Requested"
        ACCEPTED = "accepted", "Accepted"
        PICKED_UP = "picked_up", "Picked Up"
        DELIVERED_CONFIRMED = "delivered_confirmed", "Delivered Confirmed"

    ACTIVE_STATUSES = (Status.ACCEPTED, Status.PICKED_UP)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(Order, related_name="delivery", on_delete=models.CASCADE)
    # Set once, either at creation (contracted) or by a successful claim (marketplace)
    courier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="deliveries",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
    )
    method = models.CharField(max_length=20, choices=Order.DeliveryMethod.choices)
    status = models.CharField(max_length=30, choices=Status.choices, default=Status.REQUESTED)

    packing_started_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "deliveries"
        indexes = [
            models.Index(fields=["method", "status"], name="delivery_method_status_idx"),
        ]

    def __str__(self):
        return f"{self.order.order_number} - {self.status}"
