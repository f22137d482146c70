import uuid
from django.db import models
from django.contrib.auth import get_user_model
User = get_user_model()
from shop.models import Shop

from catalog.models import Product


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING_PAYMENT = "pending_payment", "Pending Payment"
        PROCESSING = "processing", "Processing"
        DELIVERING = "delivering", "Delivering"
        COMPLETED = "completed", "Completed"

    class DeliveryMethod(models.TextChoices):
        UNSET = "unset", "Unset"
        SELLER = "seller", "Seller"
        CONTRACTED = "contracted", "Contracted"
        MARKETPLACE = "marketplace", "Marketplace"

    # Forward-only lifecycle; a simulated purchase is created directly in PROCESSING.
    TRANSITIONS = {
        Status.PENDING_PAYMENT: {Status.PROCESSING},
        Status.PROCESSING: {Status.DELIVERING},
        Status.DELIVERING: {Status.COMPLETED},
        Status.COMPLETED: set(),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=20, unique=True)

    buyer = models.ForeignKey(User, on_delete=models.PROTECT, related_name="orders")
    shop = models.ForeignKey(Shop, on_delete=models.PROTECT, related_name="orders")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING_PAYMENT)
    delivery_method = models.CharField(
        max_length=20,
        choices=DeliveryMethod.choices,
        default=DeliveryMethod.UNSET,
    )

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_transaction_id = models.CharField(max_length=100, unique=True, blank=True, null=True)

    # Generated once at creation, never regenerated
    delivery_confirmation_code = models.CharField(max_length=12, editable=False)
    delivery_pickup_code = models.CharField(max_length=12, editable=False)

    # Snapshot of the buyer's address at purchase time
    delivery_street = models.CharField(max_length=255)
    delivery_number = models.CharField(max_length=20)
    delivery_city = models.CharField(max_length=120)
    delivery_district = models.CharField(max_length=120)
    delivery_nearby = models.CharField(max_length=255, blank=True)
    buyer_contact_number = models.CharField(max_length=20)

    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(total_amount__gt=0), name="order_total_amount_positive"),
        ]
        indexes = [
            models.Index(fields=["status"], name="order_status_idx"),
            models.Index(fields=["delivery_confirmation_code"], name="order_confirmation_code_idx"),
        ]

    def __str__(self):
        return f"{self.order_number} - {self.status}"

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @property
    def delivery_address(self):
        address = f"{self.delivery_street}, {self.delivery_number} - {self.delivery_district}, {self.delivery_city}"
        if self.delivery_nearby:
            address = f"{address} (Ref: {self.delivery_nearby})"
        return address


class OrderItem(models.Model):
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True)

    # Snapshot fields
    product_name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField()
    total = models.DecimalField(max_digits=12, decimal_places=2)
