from django.db import models
from django.contrib.auth import get_user_model
import uuid
User = get_user_model()


class Shop(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    owner = models.ForeignKey(
        "account.User",
        on_delete=models.CASCADE,
        related_name="shops",
        limit_choices_to={"role": "SELLER"},
    )
    # Courier pre-hired by the store, independent of per-order assignment
    contracted_courier = models.ForeignKey(
        "account.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="contracted_shops",
        limit_choices_to={"role": "COURIER"},
    )

    address_street = models.CharField(max_length=255, blank=True)
    address_number = models.CharField(max_length=20, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name

    @property
    def address(self):
        parts = [p for p in (self.address_street, self.address_number) if p]
        return ", ".join(parts)
