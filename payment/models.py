import uuid
from django.db import models
from django.conf import settings
from order.models import Order


class Payment(models.Model):

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        COMPLETED = "COMPLETED", "Completed"
        FAILED = "FAILED", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="payments"
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE
    )

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=10, default="BRL")

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING
    )

    provider = models.CharField(max_length=50)  # e.g. ABACATEPAY
    provider_reference = models.CharField(
        max_length=150,
        blank=True,
        null=True
    )

    # PIX presentation data (brCode, expiry) as returned by the gateway
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["status"], name="payment_status_idx"),
            models.Index(fields=["provider_reference"], name="payment_reference_idx"),
        ]

    def __str__(self):
        return f"{self.order.id} - {self.status}"


class WebhookLog(models.Model):

    class Outcome(models.TextChoices):
        APPROVED = "APPROVED", "Approved"
        DUPLICATE = "DUPLICATE", "Duplicate"
        ORDER_NOT_FOUND = "ORDER_NOT_FOUND", "Order Not Found"
        IGNORED = "IGNORED", "Ignored"
        INVALID_SIGNATURE = "INVALID_SIGNATURE", "Invalid Signature"
        INVALID_PAYLOAD = "INVALID_PAYLOAD", "Invalid Payload"
        FAILED = "FAILED", "Failed"

    provider = models.CharField(max_length=50)
    event_type = models.CharField(max_length=100, blank=True)

    reference = models.CharField(max_length=150, blank=True)
    payload = models.JSONField(default=dict, blank=True)

    outcome = models.CharField(max_length=30, choices=Outcome.choices, blank=True)
    processed = models.BooleanField(default=False)
    processing_attempts = models.IntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["reference"], name="webhooklog_reference_idx"),
            models.Index(fields=["processed"], name="webhooklog_processed_idx"),
        ]


class LedgerEntry(models.Model):

    class EntryType(models.TextChoices):
        SELLER_EARNING = "SELLER_EARNING", "Seller Earning"
        COURIER_FEE = "COURIER_FEE", "Courier Fee"
        MARKETPLACE_FEE = "MARKETPLACE_FEE", "Marketplace Fee"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="ledger_entries"
    )

    # Empty for the marketplace's own share
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="ledger_entries",
        null=True,
        blank=True,
    )

    entry_type = models.CharField(
        max_length=30,
        choices=EntryType.choices
    )

    amount = models.DecimalField(max_digits=12, decimal_places=2)

    description = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["order", "entry_type"], name="unique_ledger_entry_per_order"),
        ]

    def __str__(self):
        return f"{self.entry_type} - {self.amount}"
