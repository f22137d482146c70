from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from order.models import Order
from payment.models import Payment
from .abacatepay_sdk import AbacatePaySDK

logger = logging.getLogger(__name__)

PROVIDER = "ABACATEPAY"
# Charge states the gateway reports once a PIX payment has cleared
PAID_STATUSES = frozenset({"APPROVED", "PAID"})


class PaymentServiceError(Exception):
    """Base exception for payment service errors."""


class PaymentConfigurationError(PaymentServiceError):
    """Raised when required AbacatePay settings are missing."""


class PaymentGatewayError(PaymentServiceError):
    """Raised when AbacatePay API calls fail."""


@dataclass(frozen=True)
class PixCharge:
    tx_id: str
    br_code: str
    br_code_base64: str
    expires_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def presentation(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.tx_id,
            "br_code": self.br_code,
            "br_code_base64": self.br_code_base64,
            "expires_at": self.expires_at,
        }


class PaymentService:
    """High-level payment operations powered by the AbacatePay SDK."""

    def __init__(self, api_key: Optional[str] = None) -> None:
        config = getattr(settings, "ABACATEPAY", {})
        resolved_key = api_key or self._get_setting(config, "API_KEY")
        self.expires_in = int(getattr(settings, "MARKETPLACE", {}).get("PIX_EXPIRES_IN", 3600))

        self.sdk = AbacatePaySDK(
            api_key=resolved_key,
            base_url=config.get("BASE_URL") or "",
            timeout=float(config.get("TIMEOUT") or 15.0),
        )

    # -----------------------------
    # PIX charges
    # -----------------------------
    @transaction.atomic
    def create_order_charge(self, order: Order) -> PixCharge:
        """
        Creates the PIX charge for an order and the PENDING Payment that tracks
        it. Any gateway failure raises, rolling back the caller's transaction.
        """
        amount = self._validate_amount(order.total_amount)
        data = self._call_gateway(
            self.sdk.create_pix_qr_code,
            amount=self._to_cents(amount),
            expires_in=self.expires_in,
            description=f"Order {order.order_number}",
        )

        tx_id = str(data.get("id") or "").strip()
        if not tx_id:
            raise PaymentGatewayError("PIX charge was created without a transaction id")

        charge = PixCharge(
            tx_id=tx_id,
            br_code=data.get("brCode") or "",
            br_code_base64=data.get("brCodeBase64") or "",
            expires_at=data.get("expiresAt"),
            raw=data,
        )

        Payment.objects.create(
            order=order,
            user=order.buyer,
            amount=amount,
            status=Payment.Status.PENDING,
            provider=PROVIDER,
            provider_reference=tx_id,
            metadata=charge.presentation(),
        )
        logger.info("PIX charge %s created for order=%s amount=%s", tx_id, order.id, amount)
        return charge

    def simulate_payment(self, tx_id: str) -> Dict[str, Any]:
        if not tx_id:
            raise PaymentServiceError("tx_id is required")
        return self._call_gateway(self.sdk.simulate_payment, pix_id=tx_id)

    def get_charge_status(self, tx_id: str) -> Dict[str, Any]:
        if not tx_id:
            raise PaymentServiceError("tx_id is required")
        return self._call_gateway(self.sdk.check_pix_status, pix_id=tx_id)

    @staticmethod
    def mark_completed(tx_id: str) -> int:
        return (
            Payment.objects.filter(provider=PROVIDER, provider_reference=tx_id)
            .exclude(status=Payment.Status.COMPLETED)
            .update(status=Payment.Status.COMPLETED, updated_at=timezone.now())
        )

    # -----------------------------
    # Validations / helpers
    # -----------------------------
    @staticmethod
    def _get_setting(config: Dict[str, Any], key: str, required: bool = True) -> str:
        value = config.get(key)
        if required and not value:
            raise PaymentConfigurationError(
                f"Missing payment configuration: ABACATEPAY['{key}']. Set it in Django settings or environment variables."
            )
        return value or ""

    @staticmethod
    def _validate_amount(amount: Decimal | float | int) -> Decimal:
        dec = Decimal(str(amount))
        if dec <= 0:
            raise PaymentServiceError("amount must be greater than 0")
        return dec

    @staticmethod
    def _to_cents(amount: Decimal) -> int:
        return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def _call_gateway(func, **kwargs):
        try:
            return func(**kwargs)
        except PaymentServiceError:
            raise
        except Exception as exc:
            message = str(exc).strip()
            if not message:
                message = "Payment provider request failed"
            raise PaymentGatewayError(message) from exc
