from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from django.conf import settings
from django.db import transaction

from order.models import Order
from payment.ledger import credit_pending_balance, record_marketplace_fee
from payment.models import LedgerEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementSplit:
    total: Decimal
    marketplace_fee: Decimal
    seller_amount: Decimal
    courier_amount: Decimal


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_split(
    total: Decimal,
    delivery_method: str,
    has_courier: bool,
    fee_rate: Decimal,
    courier_fee: Decimal,
) -> SettlementSplit:
    """
    Marketplace always keeps ``total * fee_rate``. The flat courier fee is
    paid out of the seller's share, and only for marketplace deliveries with
    an assigned courier. Contracted couriers are paid by the store directly.
    """
    total = _money(Decimal(str(total)))
    marketplace_fee = _money(total * Decimal(str(fee_rate)))

    courier_amount = Decimal("0.00")
    if delivery_method == Order.DeliveryMethod.MARKETPLACE and has_courier:
        courier_amount = _money(Decimal(str(courier_fee)))

    seller_amount = total - marketplace_fee - courier_amount
    if seller_amount < 0:
        logger.warning(
            "Seller share for total=%s is negative (%s); clamping to zero",
            total,
            seller_amount,
        )
        seller_amount = Decimal("0.00")

    return SettlementSplit(
        total=total,
        marketplace_fee=marketplace_fee,
        seller_amount=seller_amount,
        courier_amount=courier_amount,
    )


class SettlementService:

    def __init__(self, fee_rate: Optional[Decimal] = None, courier_fee: Optional[Decimal] = None) -> None:
        config = getattr(settings, "MARKETPLACE", {})
        self.fee_rate = Decimal(str(fee_rate if fee_rate is not None else config.get("FEE_RATE", "0.05")))
        self.courier_fee = Decimal(
            str(courier_fee if courier_fee is not None else config.get("COURIER_DELIVERY_FEE", "5.00"))
        )

    @transaction.atomic
    def settle_order(self, order: Order, delivery) -> SettlementSplit:
        """
        Credits seller and courier balances for a delivered order. Must run in
        the same transaction as the order's move to completed.
        """
        courier_id = delivery.courier_id if delivery else None
        split = compute_split(
            order.total_amount,
            order.delivery_method,
            has_courier=courier_id is not None,
            fee_rate=self.fee_rate,
            courier_fee=self.courier_fee,
        )

        credit_pending_balance(
            order,
            order.shop.owner_id,
            split.seller_amount,
            LedgerEntry.EntryType.SELLER_EARNING,
            description=f"Sale {order.order_number}",
        )
        if split.courier_amount:
            credit_pending_balance(
                order,
                courier_id,
                split.courier_amount,
                LedgerEntry.EntryType.COURIER_FEE,
                description=f"Delivery fee {order.order_number}",
            )
        record_marketplace_fee(order, split.marketplace_fee)

        logger.info(
            "Settled order=%s total=%s seller=%s courier=%s marketplace=%s",
            order.id,
            split.total,
            split.seller_amount,
            split.courier_amount,
            split.marketplace_fee,
        )
        return split
