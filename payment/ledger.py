import logging
from decimal import Decimal
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .models import LedgerEntry

logger = logging.getLogger(__name__)
User = get_user_model()


@transaction.atomic
def credit_pending_balance(
    order,
    user_id,
    amount: Decimal,
    entry_type: str,
    description: str = "",
) -> Optional[LedgerEntry]:
    """
    Adds ``amount`` to the user's pending balance and records why.

    Balances only ever grow here; a zero credit is skipped. The unique
    (order, entry_type) constraint makes a repeated credit fail instead of
    doubling the balance.
    """
    if amount < 0:
        raise ValueError("Ledger credits must be non-negative")
    if amount == 0:
        return None

    entry = LedgerEntry.objects.create(
        order=order,
        user_id=user_id,
        entry_type=entry_type,
        amount=amount,
        description=description,
    )
    User.objects.filter(id=user_id).update(
        pending_balance=F("pending_balance") + amount,
        updated_at=timezone.now(),
    )
    logger.info("Credited %s to user=%s for order=%s (%s)", amount, user_id, order.id, entry_type)
    return entry


def record_marketplace_fee(order, amount: Decimal) -> LedgerEntry:
    return LedgerEntry.objects.create(
        order=order,
        entry_type=LedgerEntry.EntryType.MARKETPLACE_FEE,
        amount=amount,
        description=f"Marketplace fee for {order.order_number}",
    )
