import logging
from typing import Dict

from django.db.models import F
from django.utils import timezone

from core.exceptions import ConflictError

from .models import Product

logger = logging.getLogger(__name__)


class StockService:

    @staticmethod
    def decrement(required_qty_by_product: Dict[str, int]) -> None:
        """
        Conditionally decrements stock for every product. Must run inside the
        caller's transaction: a shortfall raises and the caller's atomic block
        rolls back decrements already applied to earlier products.
        """
        # Stable order keeps concurrent purchases from locking rows in opposite orders.
        for product_id in sorted(required_qty_by_product):
            qty = required_qty_by_product[product_id]
            updated = Product.objects.filter(id=product_id, stock__gte=qty).update(
                stock=F("stock") - qty,
                updated_at=timezone.now(),
            )
            if updated == 0:
                logger.info("Insufficient stock for product=%s qty=%s", product_id, qty)
                raise ConflictError(f"Insufficient stock for product {product_id}")
