import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import DateTimeField, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from catalog.models import Product
from catalog.services import StockService
from core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PaymentRequiredError,
    ServiceError,
    ValidationError,
)
from courier import services as delivery_service
from courier.models import Delivery
from payment.services.service import PAID_STATUSES, PaymentConfigurationError, PaymentService, PaymentServiceError
from payment.services.settlement import SettlementService, SettlementSplit
from shop.models import Shop

from .codes import codes_match, generate_order_codes
from .models import Order, OrderItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderCreateResult:
    order: Order
    payment: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class DeliveryConfirmation:
    order: Order
    settlement: SettlementSplit


class PaymentWebhookOutcome:
    APPROVED = "APPROVED"
    DUPLICATE = "DUPLICATE"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"


class OrderService:

    @staticmethod
    def _generate_order_number():
        while True:
            candidate = f"ORD-{uuid.uuid4().hex[:12].upper()}"
            if not Order.objects.filter(order_number=candidate).exists():
                return candidate

    @staticmethod
    def _normalize_items(shop: Shop, items: List[Dict[str, Any]]):
        """
        items: list of dicts like [{"product_id": UUID, "quantity": 2}]
        Returns (lines, required_qty_by_product, total) priced from the catalog.
        """
        if not items:
            raise ValidationError("An order needs at least one item.")

        required_qty_by_product = {}
        for item in items:
            quantity = int(item["quantity"])
            if quantity <= 0:
                raise ValidationError("Quantity must be greater than zero.")
            product_id = str(item["product_id"])
            required_qty_by_product[product_id] = required_qty_by_product.get(product_id, 0) + quantity

        products = {
            str(product.id): product
            for product in Product.objects.filter(
                id__in=required_qty_by_product.keys(), shop=shop, is_active=True
            )
        }
        missing = sorted(set(required_qty_by_product) - set(products))
        if missing:
            raise ValidationError(f"Products not available in this store: {', '.join(missing)}")

        lines = []
        total = Decimal("0.00")
        for product_id, quantity in required_qty_by_product.items():
            product = products[product_id]
            line_total = product.price * quantity
            total += line_total
            lines.append({"product": product, "quantity": quantity, "total": line_total})
        return lines, required_qty_by_product, total

    @staticmethod
    @transaction.atomic
    def create_order(buyer, shop_id, items, total_amount=None, simulate=False) -> OrderCreateResult:
        """
        Creates an order, decrements stock and opens a PIX charge.

        The buyer's address completeness is checked by the view's permission
        before this runs. With ``simulate`` no charge is created and the order
        starts in processing. Any failure, the gateway call included, rolls
        back stock and the order row.
        """
        shop = Shop.objects.filter(id=shop_id).first()
        if not shop:
            raise NotFoundError("Store not found.")

        lines, required_qty_by_product, total = OrderService._normalize_items(shop, items)
        if total <= 0:
            raise ValidationError("Order total must be greater than zero.")
        if total_amount is not None and Decimal(str(total_amount)) != total:
            raise ValidationError(f"total_amount does not match the items total ({total}).")

        StockService.decrement(required_qty_by_product)

        codes = generate_order_codes()
        order = Order.objects.create(
            order_number=OrderService._generate_order_number(),
            buyer=buyer,
            shop=shop,
            total_amount=total,
            status=Order.Status.PROCESSING if simulate else Order.Status.PENDING_PAYMENT,
            delivery_confirmation_code=codes.confirmation,
            delivery_pickup_code=codes.pickup,
            paid_at=timezone.now() if simulate else None,
            **buyer.address_snapshot(),
        )

        OrderItem.objects.bulk_create(
            [
                OrderItem(
                    order=order,
                    product=line["product"],
                    product_name=line["product"].name,
                    price=line["product"].price,
                    quantity=line["quantity"],
                    total=line["total"],
                )
                for line in lines
            ]
        )

        if simulate:
            logger.info("Simulated order %s created for buyer=%s total=%s", order.order_number, buyer.id, total)
            return OrderCreateResult(order=order)

        try:
            charge = PaymentService().create_order_charge(order)
        except PaymentConfigurationError as exc:
            logger.error("Payment gateway is not configured: %s", exc)
            raise ServiceError("Payment service is unavailable.") from exc
        except PaymentServiceError as exc:
            logger.warning("PIX charge failed for order %s: %s", order.order_number, exc)
            raise PaymentRequiredError(f"Could not create the PIX charge: {exc}") from exc

        order.payment_transaction_id = charge.tx_id
        order.save(update_fields=["payment_transaction_id", "updated_at"])
        logger.info("Order %s created for buyer=%s total=%s tx=%s", order.order_number, buyer.id, total, charge.tx_id)
        return OrderCreateResult(order=order, payment=charge.presentation())

    @staticmethod
    def simulate_payment(order_id, buyer) -> Dict[str, Any]:
        """Asks the gateway to approve a pending charge; approval still arrives via webhook."""
        if not settings.MARKETPLACE.get("ALLOW_SIMULATED_PAYMENTS"):
            raise AuthorizationError("Payment simulation is disabled.")

        order = Order.objects.filter(id=order_id, buyer=buyer).first()
        if not order:
            raise NotFoundError("Order not found or does not belong to you.")
        if order.status != Order.Status.PENDING_PAYMENT:
            raise ConflictError("This order is no longer pending payment.")
        if not order.payment_transaction_id:
            raise ValidationError("This order has no PIX transaction to simulate.")

        try:
            return PaymentService().simulate_payment(order.payment_transaction_id)
        except PaymentServiceError as exc:
            logger.warning("Payment simulation failed for order %s: %s", order.order_number, exc)
            raise ServiceError(f"Payment simulation failed: {exc}") from exc

    @staticmethod
    @transaction.atomic
    def on_payment_approved(transaction_id: str) -> str:
        """
        Moves the order paid by ``transaction_id`` from pending payment to
        processing. Redelivered or unknown events are reported, never raised.
        """
        now = timezone.now()
        updated = Order.objects.filter(
            payment_transaction_id=transaction_id,
            status=Order.Status.PENDING_PAYMENT,
        ).update(status=Order.Status.PROCESSING, paid_at=now, updated_at=now)

        if updated:
            PaymentService.mark_completed(transaction_id)
            logger.info("Payment approved for tx=%s; order moved to processing", transaction_id)
            return PaymentWebhookOutcome.APPROVED

        if Order.objects.filter(payment_transaction_id=transaction_id).exists():
            logger.warning("Duplicate payment approval for tx=%s ignored", transaction_id)
            return PaymentWebhookOutcome.DUPLICATE

        logger.warning("Payment approval for unknown tx=%s", transaction_id)
        return PaymentWebhookOutcome.ORDER_NOT_FOUND

    @staticmethod
    def reconcile_payment(order: Order) -> Order:
        """
        Asks the gateway about a still-pending charge and applies the approval
        when the webhook has not arrived yet. If the gateway cannot be reached
        the stored status is returned unchanged; the webhook stays authoritative.
        """
        if order.status != Order.Status.PENDING_PAYMENT or not order.payment_transaction_id:
            return order

        try:
            charge = PaymentService().get_charge_status(order.payment_transaction_id)
        except PaymentServiceError as exc:
            logger.warning("Charge status check failed for order %s: %s", order.order_number, exc)
            return order

        if str(charge.get("status") or "").strip().upper() in PAID_STATUSES:
            OrderService.on_payment_approved(order.payment_transaction_id)
            order.refresh_from_db()
        return order

    # -----------------------------
    # Seller-side routing
    # -----------------------------
    @staticmethod
    def _get_seller_order(order_id, seller) -> Order:
        order = Order.objects.select_for_update().select_related("shop").filter(id=order_id).first()
        if not order:
            raise NotFoundError("Order not found.")
        if order.shop.owner_id != seller.id:
            raise AuthorizationError("You do not own the store for this order.")
        return order

    @staticmethod
    def _advance(order: Order, target: str, **fields) -> None:
        """Compare-and-set status change; fails if the order moved in the meantime."""
        if not Order.can_transition(order.status, target):
            raise ConflictError(f"Cannot move an order from {order.status} to {target}.")

        now = timezone.now()
        updated = Order.objects.filter(id=order.id, status=order.status).update(
            status=target, updated_at=now, **fields
        )
        if updated == 0:
            raise ConflictError("Order status changed concurrently; please retry.")

        order.status = target
        order.updated_at = now
        for name, value in fields.items():
            setattr(order, name, value)

    @staticmethod
    @transaction.atomic
    def set_delivery_method(order_id, seller, method: str) -> Delivery:
        if method not in (Order.DeliveryMethod.CONTRACTED, Order.DeliveryMethod.MARKETPLACE):
            raise ValidationError("Delivery method must be contracted or marketplace.")

        order = OrderService._get_seller_order(order_id, seller)
        if order.status != Order.Status.PROCESSING:
            raise ConflictError("Delivery method can only be set while the order is processing.")

        courier_id = None
        if method == Order.DeliveryMethod.CONTRACTED:
            courier_id = order.shop.contracted_courier_id
            if not courier_id:
                raise ValidationError("This store has no contracted courier.")

        OrderService._advance(order, Order.Status.DELIVERING, delivery_method=method)
        delivery = delivery_service.open_delivery(order, method, courier_id=courier_id)
        logger.info("Order %s routed via %s", order.order_number, method)
        return delivery

    @staticmethod
    @transaction.atomic
    def dispatch_self(order_id, seller) -> Delivery:
        order = OrderService._get_seller_order(order_id, seller)
        if order.status != Order.Status.PROCESSING:
            raise ConflictError("Only processing orders can be dispatched.")

        OrderService._advance(order, Order.Status.DELIVERING, delivery_method=Order.DeliveryMethod.SELLER)
        delivery = delivery_service.open_delivery(order, Order.DeliveryMethod.SELLER)
        logger.info("Order %s dispatched by the seller", order.order_number)
        return delivery

    @staticmethod
    @transaction.atomic
    def confirm_pickup(order_id, seller, pickup_code: str) -> Delivery:
        order = OrderService._get_seller_order(order_id, seller)
        if order.status != Order.Status.DELIVERING:
            raise ConflictError("Pickup can only be confirmed for orders in delivery.")

        delivery = Delivery.objects.select_for_update().filter(order=order).first()
        if not delivery or not delivery.courier_id:
            raise ConflictError("No courier is assigned to this order yet.")
        if not codes_match(pickup_code, order.delivery_pickup_code):
            raise ValidationError("Invalid pickup code.")

        now = timezone.now()
        updated = Delivery.objects.filter(id=delivery.id, status=Delivery.Status.ACCEPTED).update(
            status=Delivery.Status.PICKED_UP,
            picked_up_at=now,
            packing_started_at=Coalesce("packing_started_at", Value(now, output_field=DateTimeField())),
            updated_at=now,
        )
        if updated == 0:
            raise ConflictError("Pickup was already confirmed for this order.")

        delivery.refresh_from_db()
        logger.info("Pickup confirmed for order %s courier=%s", order.order_number, delivery.courier_id)
        return delivery

    # -----------------------------
    # Completion
    # -----------------------------
    @staticmethod
    @transaction.atomic
    def confirm_delivery(order_id, actor, confirmation_code: str) -> DeliveryConfirmation:
        """
        Completes an order in delivery and settles it.

        The lookup is scoped to orders in delivery, so a second confirmation
        finds nothing and cannot credit balances twice.
        """
        order = (
            Order.objects.select_for_update()
            .select_related("shop")
            .filter(id=order_id, status=Order.Status.DELIVERING)
            .first()
        )
        if not order:
            raise NotFoundError("Order not found or not awaiting delivery confirmation.")

        delivery = Delivery.objects.select_for_update().filter(order=order).first()
        if not delivery:
            raise ConflictError("This order has no delivery to confirm.")

        allowed = actor.id == order.buyer_id or (
            delivery.courier_id is not None and actor.id == delivery.courier_id
        )
        if order.delivery_method == Order.DeliveryMethod.SELLER and actor.id == order.shop.owner_id:
            allowed = True
        if not allowed:
            raise AuthorizationError("You cannot confirm this delivery.")

        if not codes_match(confirmation_code, order.delivery_confirmation_code):
            raise ValidationError("Invalid confirmation code.")

        OrderService._advance(order, Order.Status.COMPLETED)

        now = timezone.now()
        Delivery.objects.filter(id=delivery.id).update(
            status=Delivery.Status.DELIVERED_CONFIRMED,
            delivered_at=now,
            updated_at=now,
        )
        split = SettlementService().settle_order(order, delivery)

        if delivery.courier_id:
            delivery_service.release_courier(delivery.courier_id)

        logger.info("Order %s completed; confirmed by user=%s", order.order_number, actor.id)
        return DeliveryConfirmation(order=order, settlement=split)

    # -----------------------------
    # Reads
    # -----------------------------
    @staticmethod
    def get_buyer_order(order_id, buyer) -> Order:
        order = Order.objects.select_related("delivery", "shop").filter(id=order_id, buyer=buyer).first()
        if not order:
            raise NotFoundError("Order not found or does not belong to you.")
        return order

    @staticmethod
    def list_store_orders(shop_id, seller):
        shop = Shop.objects.filter(id=shop_id).first()
        if not shop:
            raise NotFoundError("Store not found.")
        if shop.owner_id != seller.id:
            raise AuthorizationError("You do not own this store.")
        return (
            Order.objects.filter(shop=shop)
            .select_related("buyer", "delivery")
            .prefetch_related("items")
        )
