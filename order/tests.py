from rest_framework import status
from rest_framework.test import APITestCase
from decimal import Decimal
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import patch
import threading

from django.db import close_old_connections
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.utils import timezone

from account.models import User
from catalog.models import Product
from core.exceptions import ConflictError, ValidationError
from courier.models import Delivery
from payment.models import Payment
from shop.models import Shop

from .codes import CODE_ALPHABET, codes_match, generate_code, generate_order_codes
from .models import Order, OrderItem
from .services import OrderService, PaymentWebhookOutcome
from . import tracking

GATEWAY_SETTINGS = {
    "API_KEY": "test-key",
    "BASE_URL": "https://gateway.test/v1",
    "WEBHOOK_SECRET": "",
    "TIMEOUT": 5,
}
PIX_CHARGE = {"id": "pix_char_tx1", "brCode": "00020101021226", "brCodeBase64": "data:image/png;base64,AAA"}


def create_buyer(email, **extra):
    fields = {
        "address_street": "Rua das Flores",
        "address_number": "120",
        "city": "Recife",
        "district": "Boa Vista",
        "contact_number": "81999990000",
    }
    fields.update(extra)
    return User.objects.create_user(email=email, password="Pass123!", role=User.Role.BUYER, **fields)


def create_order(buyer, shop, status=Order.Status.PROCESSING, total="50.00", **extra):
    return Order.objects.create(
        order_number=OrderService._generate_order_number(),
        buyer=buyer,
        shop=shop,
        status=status,
        total_amount=Decimal(total),
        delivery_confirmation_code="CONF12",
        delivery_pickup_code="PICK5",
        **buyer.address_snapshot(),
        **extra,
    )


@override_settings(ABACATEPAY=GATEWAY_SETTINGS)
class OrderCreateViewTests(APITestCase):
    def setUp(self):
        self.owner = User.objects.create_user(
            email="owner_order_tests@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        self.buyer = create_buyer("buyer_order_tests@example.com")
        self.shop = Shop.objects.create(name="Order Test Shop", owner=self.owner)
        self.shirt = Product.objects.create(name="Shirt", shop=self.shop, price=Decimal("20.00"), stock=10)
        self.cap = Product.objects.create(name="Cap", shop=self.shop, price=Decimal("10.00"), stock=1)

        self.client.force_authenticate(user=self.buyer)

    def _payload(self, cap_qty=1, **extra):
        payload = {
            "shop_id": str(self.shop.id),
            "items": [
                {"product_id": str(self.shirt.id), "quantity": 2},
                {"product_id": str(self.cap.id), "quantity": cap_qty},
            ],
        }
        payload.update(extra)
        return payload

    @patch("payment.services.service.AbacatePaySDK.create_pix_qr_code", return_value=PIX_CHARGE)
    def test_create_order_opens_pix_charge(self, create_pix):
        response = self.client.post("/orders/", self._payload(total_amount="50.00"), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertTrue(response.data["success"])
        self.assertEqual(response.data["status"], Order.Status.PENDING_PAYMENT)
        self.assertEqual(response.data["payment"]["transaction_id"], "pix_char_tx1")
        self.assertEqual(response.data["payment"]["br_code"], PIX_CHARGE["brCode"])
        create_pix.assert_called_once()
        self.assertEqual(create_pix.call_args.kwargs["amount"], 5000)

        order = Order.objects.get(id=response.data["order_id"])
        self.assertEqual(order.total_amount, Decimal("50.00"))
        self.assertEqual(order.payment_transaction_id, "pix_char_tx1")
        self.assertEqual(len(order.delivery_confirmation_code), 6)
        self.assertEqual(len(order.delivery_pickup_code), 5)
        self.assertEqual(order.delivery_street, "Rua das Flores")
        self.assertEqual(order.buyer_contact_number, "81999990000")
        self.assertEqual(OrderItem.objects.filter(order=order).count(), 2)
        self.assertTrue(Payment.objects.filter(order=order, status=Payment.Status.PENDING).exists())

        self.shirt.refresh_from_db()
        self.cap.refresh_from_db()
        self.assertEqual(self.shirt.stock, 8)
        self.assertEqual(self.cap.stock, 0)

    @patch("payment.services.service.AbacatePaySDK.create_pix_qr_code", return_value=PIX_CHARGE)
    def test_insufficient_stock_creates_nothing(self, create_pix):
        response = self.client.post("/orders/", self._payload(cap_qty=2), format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertFalse(response.data["success"])
        self.assertEqual(Order.objects.count(), 0)
        create_pix.assert_not_called()

        self.shirt.refresh_from_db()
        self.cap.refresh_from_db()
        self.assertEqual(self.shirt.stock, 10)
        self.assertEqual(self.cap.stock, 1)

    @patch(
        "payment.services.service.AbacatePaySDK.create_pix_qr_code",
        side_effect=RuntimeError("gateway timeout"),
    )
    def test_gateway_failure_rolls_back_stock_and_order(self, create_pix):
        response = self.client.post("/orders/", self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED, response.data)
        self.assertIn("gateway timeout", response.data["message"])
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(Payment.objects.count(), 0)
        self.shirt.refresh_from_db()
        self.assertEqual(self.shirt.stock, 10)

    @override_settings(ABACATEPAY={**GATEWAY_SETTINGS, "API_KEY": ""})
    def test_missing_gateway_key_is_a_service_error(self):
        response = self.client.post("/orders/", self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR, response.data)
        self.assertEqual(Order.objects.count(), 0)

    def test_total_mismatch_is_rejected(self):
        response = self.client.post("/orders/", self._payload(total_amount="10.00"), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.assertEqual(Order.objects.count(), 0)

    def test_empty_items_are_rejected(self):
        response = self.client.post("/orders/", {"shop_id": str(self.shop.id), "items": []}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.assertFalse(response.data["success"])

    def test_product_from_another_store_is_rejected(self):
        other_shop = Shop.objects.create(name="Other Shop", owner=self.owner)
        foreign = Product.objects.create(name="Foreign", shop=other_shop, price=Decimal("5.00"), stock=3)
        payload = {"shop_id": str(self.shop.id), "items": [{"product_id": str(foreign.id), "quantity": 1}]}

        response = self.client.post("/orders/", payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        foreign.refresh_from_db()
        self.assertEqual(foreign.stock, 3)

    def test_incomplete_address_is_rejected_before_creation(self):
        buyer = create_buyer("no_address@example.com", district="")
        self.client.force_authenticate(user=buyer)

        response = self.client.post("/orders/", self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN, response.data)
        self.assertEqual(response.data["code"], "address_required")
        self.assertEqual(Order.objects.count(), 0)

    def test_seller_cannot_place_orders(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post("/orders/", self._payload(), format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    @override_settings(MARKETPLACE={
        "FEE_RATE": Decimal("0.05"),
        "COURIER_DELIVERY_FEE": Decimal("5.00"),
        "PIX_EXPIRES_IN": 3600,
        "ALLOW_SIMULATED_PAYMENTS": True,
        "CONFIRMATION_CODE_LENGTH": 6,
        "PICKUP_CODE_LENGTH": 5,
    })
    @patch("payment.services.service.AbacatePaySDK.create_pix_qr_code")
    def test_simulated_purchase_starts_processing_without_charge(self, create_pix):
        response = self.client.post("/orders/simulate-purchase/", self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], Order.Status.PROCESSING)
        self.assertNotIn("payment", response.data)
        create_pix.assert_not_called()
        order = Order.objects.get(id=response.data["order_id"])
        self.assertIsNone(order.payment_transaction_id)
        self.assertIsNotNone(order.paid_at)

    @override_settings(MARKETPLACE={
        "FEE_RATE": Decimal("0.05"),
        "COURIER_DELIVERY_FEE": Decimal("5.00"),
        "PIX_EXPIRES_IN": 3600,
        "ALLOW_SIMULATED_PAYMENTS": False,
        "CONFIRMATION_CODE_LENGTH": 6,
        "PICKUP_CODE_LENGTH": 5,
    })
    def test_simulated_purchase_can_be_disabled(self):
        response = self.client.post("/orders/simulate-purchase/", self._payload(), format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Order.objects.count(), 0)

    def test_buyer_lists_own_orders_with_tracking(self):
        create_order(self.buyer, self.shop, status=Order.Status.PENDING_PAYMENT)
        other = create_buyer("other_buyer@example.com")
        create_order(other, self.shop)

        response = self.client.get("/orders/mine/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["orders"]), 1)
        self.assertEqual(response.data["orders"][0]["tracking_message"], tracking.AWAITING_PAYMENT)
        self.assertEqual(response.data["orders"][0]["delivery_confirmation_code"], "CONF12")
        self.assertNotIn("delivery_pickup_code", response.data["orders"][0])

    def test_status_polling_is_scoped_to_buyer(self):
        order = create_order(self.buyer, self.shop)
        response = self.client.get(f"/orders/{order.id}/status/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Order.Status.PROCESSING)
        self.assertEqual(response.data["tracking_message"], tracking.BEING_PACKED)

        self.client.force_authenticate(user=create_buyer("snoop@example.com"))
        response = self.client.get(f"/orders/{order.id}/status/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @patch("payment.services.service.AbacatePaySDK.check_pix_status", return_value={"status": "PAID"})
    def test_status_poll_applies_paid_charge_without_webhook(self, check_status):
        order = create_order(self.buyer, self.shop, status=Order.Status.PENDING_PAYMENT, payment_transaction_id="tx-poll")
        Payment.objects.create(
            order=order,
            user=self.buyer,
            amount=order.total_amount,
            provider="ABACATEPAY",
            provider_reference="tx-poll",
        )

        response = self.client.get(f"/orders/{order.id}/status/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Order.Status.PROCESSING)
        check_status.assert_called_once_with(pix_id="tx-poll")
        order.refresh_from_db()
        self.assertIsNotNone(order.paid_at)
        self.assertEqual(Payment.objects.get(provider_reference="tx-poll").status, Payment.Status.COMPLETED)

    @patch("payment.services.service.AbacatePaySDK.check_pix_status", return_value={"status": "PENDING"})
    def test_status_poll_keeps_unpaid_charge_pending(self, check_status):
        order = create_order(self.buyer, self.shop, status=Order.Status.PENDING_PAYMENT, payment_transaction_id="tx-wait")

        response = self.client.get(f"/orders/{order.id}/status/")

        self.assertEqual(response.data["status"], Order.Status.PENDING_PAYMENT)
        self.assertEqual(response.data["tracking_message"], tracking.AWAITING_PAYMENT)

    @patch("payment.services.service.AbacatePaySDK.check_pix_status", side_effect=ConnectionError("gateway down"))
    def test_status_poll_survives_gateway_failure(self, check_status):
        order = create_order(self.buyer, self.shop, status=Order.Status.PENDING_PAYMENT, payment_transaction_id="tx-down")

        response = self.client.get(f"/orders/{order.id}/status/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Order.Status.PENDING_PAYMENT)

    @patch("payment.services.service.AbacatePaySDK.check_pix_status")
    def test_status_poll_skips_gateway_once_paid(self, check_status):
        order = create_order(self.buyer, self.shop, payment_transaction_id="tx-done")
        self.client.get(f"/orders/{order.id}/status/")
        check_status.assert_not_called()

    @patch("order.views.OrderService.get_buyer_order", side_effect=RuntimeError("boom"))
    def test_unhandled_error_is_rendered_without_internals(self, get_order):
        response = self.client.get(f"/orders/{create_order(self.buyer, self.shop).id}/status/")

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data, {"success": False, "message": "Internal server error."})


class PaymentApprovalTests(TestCase):
    def setUp(self):
        owner = User.objects.create_user(email="owner_pay@example.com", password="Pass123!", role=User.Role.SELLER)
        self.buyer = create_buyer("buyer_pay@example.com")
        self.shop = Shop.objects.create(name="Pay Shop", owner=owner)
        self.order = create_order(
            self.buyer,
            self.shop,
            status=Order.Status.PENDING_PAYMENT,
            payment_transaction_id="tx1",
        )
        Payment.objects.create(
            order=self.order,
            user=self.buyer,
            amount=self.order.total_amount,
            provider="ABACATEPAY",
            provider_reference="tx1",
        )

    def test_approval_moves_order_to_processing(self):
        outcome = OrderService.on_payment_approved("tx1")

        self.assertEqual(outcome, PaymentWebhookOutcome.APPROVED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertIsNotNone(self.order.paid_at)
        self.assertEqual(Payment.objects.get(provider_reference="tx1").status, Payment.Status.COMPLETED)

    def test_redelivered_approval_is_a_noop(self):
        OrderService.on_payment_approved("tx1")
        self.order.refresh_from_db()
        first_paid_at = self.order.paid_at

        outcome = OrderService.on_payment_approved("tx1")

        self.assertEqual(outcome, PaymentWebhookOutcome.DUPLICATE)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertEqual(self.order.paid_at, first_paid_at)

    def test_approval_never_moves_a_later_order_backwards(self):
        Order.objects.filter(id=self.order.id).update(status=Order.Status.DELIVERING)

        outcome = OrderService.on_payment_approved("tx1")

        self.assertEqual(outcome, PaymentWebhookOutcome.DUPLICATE)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.DELIVERING)

    def test_unknown_transaction_is_reported_not_raised(self):
        self.assertEqual(OrderService.on_payment_approved("missing"), PaymentWebhookOutcome.ORDER_NOT_FOUND)


class SellerRoutingTests(APITestCase):
    def setUp(self):
        self.owner = User.objects.create_user(
            email="owner_routing@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        self.other_seller = User.objects.create_user(
            email="other_routing@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        self.courier = User.objects.create_user(
            email="courier_routing@example.com",
            password="Pass123!",
            role=User.Role.COURIER,
        )
        self.buyer = create_buyer("buyer_routing@example.com")
        self.shop = Shop.objects.create(name="Routing Shop", owner=self.owner)
        self.order = create_order(self.buyer, self.shop)

        self.client.force_authenticate(user=self.owner)

    def test_marketplace_routing_opens_unassigned_delivery(self):
        response = self.client.post(
            f"/orders/{self.order.id}/delivery-method/",
            {"method": "Marketplace"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.DELIVERING)
        self.assertEqual(self.order.delivery_method, Order.DeliveryMethod.MARKETPLACE)
        delivery = Delivery.objects.get(order=self.order)
        self.assertEqual(delivery.status, Delivery.Status.REQUESTED)
        self.assertIsNone(delivery.courier_id)

    def test_contracted_routing_assigns_store_courier(self):
        self.shop.contracted_courier = self.courier
        self.shop.save()

        response = self.client.post(
            f"/orders/{self.order.id}/delivery-method/",
            {"method": "contracted"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["courier_id"], str(self.courier.id))
        delivery = Delivery.objects.get(order=self.order)
        self.assertEqual(delivery.status, Delivery.Status.ACCEPTED)
        self.assertEqual(delivery.courier_id, self.courier.id)
        self.courier.refresh_from_db()
        self.assertFalse(self.courier.is_available)

    def test_contracted_routing_requires_store_courier(self):
        response = self.client.post(
            f"/orders/{self.order.id}/delivery-method/",
            {"method": "contracted"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertFalse(Delivery.objects.filter(order=self.order).exists())

    def test_busy_contracted_courier_leaves_order_untouched(self):
        self.courier.is_available = False
        self.courier.save()
        self.shop.contracted_courier = self.courier
        self.shop.save()

        response = self.client.post(
            f"/orders/{self.order.id}/delivery-method/",
            {"method": "contracted"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertEqual(self.order.delivery_method, Order.DeliveryMethod.UNSET)
        self.assertFalse(Delivery.objects.filter(order=self.order).exists())

    def test_seller_method_is_not_accepted_here(self):
        response = self.client.post(
            f"/orders/{self.order.id}/delivery-method/",
            {"method": "seller"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_seller_cannot_route(self):
        self.client.force_authenticate(user=self.other_seller)
        response = self.client.post(
            f"/orders/{self.order.id}/delivery-method/",
            {"method": "marketplace"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN, response.data)

    def test_routing_requires_processing(self):
        Order.objects.filter(id=self.order.id).update(status=Order.Status.PENDING_PAYMENT)
        response = self.client.post(
            f"/orders/{self.order.id}/delivery-method/",
            {"method": "marketplace"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)

    def test_routing_twice_fails(self):
        first = self.client.post(f"/orders/{self.order.id}/delivery-method/", {"method": "marketplace"}, format="json")
        second = self.client.post(f"/orders/{self.order.id}/delivery-method/", {"method": "marketplace"}, format="json")

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Delivery.objects.filter(order=self.order).count(), 1)

    def test_dispatch_self(self):
        response = self.client.put(f"/orders/{self.order.id}/dispatch/")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.DELIVERING)
        self.assertEqual(self.order.delivery_method, Order.DeliveryMethod.SELLER)
        delivery = Delivery.objects.get(order=self.order)
        self.assertEqual(delivery.status, Delivery.Status.ACCEPTED)
        self.assertIsNone(delivery.courier_id)
        self.assertIsNotNone(delivery.packing_started_at)

    def test_store_orders_listing_hides_codes(self):
        response = self.client.get(f"/orders/store/{self.shop.id}/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["orders"]), 1)
        row = response.data["orders"][0]
        self.assertNotIn("delivery_pickup_code", row)
        self.assertNotIn("delivery_confirmation_code", row)

        self.client.force_authenticate(user=self.other_seller)
        response = self.client.get(f"/orders/store/{self.shop.id}/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class ConfirmPickupTests(APITestCase):
    def setUp(self):
        self.owner = User.objects.create_user(
            email="owner_pickup@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        self.courier = User.objects.create_user(
            email="courier_pickup@example.com",
            password="Pass123!",
            role=User.Role.COURIER,
            is_available=False,
        )
        self.buyer = create_buyer("buyer_pickup@example.com")
        self.shop = Shop.objects.create(name="Pickup Shop", owner=self.owner)
        self.order = create_order(
            self.buyer,
            self.shop,
            status=Order.Status.DELIVERING,
            delivery_method=Order.DeliveryMethod.MARKETPLACE,
        )
        self.delivery = Delivery.objects.create(
            order=self.order,
            method=Order.DeliveryMethod.MARKETPLACE,
            courier=self.courier,
            status=Delivery.Status.ACCEPTED,
            accepted_at=timezone.now(),
        )
        self.client.force_authenticate(user=self.owner)

    def test_correct_code_marks_picked_up(self):
        response = self.client.put(
            f"/orders/{self.order.id}/confirm-pickup/",
            {"pickup_code": "PICK5"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, Delivery.Status.PICKED_UP)
        self.assertIsNotNone(self.delivery.picked_up_at)
        self.assertEqual(self.delivery.packing_started_at, self.delivery.picked_up_at)

    def test_existing_packing_time_is_kept(self):
        packed_at = timezone.now() - timedelta(minutes=30)
        Delivery.objects.filter(id=self.delivery.id).update(packing_started_at=packed_at)

        self.client.put(f"/orders/{self.order.id}/confirm-pickup/", {"pickup_code": "PICK5"}, format="json")

        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.packing_started_at, packed_at)

    def test_wrong_code_changes_nothing(self):
        for code in ("WRONG", "pick5", " PICK5", ""):
            response = self.client.put(
                f"/orders/{self.order.id}/confirm-pickup/",
                {"pickup_code": code},
                format="json",
            )
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, (code, response.data))

        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, Delivery.Status.ACCEPTED)
        self.assertIsNone(self.delivery.picked_up_at)

    def test_pickup_needs_assigned_courier(self):
        Delivery.objects.filter(id=self.delivery.id).update(courier=None, status=Delivery.Status.REQUESTED)

        response = self.client.put(
            f"/orders/{self.order.id}/confirm-pickup/",
            {"pickup_code": "PICK5"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)

    def test_pickup_cannot_be_confirmed_twice(self):
        self.client.put(f"/orders/{self.order.id}/confirm-pickup/", {"pickup_code": "PICK5"}, format="json")
        response = self.client.put(
            f"/orders/{self.order.id}/confirm-pickup/",
            {"pickup_code": "PICK5"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)

    def test_courier_cannot_confirm_pickup(self):
        self.client.force_authenticate(user=self.courier)
        response = self.client.put(
            f"/orders/{self.order.id}/confirm-pickup/",
            {"pickup_code": "PICK5"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class LifecycleRulesTests(SimpleTestCase):
    def test_only_forward_single_steps_are_allowed(self):
        S = Order.Status
        self.assertTrue(Order.can_transition(S.PENDING_PAYMENT, S.PROCESSING))
        self.assertTrue(Order.can_transition(S.PROCESSING, S.DELIVERING))
        self.assertTrue(Order.can_transition(S.DELIVERING, S.COMPLETED))

        self.assertFalse(Order.can_transition(S.PROCESSING, S.COMPLETED))
        self.assertFalse(Order.can_transition(S.PENDING_PAYMENT, S.DELIVERING))
        self.assertFalse(Order.can_transition(S.DELIVERING, S.PROCESSING))
        self.assertFalse(Order.can_transition(S.COMPLETED, S.DELIVERING))


class CodeGeneratorTests(TestCase):
    def test_codes_use_configured_lengths_and_alphabet(self):
        codes = generate_order_codes()
        self.assertEqual(len(codes.confirmation), 6)
        self.assertEqual(len(codes.pickup), 5)
        self.assertTrue(set(codes.confirmation + codes.pickup) <= set(CODE_ALPHABET))

    def test_codes_are_not_repeated(self):
        samples = {generate_code(6) for _ in range(200)}
        self.assertGreater(len(samples), 195)

    def test_comparison_is_exact(self):
        self.assertTrue(codes_match("AB12C", "AB12C"))
        self.assertFalse(codes_match("ab12c", "AB12C"))
        self.assertFalse(codes_match("AB12C ", "AB12C"))
        self.assertFalse(codes_match(None, "AB12C"))
        self.assertFalse(codes_match("ÄB12C", "AB12C"))

    def test_confirmation_code_avoids_open_orders(self):
        owner = User.objects.create_user(email="owner_codes@example.com", password="Pass123!", role=User.Role.SELLER)
        shop = Shop.objects.create(name="Codes Shop", owner=owner)
        create_order(create_buyer("buyer_codes@example.com"), shop)

        with patch("order.codes.generate_code", side_effect=["CONF12", "FRESH1", "PICK9"]):
            codes = generate_order_codes()

        self.assertEqual(codes.confirmation, "FRESH1")
        self.assertEqual(codes.pickup, "PICK9")


class TrackingMessageTests(SimpleTestCase):
    def test_payment_and_completion_phrases(self):
        self.assertEqual(
            tracking.tracking_message(Order.Status.PENDING_PAYMENT, Order.DeliveryMethod.UNSET),
            tracking.AWAITING_PAYMENT,
        )
        self.assertEqual(
            tracking.tracking_message(Order.Status.COMPLETED, Order.DeliveryMethod.MARKETPLACE),
            tracking.COMPLETED,
        )

    def test_processing_phrases(self):
        self.assertEqual(
            tracking.tracking_message(Order.Status.PROCESSING, Order.DeliveryMethod.UNSET),
            tracking.BEING_PACKED,
        )
        self.assertEqual(
            tracking.tracking_message(
                Order.Status.PROCESSING,
                Order.DeliveryMethod.MARKETPLACE,
                delivery_status=Delivery.Status.REQUESTED,
            ),
            tracking.PREPARING_SHIPMENT,
        )

    def test_delivering_phrases(self):
        D = Order.DeliveryMethod
        self.assertEqual(
            tracking.tracking_message(Order.Status.DELIVERING, D.SELLER, Delivery.Status.ACCEPTED),
            tracking.SELF_DELIVERY_DISPATCHED,
        )
        self.assertEqual(
            tracking.tracking_message(Order.Status.DELIVERING, D.MARKETPLACE, Delivery.Status.REQUESTED),
            tracking.SEARCHING_COURIER,
        )
        self.assertEqual(
            tracking.tracking_message(
                Order.Status.DELIVERING, D.CONTRACTED, Delivery.Status.ACCEPTED, courier_assigned=True
            ),
            tracking.COURIER_EN_ROUTE_TO_STORE,
        )
        self.assertEqual(
            tracking.tracking_message(
                Order.Status.DELIVERING,
                D.MARKETPLACE,
                Delivery.Status.PICKED_UP,
                courier_assigned=True,
                picked_up_at=timezone.now(),
            ),
            tracking.COURIER_IN_TRANSIT,
        )
        self.assertEqual(
            tracking.tracking_message(Order.Status.DELIVERING, D.UNSET),
            tracking.IN_TRANSIT,
        )

    def test_unknown_status(self):
        self.assertEqual(tracking.tracking_message("lost", Order.DeliveryMethod.UNSET), tracking.UNKNOWN)

    def test_format_duration(self):
        self.assertEqual(tracking.format_duration(None), "N/A")
        self.assertEqual(tracking.format_duration(0), "0s")
        self.assertEqual(tracking.format_duration(59.9), "59s")
        self.assertEqual(tracking.format_duration(3723), "1h 2m 3s")
        self.assertEqual(tracking.format_duration(7200), "2h")


class SellerMetricsTests(APITestCase):
    def test_metrics_report_packing_and_self_delivery_times(self):
        owner = User.objects.create_user(email="owner_metrics@example.com", password="Pass123!", role=User.Role.SELLER)
        shop = Shop.objects.create(name="Metrics Shop", owner=owner)
        order = create_order(
            create_buyer("buyer_metrics@example.com"),
            shop,
            status=Order.Status.COMPLETED,
            delivery_method=Order.DeliveryMethod.SELLER,
        )
        packed_at = order.created_at + timedelta(minutes=10)
        Delivery.objects.create(
            order=order,
            method=Order.DeliveryMethod.SELLER,
            status=Delivery.Status.DELIVERED_CONFIRMED,
            packing_started_at=packed_at,
            delivered_at=packed_at + timedelta(hours=1, seconds=5),
        )

        self.client.force_authenticate(user=owner)
        response = self.client.get("/orders/seller/metrics/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["metrics"]["avg_packing_time"], "10m")
        self.assertEqual(response.data["metrics"]["avg_self_delivery_time"], "1h 5s")
        self.assertEqual(response.data["marketplace_fee_rate"], "0.05")


class OrderConcurrencyTests(TransactionTestCase):
    reset_sequences = True

    def setUp(self):
        self.owner = User.objects.create_user(
            email="owner_order_conc@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        self.buyer = create_buyer("buyer_order_conc@example.com")

        self.shop = Shop.objects.create(name="Order Concurrency Shop", owner=self.owner)
        self.product = Product.objects.create(
            name="Order Concurrency Product",
            shop=self.shop,
            price=Decimal("100.00"),
            stock=10,
        )

    def _attempt_order_create(self, barrier):
        close_old_connections()
        try:
            barrier.wait(timeout=5)
            result = OrderService.create_order(
                buyer=self.buyer,
                shop_id=self.shop.id,
                items=[{"product_id": self.product.id, "quantity": 7}],
                simulate=True,
            )
            return ("ok", str(result.order.id))
        except Exception as exc:
            return ("err", str(exc))
        finally:
            close_old_connections()

    def test_parallel_orders_only_one_succeeds_for_limited_stock(self):
        barrier = threading.Barrier(2)

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(self._attempt_order_create, barrier) for _ in range(2)]
            results = [f.result(timeout=20) for f in futures]

        success_count = len([r for r in results if r[0] == "ok"])
        error_count = len([r for r in results if r[0] == "err"])
        self.assertEqual(success_count, 1, results)
        self.assertEqual(error_count, 1, results)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertEqual(Order.objects.count(), 1)
        loser_error = [r[1] for r in results if r[0] == "err"][0].lower()
        self.assertIn("insufficient stock", loser_error, results)


class ServiceGuardTests(TestCase):
    def test_create_order_rejects_unknown_quantities(self):
        owner = User.objects.create_user(email="owner_guard@example.com", password="Pass123!", role=User.Role.SELLER)
        shop = Shop.objects.create(name="Guard Shop", owner=owner)
        product = Product.objects.create(name="Guarded", shop=shop, price=Decimal("3.00"), stock=2)
        buyer = create_buyer("buyer_guard@example.com")

        with self.assertRaises(ValidationError):
            OrderService.create_order(buyer, shop.id, [{"product_id": product.id, "quantity": 0}], simulate=True)
        with self.assertRaises(ConflictError):
            OrderService.create_order(buyer, shop.id, [{"product_id": product.id, "quantity": 3}], simulate=True)
