import json
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import patch

from django.db import close_old_connections
from django.test import TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from account.models import User
from catalog.models import Product
from order.models import Order
from order.services import OrderService
from payment.models import LedgerEntry
from shop.models import Shop

from .models import Delivery
from .services import claim_delivery


def create_user(email, role, **extra):
    return User.objects.create_user(email=email, password="Pass123!", role=role, **extra)


def create_buyer(email):
    return create_user(
        email,
        User.Role.BUYER,
        address_street="Rua do Sol",
        address_number="42",
        city="Olinda",
        district="Carmo",
        contact_number="81988887777",
    )


def create_delivering_order(buyer, shop, method=Order.DeliveryMethod.MARKETPLACE, courier=None, total="50.00"):
    order = Order.objects.create(
        order_number=OrderService._generate_order_number(),
        buyer=buyer,
        shop=shop,
        status=Order.Status.DELIVERING,
        delivery_method=method,
        total_amount=Decimal(total),
        delivery_confirmation_code="CONF12",
        delivery_pickup_code="PICK5",
        **buyer.address_snapshot(),
    )
    Delivery.objects.create(
        order=order,
        method=method,
        courier=courier,
        status=Delivery.Status.ACCEPTED if courier or method == Order.DeliveryMethod.SELLER else Delivery.Status.REQUESTED,
        accepted_at=timezone.now() if courier else None,
    )
    return order


class DeliveryAssignmentTests(APITestCase):
    def setUp(self):
        self.owner = create_user("owner_courier@example.com", User.Role.SELLER)
        self.courier = create_user("courier_one@example.com", User.Role.COURIER)
        self.rival = create_user("courier_two@example.com", User.Role.COURIER)
        self.buyer = create_buyer("buyer_courier@example.com")
        self.shop = Shop.objects.create(
            name="Courier Shop",
            owner=self.owner,
            address_street="Av. Central",
            address_number="1",
        )
        self.order = create_delivering_order(self.buyer, self.shop)
        self.client.force_authenticate(user=self.courier)

    def test_available_lists_unassigned_marketplace_deliveries(self):
        create_delivering_order(self.buyer, self.shop, method=Order.DeliveryMethod.CONTRACTED, courier=self.rival)
        create_delivering_order(self.buyer, self.shop, method=Order.DeliveryMethod.SELLER)

        response = self.client.get("/deliveries/available/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([d["order_id"] for d in response.data["deliveries"]], [str(self.order.id)])
        self.assertEqual(response.data["deliveries"][0]["store_address"], "Av. Central, 1")
        self.assertNotIn("pickup_code", response.data["deliveries"][0])

    def test_busy_courier_gets_empty_list_with_message(self):
        self.courier.is_available = False
        self.courier.save()

        response = self.client.get("/deliveries/available/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["deliveries"], [])
        self.assertIn("active delivery", response.data["message"])

    def test_claim_assigns_and_returns_pickup_code(self):
        response = self.client.put(f"/deliveries/{self.order.id}/accept/")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["pickup_code"], "PICK5")
        delivery = Delivery.objects.get(order=self.order)
        self.assertEqual(delivery.courier_id, self.courier.id)
        self.assertEqual(delivery.status, Delivery.Status.ACCEPTED)
        self.assertIsNotNone(delivery.accepted_at)
        self.courier.refresh_from_db()
        self.assertFalse(self.courier.is_available)

    def test_claim_on_taken_delivery_conflicts_and_keeps_loser_available(self):
        claim_delivery(self.order.id, self.rival)

        response = self.client.put(f"/deliveries/{self.order.id}/accept/")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertIn("already taken", response.data["message"])
        self.courier.refresh_from_db()
        self.assertTrue(self.courier.is_available)
        self.assertEqual(Delivery.objects.get(order=self.order).courier_id, self.rival.id)

    def test_busy_courier_cannot_claim(self):
        self.courier.is_available = False
        self.courier.save()

        response = self.client.put(f"/deliveries/{self.order.id}/accept/")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertIsNone(Delivery.objects.get(order=self.order).courier_id)

    def test_claim_unknown_order_is_not_found(self):
        other = create_delivering_order(self.buyer, self.shop, method=Order.DeliveryMethod.SELLER)
        response = self.client.put(f"/deliveries/{other.id}/accept/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.courier.refresh_from_db()
        self.assertTrue(self.courier.is_available)

    def test_buyer_cannot_use_courier_endpoints(self):
        self.client.force_authenticate(user=self.buyer)
        self.assertEqual(self.client.get("/deliveries/available/").status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(
            self.client.put(f"/deliveries/{self.order.id}/accept/").status_code,
            status.HTTP_403_FORBIDDEN,
        )

    def test_current_delivery_shows_pickup_code_only(self):
        self.client.put(f"/deliveries/{self.order.id}/accept/")
        self.courier.refresh_from_db()
        self.client.force_authenticate(user=self.courier)

        response = self.client.get("/deliveries/current/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["delivery"]["order_id"], str(self.order.id))
        self.assertEqual(response.data["delivery"]["pickup_code"], "PICK5")
        self.assertNotIn("CONF12", json.dumps(response.data, default=str))

    def test_current_delivery_repairs_stale_busy_flag(self):
        self.courier.is_available = False
        self.courier.save()

        response = self.client.get("/deliveries/current/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data["delivery"])
        self.assertTrue(response.data["is_available"])
        self.courier.refresh_from_db()
        self.assertTrue(self.courier.is_available)


class ConfirmDeliveryTests(APITestCase):
    def setUp(self):
        self.owner = create_user("owner_confirm@example.com", User.Role.SELLER)
        self.courier = create_user("courier_confirm@example.com", User.Role.COURIER, is_available=False)
        self.buyer = create_buyer("buyer_confirm@example.com")
        self.shop = Shop.objects.create(name="Confirm Shop", owner=self.owner)

    def _confirm(self, user, order, code="CONF12"):
        self.client.force_authenticate(user=user)
        return self.client.post(
            "/deliveries/confirm/",
            {"order_id": str(order.id), "confirmation_code": code},
            format="json",
        )

    def test_marketplace_settlement_for_hundred(self):
        order = create_delivering_order(self.buyer, self.shop, courier=self.courier, total="100.00")

        response = self._confirm(self.buyer, order)

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.owner.refresh_from_db()
        self.courier.refresh_from_db()
        self.assertEqual(self.courier.pending_balance, Decimal("5.00"))
        self.assertEqual(self.owner.pending_balance, Decimal("90.00"))
        self.assertTrue(self.courier.is_available)
        fee = LedgerEntry.objects.get(order=order, entry_type=LedgerEntry.EntryType.MARKETPLACE_FEE)
        self.assertEqual(fee.amount, Decimal("5.00"))
        self.assertIsNone(fee.user_id)

    def test_second_confirmation_does_not_credit_again(self):
        order = create_delivering_order(self.buyer, self.shop, courier=self.courier, total="100.00")

        first = self._confirm(self.courier, order)
        second = self._confirm(self.courier, order)

        self.assertEqual(first.status_code, status.HTTP_200_OK, first.data)
        self.assertEqual(second.status_code, status.HTTP_404_NOT_FOUND, second.data)
        self.owner.refresh_from_db()
        self.courier.refresh_from_db()
        self.assertEqual(self.owner.pending_balance, Decimal("90.00"))
        self.assertEqual(self.courier.pending_balance, Decimal("5.00"))
        self.assertEqual(LedgerEntry.objects.filter(order=order).count(), 3)

    def test_wrong_code_changes_nothing(self):
        order = create_delivering_order(self.buyer, self.shop, courier=self.courier)

        response = self._confirm(self.buyer, order, code="conf12")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.DELIVERING)
        self.assertEqual(Delivery.objects.get(order=order).status, Delivery.Status.ACCEPTED)
        self.owner.refresh_from_db()
        self.assertEqual(self.owner.pending_balance, Decimal("0.00"))

    def test_unrelated_user_cannot_confirm(self):
        order = create_delivering_order(self.buyer, self.shop, courier=self.courier)
        stranger = create_buyer("stranger_confirm@example.com")

        response = self._confirm(stranger, order)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN, response.data)

    def test_seller_confirms_own_delivery(self):
        order = create_delivering_order(self.buyer, self.shop, method=Order.DeliveryMethod.SELLER, total="100.00")

        response = self._confirm(self.owner, order)

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.owner.refresh_from_db()
        self.assertEqual(self.owner.pending_balance, Decimal("95.00"))
        delivery = Delivery.objects.get(order=order)
        self.assertEqual(delivery.status, Delivery.Status.DELIVERED_CONFIRMED)
        self.assertIsNotNone(delivery.delivered_at)

    def test_seller_cannot_confirm_courier_delivery(self):
        order = create_delivering_order(self.buyer, self.shop, courier=self.courier)
        response = self._confirm(self.owner, order)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN, response.data)

    def test_contracted_delivery_pays_no_courier_fee(self):
        order = create_delivering_order(
            self.buyer,
            self.shop,
            method=Order.DeliveryMethod.CONTRACTED,
            courier=self.courier,
            total="100.00",
        )

        response = self._confirm(self.buyer, order)

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.owner.refresh_from_db()
        self.courier.refresh_from_db()
        self.assertEqual(self.owner.pending_balance, Decimal("95.00"))
        self.assertEqual(self.courier.pending_balance, Decimal("0.00"))
        self.assertTrue(self.courier.is_available)

    def test_order_not_in_delivery_is_not_found(self):
        order = create_delivering_order(self.buyer, self.shop, courier=self.courier)
        Order.objects.filter(id=order.id).update(status=Order.Status.PROCESSING)

        response = self._confirm(self.buyer, order)

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND, response.data)


@override_settings(ABACATEPAY={"API_KEY": "test-key", "BASE_URL": "", "WEBHOOK_SECRET": "", "TIMEOUT": 5})
class MarketplaceScenarioTests(APITestCase):
    """Buyer pays by PIX, a marketplace courier claims, picks up and the buyer confirms."""

    def setUp(self):
        self.seller = create_user("seller_scenario@example.com", User.Role.SELLER)
        self.courier = create_user("courier_scenario@example.com", User.Role.COURIER)
        self.buyer = create_buyer("buyer_scenario@example.com")
        self.shop = Shop.objects.create(name="Store S", owner=self.seller)
        self.product = Product.objects.create(name="Basket", shop=self.shop, price=Decimal("25.00"), stock=4)

    @patch(
        "payment.services.service.AbacatePaySDK.create_pix_qr_code",
        return_value={"id": "tx1", "brCode": "000201", "brCodeBase64": ""},
    )
    def test_full_lifecycle(self, create_pix):
        self.client.force_authenticate(user=self.buyer)
        response = self.client.post(
            "/orders/",
            {
                "shop_id": str(self.shop.id),
                "items": [{"product_id": str(self.product.id), "quantity": 2}],
                "total_amount": "50.00",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        order = Order.objects.get(id=response.data["order_id"])
        self.assertEqual(order.status, Order.Status.PENDING_PAYMENT)
        self.assertEqual(order.payment_transaction_id, "tx1")

        self.client.force_authenticate(user=None)
        webhook = self.client.post(
            "/payments/webhook/",
            data=json.dumps({"event": "PAYMENT_APPROVED", "data": {"id": "tx1", "status": "APPROVED"}}),
            content_type="application/json",
        )
        self.assertEqual(webhook.status_code, 200)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PROCESSING)

        self.client.force_authenticate(user=self.seller)
        response = self.client.post(f"/orders/{order.id}/delivery-method/", {"method": "Marketplace"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.DELIVERING)
        delivery = Delivery.objects.get(order=order)
        self.assertEqual(delivery.status, Delivery.Status.REQUESTED)
        self.assertIsNone(delivery.courier_id)

        self.client.force_authenticate(user=self.courier)
        response = self.client.put(f"/deliveries/{order.id}/accept/")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        pickup_code = response.data["pickup_code"]
        self.assertEqual(pickup_code, order.delivery_pickup_code)
        self.courier.refresh_from_db()
        self.assertFalse(self.courier.is_available)

        self.client.force_authenticate(user=self.buyer)
        status_response = self.client.get(f"/orders/{order.id}/status/")
        self.assertIn("on the way to the store", status_response.data["tracking_message"])

        self.client.force_authenticate(user=self.seller)
        response = self.client.put(f"/orders/{order.id}/confirm-pickup/", {"pickup_code": pickup_code}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(Delivery.objects.get(order=order).status, Delivery.Status.PICKED_UP)

        self.client.force_authenticate(user=self.buyer)
        response = self.client.post(
            "/deliveries/confirm/",
            {"order_id": str(order.id), "confirmation_code": order.delivery_confirmation_code},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)

        order.refresh_from_db()
        self.seller.refresh_from_db()
        self.courier.refresh_from_db()
        self.assertEqual(order.status, Order.Status.COMPLETED)
        self.assertEqual(self.courier.pending_balance, Decimal("5.00"))
        self.assertEqual(self.seller.pending_balance, Decimal("42.50"))
        self.assertTrue(self.courier.is_available)

        self.client.force_authenticate(user=self.courier)
        metrics = self.client.get("/deliveries/metrics/")
        self.assertEqual(metrics.status_code, status.HTTP_200_OK)
        self.assertEqual(metrics.data["metrics"]["completed_deliveries"], 1)
        self.assertEqual(metrics.data["pending_balance"], "5.00")


class ClaimRaceTests(TransactionTestCase):
    reset_sequences = True

    def setUp(self):
        owner = create_user("owner_race@example.com", User.Role.SELLER)
        buyer = create_buyer("buyer_race@example.com")
        self.couriers = [
            create_user("courier_race_a@example.com", User.Role.COURIER),
            create_user("courier_race_b@example.com", User.Role.COURIER),
        ]
        shop = Shop.objects.create(name="Race Shop", owner=owner)
        self.order = create_delivering_order(buyer, shop)

    def _attempt_claim(self, courier, barrier):
        close_old_connections()
        try:
            barrier.wait(timeout=5)
            delivery = claim_delivery(self.order.id, courier)
            return ("ok", str(delivery.courier_id))
        except Exception as exc:
            return ("err", str(exc))
        finally:
            close_old_connections()

    def test_two_couriers_one_winner(self):
        barrier = threading.Barrier(2)

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(self._attempt_claim, courier, barrier) for courier in self.couriers]
            results = [f.result(timeout=20) for f in futures]

        winners = [r for r in results if r[0] == "ok"]
        self.assertEqual(len(winners), 1, results)

        delivery = Delivery.objects.get(order=self.order)
        self.assertEqual(str(delivery.courier_id), winners[0][1])
        self.assertEqual(delivery.status, Delivery.Status.ACCEPTED)

        loser_error = [r[1] for r in results if r[0] == "err"][0].lower()
        self.assertIn("already taken", loser_error, results)

        availability = {str(u.id): u.is_available for u in User.objects.filter(role=User.Role.COURIER)}
        self.assertFalse(availability[winners[0][1]])
        self.assertEqual(list(availability.values()).count(True), 1)


class ConfirmRaceTests(TransactionTestCase):
    reset_sequences = True

    def setUp(self):
        self.owner = create_user("owner_confirm_race@example.com", User.Role.SELLER)
        self.buyer = create_buyer("buyer_confirm_race@example.com")
        self.courier = create_user("courier_confirm_race@example.com", User.Role.COURIER, is_available=False)
        shop = Shop.objects.create(name="Confirm Race Shop", owner=self.owner)
        self.order = create_delivering_order(self.buyer, shop, courier=self.courier, total="100.00")

    def _attempt_confirm(self, actor, barrier):
        close_old_connections()
        try:
            barrier.wait(timeout=5)
            result = OrderService.confirm_delivery(self.order.id, actor, "CONF12")
            return ("ok", result.order.status)
        except Exception as exc:
            return ("err", f"{exc.__class__.__name__}: {exc}")
        finally:
            close_old_connections()

    def test_buyer_and_courier_confirm_at_once_credits_once(self):
        barrier = threading.Barrier(2)

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(self._attempt_confirm, actor, barrier) for actor in (self.buyer, self.courier)]
            results = [f.result(timeout=30) for f in futures]

        self.assertEqual(len([r for r in results if r[0] == "ok"]), 1, results)
        loser_error = [r[1] for r in results if r[0] == "err"][0]
        self.assertTrue(loser_error.startswith(("NotFoundError", "ConflictError")), results)

        self.assertEqual(
            LedgerEntry.objects.filter(order=self.order, entry_type=LedgerEntry.EntryType.SELLER_EARNING).count(),
            1,
        )
        self.owner.refresh_from_db()
        self.courier.refresh_from_db()
        self.assertEqual(self.owner.pending_balance, Decimal("90.00"))
        self.assertEqual(self.courier.pending_balance, Decimal("5.00"))
        self.assertTrue(self.courier.is_available)
        self.assertEqual(Order.objects.get(id=self.order.id).status, Order.Status.COMPLETED)
