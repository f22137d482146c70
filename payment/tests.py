import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from account.models import User
from order.models import Order
from shop.models import Shop

from .ledger import credit_pending_balance
from .models import LedgerEntry, Payment, WebhookLog
from .services.abacatepay_sdk import AbacatePayError, AbacatePaySDK
from .services.service import (
    PaymentConfigurationError,
    PaymentGatewayError,
    PaymentService,
)
from .services.settlement import compute_split

WEBHOOK_URL = "/payments/webhook/"
GATEWAY_SETTINGS = {"API_KEY": "test-key", "BASE_URL": "https://gateway.test/v1", "WEBHOOK_SECRET": "", "TIMEOUT": 5}


def make_order(buyer, shop, tx_id=None, status=Order.Status.PENDING_PAYMENT, total="50.00", number="ORD-PAY-1"):
    return Order.objects.create(
        order_number=number,
        buyer=buyer,
        shop=shop,
        status=status,
        total_amount=Decimal(total),
        payment_transaction_id=tx_id,
        delivery_confirmation_code="CONF12",
        delivery_pickup_code="PICK5",
    )


def approved_payload(tx_id, event="PAYMENT_APPROVED", gateway_status="APPROVED"):
    return {"event": event, "data": {"id": tx_id, "status": gateway_status}}


def gateway_response(body, status_code=200):
    response = MagicMock(spec=requests.Response)
    response.ok = status_code < 400
    response.status_code = status_code
    response.json.return_value = body
    response.text = json.dumps(body)
    return response


class SettlementSplitTests(TestCase):
    def test_marketplace_with_courier(self):
        split = compute_split(Decimal("100.00"), Order.DeliveryMethod.MARKETPLACE, True, Decimal("0.05"), Decimal("5.00"))
        self.assertEqual(split.marketplace_fee, Decimal("5.00"))
        self.assertEqual(split.courier_amount, Decimal("5.00"))
        self.assertEqual(split.seller_amount, Decimal("90.00"))

    def test_self_and_contracted_pay_no_courier_fee(self):
        for method in (Order.DeliveryMethod.SELLER, Order.DeliveryMethod.CONTRACTED):
            split = compute_split(Decimal("100.00"), method, method == Order.DeliveryMethod.CONTRACTED, Decimal("0.05"), Decimal("5.00"))
            self.assertEqual(split.courier_amount, Decimal("0.00"))
            self.assertEqual(split.seller_amount, Decimal("95.00"))

    def test_fee_is_rounded_half_up(self):
        split = compute_split(Decimal("10.10"), Order.DeliveryMethod.SELLER, False, Decimal("0.05"), Decimal("5.00"))
        # 10.10 * 0.05 = 0.505
        self.assertEqual(split.marketplace_fee, Decimal("0.51"))
        self.assertEqual(split.seller_amount, Decimal("9.59"))

    def test_small_order_clamps_seller_share(self):
        split = compute_split(Decimal("4.00"), Order.DeliveryMethod.MARKETPLACE, True, Decimal("0.05"), Decimal("5.00"))
        self.assertEqual(split.courier_amount, Decimal("5.00"))
        self.assertEqual(split.seller_amount, Decimal("0.00"))


class LedgerTests(TestCase):
    def setUp(self):
        self.seller = User.objects.create_user(email="ledger_seller@example.com", password="Pass123!", role=User.Role.SELLER)
        self.buyer = User.objects.create_user(email="ledger_buyer@example.com", password="Pass123!")
        self.order = make_order(self.buyer, Shop.objects.create(name="Ledger Shop", owner=self.seller))

    def test_credit_increments_balance_and_records_entry(self):
        entry = credit_pending_balance(self.order, self.seller.id, Decimal("12.34"), LedgerEntry.EntryType.SELLER_EARNING)

        self.seller.refresh_from_db()
        self.assertEqual(self.seller.pending_balance, Decimal("12.34"))
        self.assertEqual(entry.user_id, self.seller.id)
        self.assertEqual(entry.amount, Decimal("12.34"))

    def test_zero_credit_is_skipped(self):
        self.assertIsNone(credit_pending_balance(self.order, self.seller.id, Decimal("0.00"), LedgerEntry.EntryType.SELLER_EARNING))
        self.assertFalse(LedgerEntry.objects.exists())

    def test_negative_credit_is_rejected(self):
        with self.assertRaises(ValueError):
            credit_pending_balance(self.order, self.seller.id, Decimal("-1.00"), LedgerEntry.EntryType.SELLER_EARNING)
        self.seller.refresh_from_db()
        self.assertEqual(self.seller.pending_balance, Decimal("0.00"))


@override_settings(ABACATEPAY=GATEWAY_SETTINGS)
class PaymentServiceTests(TestCase):
    def setUp(self):
        seller = User.objects.create_user(email="svc_seller@example.com", password="Pass123!", role=User.Role.SELLER)
        self.buyer = User.objects.create_user(email="svc_buyer@example.com", password="Pass123!")
        self.order = make_order(self.buyer, Shop.objects.create(name="Svc Shop", owner=seller), total="19.99")

    @patch("payment.services.abacatepay_sdk.requests.post")
    def test_create_order_charge_sends_cents(self, mock_post):
        mock_post.return_value = gateway_response(
            {"data": {"id": "pix_char_1", "brCode": "0002012636", "brCodeBase64": "aW1n", "expiresAt": "2026-01-01T00:00:00Z"}, "error": None}
        )

        charge = PaymentService().create_order_charge(self.order)

        self.assertEqual(charge.tx_id, "pix_char_1")
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://gateway.test/v1/pixQrCode/create")
        self.assertEqual(kwargs["json"]["amount"], 1999)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer test-key")
        self.assertEqual(kwargs["timeout"], 5.0)

        payment = Payment.objects.get(provider_reference="pix_char_1")
        self.assertEqual(payment.status, Payment.Status.PENDING)
        self.assertEqual(payment.amount, Decimal("19.99"))
        self.assertEqual(payment.metadata["br_code"], "0002012636")

    @patch("payment.services.abacatepay_sdk.requests.post")
    def test_gateway_error_body_raises(self, mock_post):
        mock_post.return_value = gateway_response({"data": None, "error": "Invalid amount"})

        with self.assertRaises(PaymentGatewayError) as ctx:
            PaymentService().create_order_charge(self.order)

        self.assertIn("Invalid amount", str(ctx.exception))
        self.assertFalse(Payment.objects.exists())

    @patch("payment.services.abacatepay_sdk.requests.post", side_effect=requests.Timeout("read timed out"))
    def test_timeout_raises_gateway_error(self, mock_post):
        with self.assertRaises(PaymentGatewayError):
            PaymentService().create_order_charge(self.order)

    @patch("payment.services.abacatepay_sdk.requests.post")
    def test_missing_transaction_id_is_an_error(self, mock_post):
        mock_post.return_value = gateway_response({"data": {"brCode": "x"}, "error": None})
        with self.assertRaises(PaymentGatewayError):
            PaymentService().create_order_charge(self.order)

    @override_settings(ABACATEPAY={"API_KEY": "", "BASE_URL": "", "WEBHOOK_SECRET": "", "TIMEOUT": 5})
    def test_missing_api_key(self):
        with self.assertRaises(PaymentConfigurationError):
            PaymentService()

    def test_mark_completed_is_idempotent(self):
        Payment.objects.create(
            order=self.order,
            user=self.buyer,
            amount=Decimal("19.99"),
            provider="ABACATEPAY",
            provider_reference="tx-done",
        )
        self.assertEqual(PaymentService.mark_completed("tx-done"), 1)
        self.assertEqual(PaymentService.mark_completed("tx-done"), 0)


class AbacatePaySDKTests(TestCase):
    def test_signature_round_trip(self):
        body = b'{"event":"PAYMENT_APPROVED"}'
        signature = AbacatePaySDK.sign_webhook_body(body, "s3cret")

        self.assertTrue(AbacatePaySDK.verify_webhook_signature(body, signature.upper(), "s3cret"))
        self.assertFalse(AbacatePaySDK.verify_webhook_signature(body, signature, "other"))
        self.assertFalse(AbacatePaySDK.verify_webhook_signature(body, "", "s3cret"))

    @patch("payment.services.abacatepay_sdk.requests.get")
    def test_check_pix_status_queries_charge(self, mock_get):
        mock_get.return_value = gateway_response({"data": {"status": "PAID"}, "error": None})

        data = AbacatePaySDK("key", base_url="https://gateway.test/v1/", timeout=3).check_pix_status("pix_1")

        self.assertEqual(data["status"], "PAID")
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], "https://gateway.test/v1/pixQrCode/check")
        self.assertEqual(kwargs["params"], {"id": "pix_1"})
        self.assertEqual(kwargs["timeout"], 3)

    @patch("payment.services.abacatepay_sdk.requests.post")
    def test_http_error_raises(self, mock_post):
        mock_post.return_value = gateway_response({"message": "unauthorized"}, status_code=401)
        with self.assertRaises(AbacatePayError):
            AbacatePaySDK("bad-key").create_pix_qr_code(amount=100, expires_in=60, description="x")


@override_settings(ABACATEPAY=GATEWAY_SETTINGS)
class WebhookTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.seller = User.objects.create_user(email="hook_seller@example.com", password="Pass123!", role=User.Role.SELLER)
        self.buyer = User.objects.create_user(email="hook_buyer@example.com", password="Pass123!")
        self.shop = Shop.objects.create(name="Hook Shop", owner=self.seller)
        self.order = make_order(self.buyer, self.shop, tx_id="tx1")

    def _post(self, payload, **headers):
        body = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
        return self.client.generic("POST", WEBHOOK_URL, body, content_type="application/json", **headers)

    def test_get_returns_info(self):
        response = self.client.get(WEBHOOK_URL)
        self.assertEqual(response.status_code, 200)

    def test_approved_moves_order_to_processing(self):
        response = self._post(approved_payload("tx1"))

        self.assertEqual(response.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertIsNotNone(self.order.paid_at)
        log = WebhookLog.objects.get(reference="tx1")
        self.assertEqual(log.outcome, WebhookLog.Outcome.APPROVED)
        self.assertTrue(log.processed)

    def test_paid_status_is_accepted(self):
        self._post(approved_payload("tx1", gateway_status="paid"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_duplicate_delivery_is_a_noop(self):
        self._post(approved_payload("tx1"))
        self.order.refresh_from_db()
        paid_at = self.order.paid_at

        response = self._post(approved_payload("tx1"))

        self.assertEqual(response.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertEqual(self.order.paid_at, paid_at)
        outcomes = list(WebhookLog.objects.filter(reference="tx1").order_by("id").values_list("outcome", flat=True))
        self.assertEqual(outcomes, [WebhookLog.Outcome.APPROVED, WebhookLog.Outcome.DUPLICATE])

    def test_unknown_transaction_is_acknowledged(self):
        response = self._post(approved_payload("tx-unknown"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(WebhookLog.objects.get(reference="tx-unknown").outcome, WebhookLog.Outcome.ORDER_NOT_FOUND)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING_PAYMENT)

    def test_other_events_are_ignored(self):
        response = self._post(approved_payload("tx1", event="PAYMENT_EXPIRED", gateway_status="EXPIRED"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(WebhookLog.objects.get(reference="tx1").outcome, WebhookLog.Outcome.IGNORED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING_PAYMENT)

    def test_invalid_json_is_acknowledged(self):
        response = self._post(b"{not json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(WebhookLog.objects.get().outcome, WebhookLog.Outcome.INVALID_PAYLOAD)

    def test_processing_failure_is_acknowledged(self):
        with patch("payment.views.OrderService.on_payment_approved", side_effect=RuntimeError("db down")):
            response = self._post(approved_payload("tx1"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(WebhookLog.objects.get(reference="tx1").outcome, WebhookLog.Outcome.FAILED)

    @override_settings(ABACATEPAY={**GATEWAY_SETTINGS, "WEBHOOK_SECRET": "hook-secret"})
    def test_bad_signature_is_rejected(self):
        response = self._post(approved_payload("tx1"), HTTP_X_WEBHOOK_SIGNATURE="deadbeef")

        self.assertEqual(response.status_code, 401)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING_PAYMENT)
        self.assertEqual(WebhookLog.objects.get().outcome, WebhookLog.Outcome.INVALID_SIGNATURE)

    @override_settings(ABACATEPAY={**GATEWAY_SETTINGS, "WEBHOOK_SECRET": "hook-secret"})
    def test_signed_webhook_is_processed(self):
        body = json.dumps(approved_payload("tx1")).encode("utf-8")
        signature = AbacatePaySDK.sign_webhook_body(body, "hook-secret")

        response = self._post(body, HTTP_X_WEBHOOK_SIGNATURE=signature)

        self.assertEqual(response.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_payment_row_is_completed(self):
        Payment.objects.create(
            order=self.order,
            user=self.buyer,
            amount=Decimal("50.00"),
            provider="ABACATEPAY",
            provider_reference="tx1",
        )

        self._post(approved_payload("tx1"))

        self.assertEqual(Payment.objects.get(provider_reference="tx1").status, Payment.Status.COMPLETED)
