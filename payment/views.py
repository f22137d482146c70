import json
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from order.services import OrderService
from payment.models import WebhookLog
from payment.services.abacatepay_sdk import AbacatePaySDK
from payment.services.service import PAID_STATUSES, PROVIDER

logger = logging.getLogger(__name__)

APPROVED_EVENT = "PAYMENT_APPROVED"


def _log_webhook(event_type, reference, payload, outcome, processed=False):
    # Bookkeeping must never turn an acknowledged webhook into an error
    try:
        WebhookLog.objects.create(
            provider=PROVIDER,
            event_type=event_type or "",
            reference=reference or "",
            payload=payload if isinstance(payload, dict) else {"raw": payload},
            outcome=outcome,
            processed=processed,
            processing_attempts=1,
        )
    except Exception:
        logger.exception("Could not record webhook log for reference=%s", reference)


def _acknowledge(message="Notification received."):
    return JsonResponse({"success": True, "message": message}, status=200)


@method_decorator(csrf_exempt, name="dispatch")
class AbacatePayWebhookView(View):
    """
    Receives AbacatePay notifications.

    Always answers 200 so the gateway does not retry into a storm; failures
    are logged and recorded in WebhookLog instead. The only rejection is a
    bad signature when a webhook secret is configured.
    """

    def get(self, request: HttpRequest):
        # Simple GET for sanity checks
        return JsonResponse({"info": "AbacatePay webhook endpoint, POST only"})

    def post(self, request: HttpRequest):
        secret = settings.ABACATEPAY.get("WEBHOOK_SECRET")
        if secret:
            signature = request.headers.get("X-Webhook-Signature", "")
            if not AbacatePaySDK.verify_webhook_signature(request.body, signature, secret):
                logger.warning("AbacatePay webhook rejected: invalid signature")
                _log_webhook(
                    "INVALID_SIGNATURE",
                    "",
                    {"raw_body": request.body.decode("utf-8", errors="replace")},
                    WebhookLog.Outcome.INVALID_SIGNATURE,
                )
                return JsonResponse({"success": False, "message": "Invalid webhook signature."}, status=401)

        try:
            payload = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("AbacatePay webhook invalid JSON: %s", request.body[:500])
            _log_webhook(
                "INVALID_JSON",
                "",
                {"raw_body": request.body.decode("utf-8", errors="replace")},
                WebhookLog.Outcome.INVALID_PAYLOAD,
            )
            return _acknowledge()

        logger.info("AbacatePay webhook received: %s", payload)

        if not isinstance(payload, dict):
            _log_webhook("INVALID_PAYLOAD", "", payload, WebhookLog.Outcome.INVALID_PAYLOAD)
            return _acknowledge()

        event = payload.get("event") or ""
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        tx_id = str(data.get("id") or "").strip()
        gateway_status = str(data.get("status") or "").strip().upper()

        if event != APPROVED_EVENT or gateway_status not in PAID_STATUSES or not tx_id:
            logger.info("AbacatePay webhook ignored: event=%s status=%s tx=%s", event, gateway_status, tx_id)
            _log_webhook(event, tx_id, payload, WebhookLog.Outcome.IGNORED)
            return _acknowledge()

        try:
            outcome = OrderService.on_payment_approved(tx_id)
        except Exception:
            logger.exception("AbacatePay webhook processing failed for tx=%s", tx_id)
            _log_webhook(event, tx_id, payload, WebhookLog.Outcome.FAILED)
            return _acknowledge("Notification received (internal error).")

        _log_webhook(event, tx_id, payload, outcome, processed=True)
        return _acknowledge()
