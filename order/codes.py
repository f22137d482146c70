import hmac
import logging
import secrets
import string
from dataclasses import dataclass

from django.conf import settings

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_UNIQUE_ATTEMPTS = 10


@dataclass(frozen=True)
class OrderCodes:
    confirmation: str
    pickup: str


def generate_code(length: int) -> str:
    """Uppercase alphanumeric code drawn from a CSPRNG."""
    if length <= 0:
        raise ValueError("Code length must be positive")
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def _confirmation_code_in_use(code: str) -> bool:
    from .models import Order

    return (
        Order.objects.filter(delivery_confirmation_code=code)
        .exclude(status=Order.Status.COMPLETED)
        .exists()
    )


def generate_order_codes() -> OrderCodes:
    config = settings.MARKETPLACE
    confirmation_length = int(config.get("CONFIRMATION_CODE_LENGTH", 6))
    pickup_length = int(config.get("PICKUP_CODE_LENGTH", 5))

    # Confirmation codes are matched by value together with the order id, but
    # keeping them unique among open orders avoids ambiguous support lookups.
    for _ in range(MAX_UNIQUE_ATTEMPTS):
        confirmation = generate_code(confirmation_length)
        if not _confirmation_code_in_use(confirmation):
            break
    else:
        logger.warning("Could not find an unused confirmation code after %s attempts", MAX_UNIQUE_ATTEMPTS)

    return OrderCodes(confirmation=confirmation, pickup=generate_code(pickup_length))


def codes_match(supplied, expected) -> bool:
    """Exact, case-sensitive comparison without leaking timing."""
    if not supplied or not expected or not isinstance(supplied, str):
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))
