import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class MarketplaceError(APIException):
    """Base class for lifecycle errors; each subclass maps to one HTTP status."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "marketplace_error"


class ValidationError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid or missing input."
    default_code = "validation_error"


class AuthorizationError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to act on this resource."
    default_code = "authorization_error"


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found."
    default_code = "not_found"


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The resource is not in a state that allows this action."
    default_code = "conflict"


class ServiceError(MarketplaceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "A downstream service failed."
    default_code = "service_error"


class PaymentRequiredError(ServiceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "The payment charge could not be created."
    default_code = "payment_required"


def _flatten_message(detail):
    if isinstance(detail, list):
        return _flatten_message(detail[0]) if detail else ""
    if isinstance(detail, dict):
        for key, value in detail.items():
            text = _flatten_message(value)
            if key in {"detail", "non_field_errors"}:
                return text
            return f"{key}: {text}"
        return ""
    return str(detail)


def api_exception_handler(exc, context):
    """
    Renders every API error as {"success": false, "message": ...}.
    Unhandled exceptions become a generic 500 without leaking internals.
    """
    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("Unhandled error in %s", view.__class__.__name__ if view else "unknown view")
        return Response(
            {"success": False, "message": "Internal server error."},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    detail = response.data
    body = {"success": False, "message": _flatten_message(detail)}
    if isinstance(detail, dict) and not set(detail.keys()) <= {"detail"}:
        body["errors"] = detail
    code = getattr(exc, "default_code", None)
    if isinstance(exc, MarketplaceError) and code:
        body["code"] = code
    response.data = body
    return response
