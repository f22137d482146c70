from rest_framework import permissions

from core.exceptions import AuthorizationError

from .models import User


class AddressRequiredError(AuthorizationError):
    default_detail = "A complete delivery address is required before placing orders."
    default_code = "address_required"


class _RolePermission(permissions.BasePermission):
    role = None
    message = "Access denied."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.role == self.role)


class IsBuyer(_RolePermission):
    role = User.Role.BUYER
    message = "Only buyers can access this resource."


class IsSeller(_RolePermission):
    role = User.Role.SELLER
    message = "Only sellers can access this resource."


class IsCourier(_RolePermission):
    role = User.Role.COURIER
    message = "Only couriers can access this resource."


class HasCompleteAddress(permissions.BasePermission):
    """
    Buyers must have street, number, city, district and contact number on
    file. ``request.user`` is loaded from the database by the JWT
    authenticator on every request, so this reflects the current profile.
    """

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if user.role == User.Role.BUYER and not user.has_complete_address:
            raise AddressRequiredError()
        return True
