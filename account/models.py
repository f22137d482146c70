import uuid
from decimal import Decimal
from django.db import models
from django.contrib.auth.models import (
    AbstractBaseUser,
    PermissionsMixin,
    BaseUserManager,
)

class UserManager(BaseUserManager):
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Users must have an email")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", User.Role.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    class Role(models.TextChoices):
        BUYER = "BUYER", "Buyer"
        SELLER = "SELLER", "Seller"
        COURIER = "COURIER", "Courier"
        ADMIN = "ADMIN", "Admin"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, unique=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.BUYER)

    # Basic fields
    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=120, blank=True)
    password = models.CharField(max_length=128)

    # Delivery address profile, snapshotted onto orders
    address_street = models.CharField(max_length=255, blank=True)
    address_number = models.CharField(max_length=20, blank=True)
    address_nearby = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=120, blank=True)
    district = models.CharField(max_length=120, blank=True)
    contact_number = models.CharField(max_length=20, blank=True)

    # Sellers and couriers
    pending_balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    #couiers fields
    is_available = models.BooleanField(default=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Auth
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    objects = UserManager()

    USERNAME_FIELD = "email"

    def __str__(self):
        return self.full_name or self.email

    @property
    def is_buyer(self):
        return self.role == self.Role.BUYER

    @property
    def is_seller(self):
        return self.role == self.Role.SELLER

    @property
    def is_courier(self):
        return self.role == self.Role.COURIER

    @property
    def is_admin(self):
        return self.role == self.Role.ADMIN

    def missing_address_fields(self):
        required = {
            "address_street": self.address_street,
            "address_number": self.address_number,
            "city": self.city,
            "district": self.district,
            "contact_number": self.contact_number,
        }
        return [name for name, value in required.items() if not (value or "").strip()]

    @property
    def has_complete_address(self):
        return not self.missing_address_fields()

    def address_snapshot(self):
        return {
            "delivery_street": self.address_street,
            "delivery_number": self.address_number,
            "delivery_city": self.city,
            "delivery_district": self.district,
            "delivery_nearby": self.address_nearby,
            "buyer_contact_number": self.contact_number,
        }
