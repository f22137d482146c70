from decimal import Decimal

from django.db import transaction
from django.test import TestCase

from account.models import User
from catalog.models import Product
from catalog.services import StockService
from core.exceptions import ConflictError
from shop.models import Shop


class StockServiceTests(TestCase):
    def setUp(self):
        owner = User.objects.create_user(
            email="owner-catalog@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        shop = Shop.objects.create(name="Catalog Shop", owner=owner)
        self.phone = Product.objects.create(name="Phone", shop=shop, price=Decimal("100.00"), stock=5)
        self.case = Product.objects.create(name="Case", shop=shop, price=Decimal("10.00"), stock=1)

    def test_decrement_reduces_stock(self):
        StockService.decrement({str(self.phone.id): 2, str(self.case.id): 1})

        self.phone.refresh_from_db()
        self.case.refresh_from_db()
        self.assertEqual(self.phone.stock, 3)
        self.assertEqual(self.case.stock, 0)

    def test_decrement_is_all_or_nothing_inside_transaction(self):
        with self.assertRaises(ConflictError):
            with transaction.atomic():
                StockService.decrement({str(self.phone.id): 2, str(self.case.id): 2})

        self.phone.refresh_from_db()
        self.case.refresh_from_db()
        self.assertEqual(self.phone.stock, 5)
        self.assertEqual(self.case.stock, 1)

    def test_exact_stock_can_be_bought(self):
        StockService.decrement({str(self.phone.id): 5})
        self.phone.refresh_from_db()
        self.assertEqual(self.phone.stock, 0)
