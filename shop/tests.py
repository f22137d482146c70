from django.test import TestCase
from rest_framework.test import APIClient

from account.models import User
from shop.models import Shop


class ContractCourierTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = User.objects.create_user(
            email="owner-shop@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        self.other_seller = User.objects.create_user(
            email="other-seller@example.com",
            password="Pass123!",
            role=User.Role.SELLER,
        )
        self.courier = User.objects.create_user(
            email="courier-shop@example.com",
            password="Pass123!",
            role=User.Role.COURIER,
        )
        self.buyer = User.objects.create_user(
            email="buyer-shop@example.com",
            password="Pass123!",
        )
        self.shop = Shop.objects.create(name="Downtown Store", owner=self.owner)

    def test_shop_str_returns_name(self):
        self.assertEqual(str(self.shop), "Downtown Store")

    def test_owner_can_hire_courier(self):
        self.client.force_authenticate(self.owner)
        response = self.client.put(
            f"/shops/{self.shop.id}/contract/",
            {"courier_id": str(self.courier.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 200, response.data)
        self.assertTrue(response.data["success"])
        self.assertEqual(response.data["contracted_courier"]["email"], self.courier.email)
        self.shop.refresh_from_db()
        self.assertEqual(self.shop.contracted_courier_id, self.courier.id)

    def test_owner_can_dismiss_courier(self):
        self.shop.contracted_courier = self.courier
        self.shop.save()
        self.client.force_authenticate(self.owner)

        response = self.client.put(f"/shops/{self.shop.id}/contract/", {"courier_id": None}, format="json")

        self.assertEqual(response.status_code, 200, response.data)
        self.shop.refresh_from_db()
        self.assertIsNone(self.shop.contracted_courier_id)

    def test_non_courier_cannot_be_hired(self):
        self.client.force_authenticate(self.owner)
        response = self.client.put(
            f"/shops/{self.shop.id}/contract/",
            {"courier_id": str(self.buyer.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 400, response.data)
        self.assertFalse(response.data["success"])

    def test_other_seller_cannot_manage_store(self):
        self.client.force_authenticate(self.other_seller)
        response = self.client.put(
            f"/shops/{self.shop.id}/contract/",
            {"courier_id": str(self.courier.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 403, response.data)
        self.shop.refresh_from_db()
        self.assertIsNone(self.shop.contracted_courier_id)

    def test_buyer_is_rejected_by_role_guard(self):
        self.client.force_authenticate(self.buyer)
        response = self.client.put(
            f"/shops/{self.shop.id}/contract/",
            {"courier_id": str(self.courier.id)},
            format="json",
        )
        self.assertEqual(response.status_code, 403)
