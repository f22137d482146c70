from django.test import TestCase
from rest_framework.test import APIClient, APIRequestFactory

from account.models import User
from account.permissions import AddressRequiredError, HasCompleteAddress, IsCourier


class UserModelTests(TestCase):
    def test_create_user_hashes_password(self):
        user = User.objects.create_user(email="user@example.com", password="Pass123!")

        self.assertNotEqual(user.password, "Pass123!")
        self.assertTrue(user.check_password("Pass123!"))
        self.assertEqual(user.role, User.Role.BUYER)
        self.assertTrue(user.is_available)

    def test_create_user_requires_email(self):
        with self.assertRaisesMessage(ValueError, "Users must have an email"):
            User.objects.create_user(email="", password="Pass123!")

    def test_missing_address_fields(self):
        user = User.objects.create_user(
            email="partial@example.com",
            password="Pass123!",
            address_street="Rua A",
            city="Recife",
            contact_number="   ",
        )

        self.assertEqual(user.missing_address_fields(), ["address_number", "district", "contact_number"])
        self.assertFalse(user.has_complete_address)

    def test_address_snapshot_keys_match_order_fields(self):
        user = User.objects.create_user(
            email="full@example.com",
            password="Pass123!",
            address_street="Rua A",
            address_number="10",
            address_nearby="Near the bakery",
            city="Recife",
            district="Boa Vista",
            contact_number="81999990000",
        )

        snapshot = user.address_snapshot()

        self.assertEqual(snapshot["delivery_street"], "Rua A")
        self.assertEqual(snapshot["delivery_nearby"], "Near the bakery")
        self.assertEqual(snapshot["buyer_contact_number"], "81999990000")


class PermissionTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()

    def _request(self, user):
        request = self.factory.get("/")
        request.user = user
        return request

    def test_incomplete_buyer_address_raises(self):
        buyer = User.objects.create_user(email="noaddr@example.com", password="Pass123!")

        with self.assertRaises(AddressRequiredError):
            HasCompleteAddress().has_permission(self._request(buyer), None)

    def test_address_check_ignores_other_roles(self):
        seller = User.objects.create_user(email="seller_perm@example.com", password="Pass123!", role=User.Role.SELLER)
        self.assertTrue(HasCompleteAddress().has_permission(self._request(seller), None))

    def test_role_permission(self):
        courier = User.objects.create_user(email="courier_perm@example.com", password="Pass123!", role=User.Role.COURIER)
        buyer = User.objects.create_user(email="buyer_perm@example.com", password="Pass123!")

        self.assertTrue(IsCourier().has_permission(self._request(courier), None))
        self.assertFalse(IsCourier().has_permission(self._request(buyer), None))


class CurrentUserViewTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="me@example.com", password="Pass123!")
        self.client.force_authenticate(user=self.user)

    def test_buyer_updates_address(self):
        response = self.client.patch(
            "/auth/me/",
            {"address_street": "Rua B", "address_number": "5", "city": "Natal", "district": "Centro", "contact_number": "84911112222"},
            format="json",
        )

        self.assertEqual(response.status_code, 200, response.data)
        self.user.refresh_from_db()
        self.assertTrue(self.user.has_complete_address)

    def test_balance_and_role_are_read_only(self):
        response = self.client.patch(
            "/auth/me/",
            {"pending_balance": "1000.00", "role": User.Role.SELLER, "is_available": False},
            format="json",
        )

        self.assertEqual(response.status_code, 200, response.data)
        self.user.refresh_from_db()
        self.assertEqual(str(self.user.pending_balance), "0.00")
        self.assertEqual(self.user.role, User.Role.BUYER)
        self.assertTrue(self.user.is_available)

    def test_login_returns_tokens(self):
        client = APIClient()
        response = client.post("/auth/login/", {"email": "me@example.com", "password": "Pass123!"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.data)
