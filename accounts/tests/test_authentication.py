"""
Tests for cookie-based JWT authentication.
"""
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import AccessToken, RefreshToken

from accounts.models import CustomUser, UserRole


class CookieAuthenticationTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = CustomUser.objects.create_user(
            email="secretary@test.com",
            password="testpass123",
            user_role=UserRole.SECRETARY,
            first_name="Secretary",
            last_name="User",
            tenant_id="tenant-a",
            clinic_id="clinic-1",
        )

    def _login(self, password="testpass123"):
        return self.client.post(
            reverse("token_obtain_pair"),
            {"email": "secretary@test.com", "password": password},
            format="json",
        )

    def test_login_sets_http_only_cookies_and_hides_tokens(self):
        response = self._login()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["success"])
        self.assertNotIn("access", response.data)
        self.assertNotIn("refresh", response.data)
        self.assertTrue(response.cookies["access_token"]["httponly"])
        self.assertTrue(response.cookies["refresh_token"]["httponly"])

    def test_access_token_carries_tenant_claims(self):
        response = self._login()

        token = AccessToken(response.cookies["access_token"].value)
        self.assertEqual(token["tenant_id"], "tenant-a")
        self.assertEqual(token["organization_id"], "tenant-a")
        self.assertEqual(token["role"], UserRole.SECRETARY)

    def test_invalid_credentials(self):
        response = self._login(password="wrong")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"]["code"], "validation_error")
        self.assertNotIn("access_token", response.cookies)

    def test_cookie_authenticates_me_endpoint(self):
        self._login()

        response = self.client.get(reverse("current-user"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["data"]["email"], "secretary@test.com")
        self.assertEqual(response.data["data"]["tenant_id"], "tenant-a")

    def test_bearer_header_is_accepted(self):
        access = RefreshToken.for_user(self.user).access_token
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        response = self.client.get(reverse("current-user"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_me_requires_authentication(self):
        response = self.client.get(reverse("current-user"))

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data["error"]["code"], "not_authenticated")

    def test_refresh_issues_new_access_cookie(self):
        self._login()

        response = self.client.post(reverse("token_refresh"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access_token", response.cookies)

    def test_refresh_without_cookie(self):
        response = self.client.post(reverse("token_refresh"))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_refresh_with_garbage_cookie_clears_cookies(self):
        self.client.cookies["refresh_token"] = "garbage"

        response = self.client.post(reverse("token_refresh"))

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data["error"]["code"], "token_invalid")
        self.assertEqual(response.cookies["refresh_token"].value, "")

    def test_logout_clears_cookies(self):
        self._login()

        response = self.client.post(reverse("logout"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.cookies["access_token"].value, "")
        self.assertEqual(response.cookies["refresh_token"].value, "")


class SchemaTests(APITestCase):
    def test_schema_documents_cookie_auth(self):
        response = self.client.get(reverse("schema"), {"format": "json"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("CookieJWTAuth", response.content.decode())
