# accounts/openapi.py

"""
drf-spectacular extension documenting the cookie JWT scheme.
"""

from drf_spectacular.extensions import OpenApiAuthenticationExtension


class CookieJWTAuthenticationScheme(OpenApiAuthenticationExtension):
    target_class = "accounts.authentication.CookieJWTAuthentication"
    name = "CookieJWTAuth"

    def get_security_definition(self, auto_schema):
        return {
            "type": "apiKey",
            "in": "cookie",
            "name": "access_token",
            "description": (
                "Access token set as an HttpOnly cookie by /api/auth/login/. "
                "API clients may send the same token as `Authorization: Bearer <token>`."
            ),
        }
