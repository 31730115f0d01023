from rest_framework_simplejwt.authentication import JWTAuthentication


class CookieJWTAuthentication(JWTAuthentication):
    """
    Reads the JWT from the HttpOnly 'access_token' cookie, falling back to
    the standard 'Authorization: Bearer' header for API clients.
    """

    cookie_name = "access_token"

    def authenticate(self, request):
        raw_token = request.COOKIES.get(self.cookie_name)

        if not raw_token:
            # No cookie: let the header-based flow handle it (or return None)
            return super().authenticate(request)

        validated_token = self.get_validated_token(raw_token)
        user = self.get_user(validated_token)
        return (user, validated_token)
