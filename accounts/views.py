import logging
from datetime import datetime, timezone

from django.conf import settings
from django.utils.translation import gettext_lazy as _

from rest_framework import generics, serializers, status
from rest_framework.exceptions import AuthenticationFailed as DRFAuthenticationFailed, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import (
    extend_schema,
    OpenApiResponse,
    inline_serializer,
)

from rest_framework_simplejwt.exceptions import AuthenticationFailed, TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView

from config.exceptions import build_error_envelope

from .serializers import CustomTokenObtainPairSerializer, UserSerializer


logger = logging.getLogger(__name__)


def _seconds_until_exp(jwt_token_obj):
    """
    Seconds until a token's `exp` claim, or None when it cannot be read.
    """
    try:
        exp = jwt_token_obj.get("exp", None)
        if exp is None:
            return None
        exp_ts = exp.timestamp() if hasattr(exp, "timestamp") else int(exp)
        now_ts = datetime.now(timezone.utc).timestamp()
        return max(int(exp_ts - now_ts), 0)
    except (TypeError, ValueError):
        return None


def set_auth_cookies(response, access_token_obj, refresh_token_obj):
    """
    Sets `access_token` and `refresh_token` as HttpOnly cookies whose
    lifetimes follow the tokens' own `exp` claims.
    """
    access_max = _seconds_until_exp(access_token_obj)
    refresh_max = _seconds_until_exp(refresh_token_obj)

    if access_max is None:
        access_max = int(api_settings.ACCESS_TOKEN_LIFETIME.total_seconds())
    if refresh_max is None:
        refresh_max = int(api_settings.REFRESH_TOKEN_LIFETIME.total_seconds())

    secure_flag = getattr(settings, "JWT_COOKIE_SECURE", True)
    samesite = getattr(settings, "JWT_COOKIE_SAMESITE", "Lax")
    cookie_domain = getattr(settings, "SESSION_COOKIE_DOMAIN", None)

    for key, value, max_age in (
        ("access_token", access_token_obj, access_max),
        ("refresh_token", refresh_token_obj, refresh_max),
    ):
        response.set_cookie(
            key=key,
            value=str(value),
            httponly=True,
            secure=secure_flag,
            samesite=samesite,
            max_age=max_age,
            domain=cookie_domain,
            path="/",
        )


def delete_auth_cookies(response):
    cookie_domain = getattr(settings, "SESSION_COOKIE_DOMAIN", None)
    for name in ("access_token", "refresh_token"):
        response.delete_cookie(name, domain=cookie_domain, path="/")


@extend_schema(
    summary="Obtain JWT tokens via cookies",
    description=(
        "Authenticates the user and sets JWT access and refresh tokens as HttpOnly cookies. "
        "Tokens carry the user's tenant claims and are NOT returned in the response body."
    ),
    request=inline_serializer(
        name="TokenObtainPairRequest",
        fields={
            "email": serializers.EmailField(),
            "password": serializers.CharField(style={"input_type": "password"}),
        },
    ),
    responses={
        200: OpenApiResponse(description="Authentication successful. Tokens set in cookies."),
        400: OpenApiResponse(description="Invalid credentials."),
    },
    tags=["Authentication"],
)
class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        try:
            serializer.is_valid(raise_exception=True)
        except (AuthenticationFailed, DRFAuthenticationFailed):
            raise ValidationError({"detail": _("Invalid credentials.")})

        response = Response(
            {"success": True, "message": "Authentication successful. Tokens set in cookies."},
            status=status.HTTP_200_OK,
        )
        set_auth_cookies(response, serializer.access_token_obj, serializer.refresh_token_obj)
        logger.info("User %s logged in (tenant=%s).", serializer.user.id, serializer.user.tenant_id)
        return response


@extend_schema(
    summary="Refresh JWT access token",
    description="Issues a new access token from the refresh token stored in HttpOnly cookies.",
    request=None,
    responses={
        200: OpenApiResponse(description="Access token refreshed. Tokens set in cookies."),
        400: OpenApiResponse(description="Refresh token not found."),
        401: OpenApiResponse(description="Invalid or expired refresh token."),
    },
    tags=["Authentication"],
)
class CustomTokenRefreshView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request, *args, **kwargs):
        refresh_token_str = request.COOKIES.get("refresh_token")
        if not refresh_token_str:
            raise ValidationError({"detail": _("Refresh token not found.")})

        try:
            refresh_token = RefreshToken(refresh_token_str)
        except TokenError as e:
            logger.warning("JWT refresh rejected: %s", e)
            response = Response(
                build_error_envelope(
                    request=request,
                    code="token_invalid",
                    message=str(_("Token is invalid or expired. Please log in again.")),
                ),
                status=status.HTTP_401_UNAUTHORIZED,
            )
            delete_auth_cookies(response)
            return response

        response = Response(
            {"success": True, "message": "Access token refreshed successfully."},
            status=status.HTTP_200_OK,
        )
        set_auth_cookies(response, refresh_token.access_token, refresh_token)
        logger.info("Access token refreshed for user %s.", refresh_token.get("user_id"))
        return response


@extend_schema(
    summary="Logout",
    description="Deletes the authentication cookies.",
    request=None,
    responses={200: OpenApiResponse(description="Logged out successfully.")},
    tags=["Authentication"],
)
class LogoutView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        response = Response({"success": True, "message": "Logged out successfully."})
        delete_auth_cookies(response)
        return response


@extend_schema(
    summary="Current user profile",
    description="Retrieve the profile (including tenant scope) of the authenticated user.",
    responses={
        200: OpenApiResponse(description="User data retrieved successfully.", response=UserSerializer),
        401: OpenApiResponse(description="Authentication credentials were not provided."),
    },
    tags=["Authentication"],
)
class CurrentUserView(generics.RetrieveAPIView):
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated]

    def get_object(self):
        return self.request.user

    def retrieve(self, request, *args, **kwargs):
        serializer = self.get_serializer(self.get_object())
        return Response({"success": True, "data": serializer.data})
