import logging

from django.contrib.auth import get_user_model
from django.utils.translation import gettext_lazy as _
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

logger = logging.getLogger(__name__)

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """
    Read-only profile of a staff account, including its tenant scope.
    """
    user_role_display = serializers.CharField(
        source="get_user_role_display", read_only=True
    )

    class Meta:
        model = User
        fields = (
            "id",
            "first_name",
            "last_name",
            "email",
            "phone_number",
            "user_role",
            "user_role_display",
            "tenant_id",
            "organization_id",
            "clinic_id",
            "date_joined",
            "last_login",
        )
        read_only_fields = fields
        extra_kwargs = {
            "first_name": {"label": _("First Name")},
            "last_name": {"label": _("Last Name")},
            "email": {"label": _("Email Address")},
        }


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Issues a token pair carrying the user's tenant claims.

    Tokens are exposed on the instance for the view to put in cookies,
    never in the response body.
    """
    refresh_token_obj = None
    access_token_obj = None

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["tenant_id"] = user.tenant_id
        token["organization_id"] = user.effective_organization_id
        token["role"] = user.user_role or ""
        return token

    def validate(self, attrs):
        data = super().validate(attrs)

        refresh_token_obj = self.get_token(self.user)
        self.refresh_token_obj = refresh_token_obj
        self.access_token_obj = refresh_token_obj.access_token

        data.pop("refresh", None)
        data.pop("access", None)
        return data
