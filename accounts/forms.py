from django.contrib.auth.forms import UserCreationForm, UserChangeForm
from django.utils.translation import gettext_lazy as _

from .models import CustomUser


STAFF_FIELDS = (
    "email",
    "first_name",
    "last_name",
    "phone_number",
    "user_role",
    "tenant_id",
    "organization_id",
    "clinic_id",
)


class CustomUserCreationForm(UserCreationForm):
    class Meta(UserCreationForm.Meta):
        model = CustomUser
        fields = STAFF_FIELDS + ("is_staff", "is_active")
        labels = {
            "email": _("Email Address"),
            "user_role": _("User Role"),
            "tenant_id": _("Tenant"),
        }


class CustomUserChangeForm(UserChangeForm):
    class Meta:
        model = CustomUser
        fields = STAFF_FIELDS + ("is_active", "is_staff", "groups", "user_permissions")
