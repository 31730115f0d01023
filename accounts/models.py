from django.conf import settings
from django.db import models
from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.utils.translation import gettext_lazy as _
import uuid


class CustomUserManager(BaseUserManager):
    """
    Custom user manager where email is the unique identifier for authentication.
    """

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError(_("The Email must be set"))

        email = self.normalize_email(email)

        is_superuser = extra_fields.get("is_superuser", False)
        user_role = extra_fields.get("user_role")

        if not is_superuser and not user_role:
            raise ValueError(_("The User role must be set"))
        if not is_superuser and not extra_fields.get("tenant_id"):
            raise ValueError(_("Staff users must belong to a tenant"))

        user = self.model(email=email, **extra_fields)

        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()

        user.save(using=self._db)
        return user

    def create_superuser(self, email, password, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("is_active", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError(_("Superuser must have is_staff=True."))
        if extra_fields.get("is_superuser") is not True:
            raise ValueError(_("Superuser must have is_superuser=True."))

        # Ensure no user_role is attached to superadmins
        extra_fields.pop("user_role", None)

        return self.create_user(email, password, **extra_fields)


class UserRole(models.TextChoices):
    ADMIN = "admin", _("Admin")
    SECRETARY = "secretary", _("Secretary")
    DENTIST = "dentist", _("Dentist")


class CustomUser(AbstractUser):
    """
    Clinic staff account. Every non-superuser belongs to exactly one tenant,
    and all patient data it can reach is scoped to that tenant.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = None
    email = models.EmailField(_("email address"), unique=True)

    user_role = models.CharField(
        _("User Role"),
        max_length=25,
        choices=UserRole.choices,
        null=True,
        blank=True,
    )

    tenant_id = models.CharField(_("Tenant"), max_length=64, blank=True, default="", db_index=True)
    organization_id = models.CharField(_("Organization"), max_length=64, blank=True, default="")
    clinic_id = models.CharField(_("Clinic"), max_length=64, blank=True, null=True)

    phone_number = models.CharField(_("Phone Number"), max_length=15, blank=True, null=True)

    objects = CustomUserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["first_name", "last_name"]

    class Meta:
        db_table = "custom_user"
        verbose_name = _("user")
        verbose_name_plural = _("users")
        ordering = ["-date_joined"]

    def __str__(self):
        full_name = self.get_full_name() or self.email
        return f"{full_name} ({self.email})"

    @property
    def effective_organization_id(self) -> str:
        # Single-organization tenants do not set organization_id separately.
        return self.organization_id or self.tenant_id


class AuditAction(models.TextChoices):
    PATIENT_CREATED = "PATIENT_CREATED", _("Patient created")
    PATIENT_UPDATED = "PATIENT_UPDATED", _("Patient updated")
    PATIENT_DELETED = "PATIENT_DELETED", _("Patient deleted")
    PATIENT_RESTORED = "PATIENT_RESTORED", _("Patient restored")
    PATIENT_MERGED = "PATIENT_MERGED", _("Patients merged")
    DUPLICATE_SCAN = "DUPLICATE_SCAN", _("Duplicate scan")


class AuditEvent(models.Model):
    """
    Append-only audit trail. Metadata holds identifiers only, never PII.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    tenant_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_events",
    )
    action = models.CharField(max_length=64, db_index=True)
    success = models.BooleanField(null=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "audit_event"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant_id", "action", "created_at"], name="audit_tenant_action_idx"),
        ]

    def __str__(self):
        return f"{self.action} @ {self.created_at:%Y-%m-%d %H:%M}"
