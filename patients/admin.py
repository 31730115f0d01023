"""
Django Admin Configuration for Patient records.
"""
from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from .models import (
    Patient,
    PatientMergeHistory,
    PatientRelationship,
    PatientTimelineEvent,
)


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "full_name",
        "tenant_id",
        "date_of_birth",
        "status",
        "version",
        "is_deleted",
        "created_at",
    )
    list_filter = ("status", "is_deleted", "gender", "created_at")
    search_fields = ("id", "tenant_id", "patient_number", "first_name", "last_name")
    ordering = ("-created_at",)
    date_hierarchy = "created_at"
    readonly_fields = (
        "id",
        "version",
        "is_deleted",
        "deleted_at",
        "deleted_by",
        "created_by",
        "updated_by",
        "created_at",
        "updated_at",
    )

    fieldsets = (
        (_("Tenancy"), {"fields": ("id", "tenant_id", "organization_id", "clinic_id", "patient_number")}),
        (_("Personal Information"), {
            "fields": (
                ("first_name", "middle_name", "last_name"),
                "date_of_birth",
                "gender",
            ),
        }),
        (_("Documents"), {
            "fields": ("contacts", "medical", "tags", "notes", "consent", "communication_preferences", "insurance"),
            "classes": ("collapse",),
        }),
        (_("Status"), {"fields": ("status", "version", "is_deleted", "deleted_at", "deleted_by")}),
        (_("Audit"), {
            "fields": ("created_by", "updated_by", "created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    def get_queryset(self, request):
        # Admins need to see tombstones too.
        return Patient.all_objects.all()


@admin.register(PatientRelationship)
class PatientRelationshipAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant_id", "patient", "relationship_type", "related_patient", "created_at")
    list_filter = ("relationship_type",)
    raw_id_fields = ("patient", "related_patient")
    search_fields = ("tenant_id",)


@admin.register(PatientTimelineEvent)
class PatientTimelineEventAdmin(admin.ModelAdmin):
    list_display = ("occurred_at", "tenant_id", "patient", "event_type", "title")
    list_filter = ("event_type",)
    raw_id_fields = ("patient",)
    search_fields = ("tenant_id", "event_type")


@admin.register(PatientMergeHistory)
class PatientMergeHistoryAdmin(admin.ModelAdmin):
    """Read-only: merge history is an audit trail."""

    list_display = ("created_at", "tenant_id", "master_patient", "duplicate_patient_id", "merged_by")
    search_fields = ("tenant_id", "duplicate_patient_id")
    readonly_fields = [f.name for f in PatientMergeHistory._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
