# patients/serializers.py

from __future__ import annotations

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from .models import (
    Gender,
    Patient,
    PatientMergeHistory,
    PatientRelationship,
    PatientStatus,
    PatientTimelineEvent,
)


# ----------------------------
# Embedded documents
# ----------------------------

class PhoneSerializer(serializers.Serializer):
    type = serializers.CharField(required=False, default="mobile", max_length=20)
    number = serializers.CharField(max_length=32)
    is_primary = serializers.BooleanField(required=False, default=False)
    is_active = serializers.BooleanField(required=False, default=True)

    def validate_number(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_("Phone number cannot be blank."))
        return value


class EmailSerializer(serializers.Serializer):
    type = serializers.CharField(required=False, default="personal", max_length=20)
    address = serializers.EmailField()
    is_primary = serializers.BooleanField(required=False, default=False)
    is_verified = serializers.BooleanField(required=False, default=False)

    def validate_address(self, value):
        return value.strip().lower()


class AddressSerializer(serializers.Serializer):
    street = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)
    postal_code = serializers.CharField(required=False, allow_blank=True, default="", max_length=20)
    country = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)
    is_primary = serializers.BooleanField(required=False, default=False)


class ContactsSerializer(serializers.Serializer):
    phones = PhoneSerializer(many=True, required=False, default=list)
    emails = EmailSerializer(many=True, required=False, default=list)
    addresses = AddressSerializer(many=True, required=False, default=list)


class MedicalSummarySerializer(serializers.Serializer):
    """Flat medical summary (the structured alerts form is not part of this API)."""
    allergies = serializers.ListField(child=serializers.CharField(max_length=255), required=False, default=list)
    medications = serializers.ListField(child=serializers.CharField(max_length=255), required=False, default=list)
    conditions = serializers.ListField(child=serializers.CharField(max_length=255), required=False, default=list)
    flags = serializers.ListField(child=serializers.CharField(max_length=255), required=False, default=list)


# ----------------------------
# Patient serializers
# ----------------------------

class PatientMiniSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = Patient
        fields = ("id", "patient_number", "full_name", "date_of_birth", "status")
        read_only_fields = fields


class PatientReadSerializer(serializers.ModelSerializer):
    """
    Full patient document.
    """
    age = serializers.IntegerField(read_only=True)
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = Patient
        fields = (
            "id",
            "tenant_id",
            "organization_id",
            "clinic_id",
            "patient_number",
            "first_name",
            "middle_name",
            "last_name",
            "full_name",
            "date_of_birth",
            "age",
            "gender",
            "contacts",
            "medical",
            "tags",
            "notes",
            "consent",
            "communication_preferences",
            "insurance",
            "status",
            "version",
            "is_deleted",
            "deleted_at",
            "deleted_by",
            "created_by",
            "updated_by",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class PatientWriteSerializer(serializers.Serializer):
    """
    Create/update input. Tenant, organization and audit fields always come
    from the authenticated user, never from the body.

    On update, `version` (optional) is the version the client last read;
    the write is rejected with 409 if the record has changed since.
    """
    patient_number = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=32)
    clinic_id = serializers.CharField(required=False, allow_null=True, max_length=64)
    first_name = serializers.CharField(max_length=100)
    middle_name = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=100)
    last_name = serializers.CharField(max_length=100)
    date_of_birth = serializers.DateField()
    gender = serializers.ChoiceField(choices=Gender.choices, required=False, default=Gender.UNKNOWN)
    contacts = ContactsSerializer(required=False)
    medical = MedicalSummarySerializer(required=False)
    tags = serializers.ListField(child=serializers.CharField(max_length=50), required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    consent = serializers.DictField(required=False)
    communication_preferences = serializers.DictField(required=False)
    insurance = serializers.ListField(child=serializers.DictField(), required=False)
    status = serializers.ChoiceField(choices=PatientStatus.choices, required=False)

    version = serializers.IntegerField(required=False, min_value=1, write_only=True)

    def validate_first_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_("First name cannot be blank."))
        return value

    def validate_last_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_("Last name cannot be blank."))
        return value

    def validate_tags(self, value):
        return list(dict.fromkeys(t.strip() for t in value if t and t.strip()))

    def validate_status(self, value):
        if value == PatientStatus.ARCHIVED:
            raise serializers.ValidationError(_("Archive a patient by deleting it."))
        return value

    def to_service_payload(self) -> tuple[dict, int | None]:
        data = dict(self.validated_data)
        expected_version = data.pop("version", None)
        for name in ("contacts", "medical"):
            if name in data:
                data[name] = _plain(data[name])
        return data, expected_version


def _plain(value):
    """Nested serializer output as plain dicts/lists for JSON storage."""
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class PatientMergeInputSerializer(serializers.Serializer):
    """
    Body of a merge request. camelCase keys (`masterId`, `duplicateId`)
    are accepted as well.
    """
    master_id = serializers.UUIDField()
    duplicate_id = serializers.UUIDField()

    def to_internal_value(self, data):
        if hasattr(data, "get"):
            data = {
                "master_id": data.get("master_id", data.get("masterId")),
                "duplicate_id": data.get("duplicate_id", data.get("duplicateId")),
            }
        return super().to_internal_value(data)

    def validate(self, attrs):
        if attrs["master_id"] == attrs["duplicate_id"]:
            raise serializers.ValidationError(
                {"duplicate_id": _("Cannot merge a patient with itself.")}
            )
        return attrs


# ----------------------------
# Duplicates / merge output
# ----------------------------

class DuplicateGroupSerializer(serializers.Serializer):
    match_type = serializers.CharField()
    patient_ids = serializers.ListField(child=serializers.CharField())
    patients = PatientReadSerializer(many=True)


class DuplicateMatchSerializer(serializers.Serializer):
    patient = PatientReadSerializer()
    reasons = serializers.ListField(child=serializers.CharField())


class PatientMergeHistorySerializer(serializers.ModelSerializer):
    master_patient = PatientMiniSerializer(read_only=True)

    class Meta:
        model = PatientMergeHistory
        fields = (
            "id",
            "master_patient",
            "duplicate_patient_id",
            "duplicate_snapshot",
            "merged_by",
            "fields_updated",
            "references_reassigned",
            "created_at",
        )
        read_only_fields = fields


# ----------------------------
# Relationships / timeline
# ----------------------------

class PatientRelationshipSerializer(serializers.ModelSerializer):
    patient = PatientMiniSerializer(read_only=True)
    related_patient = PatientMiniSerializer(read_only=True)

    class Meta:
        model = PatientRelationship
        fields = ("id", "patient", "related_patient", "relationship_type", "notes", "created_at")
        read_only_fields = fields


class PatientRelationshipInputSerializer(serializers.Serializer):
    related_patient_id = serializers.UUIDField()
    relationship_type = serializers.ChoiceField(choices=PatientRelationship.RelationshipType.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PatientTimelineEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = PatientTimelineEvent
        fields = ("id", "event_type", "title", "description", "actor_id", "metadata", "occurred_at")
        read_only_fields = fields
