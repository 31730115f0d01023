from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Gender(models.TextChoices):
    MALE = "male", "Male"
    FEMALE = "female", "Female"
    OTHER = "other", "Other"
    UNKNOWN = "unknown", "Unknown"


class PatientStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"
    ARCHIVED = "archived", "Archived"
    DECEASED = "deceased", "Deceased"


def default_contacts() -> dict:
    return {"phones": [], "emails": [], "addresses": []}


def default_medical() -> dict:
    return {"allergies": [], "medications": [], "conditions": [], "flags": []}


def normalize_contacts(contacts: dict | None) -> dict:
    """
    Strip phone numbers and lowercase e-mail addresses.

    Phone numbers are NOT reformatted: duplicate detection compares them
    exactly as stored.
    """
    contacts = dict(contacts or {})
    phones = []
    for phone in contacts.get("phones") or []:
        phone = dict(phone)
        phone["number"] = (phone.get("number") or "").strip()
        phones.append(phone)
    emails = []
    for email in contacts.get("emails") or []:
        email = dict(email)
        email["address"] = (email.get("address") or "").strip().lower()
        emails.append(email)
    contacts["phones"] = phones
    contacts["emails"] = emails
    contacts["addresses"] = [dict(a) for a in contacts.get("addresses") or []]
    return contacts


class SoftDeleteManager(models.Manager):
    """
    Default manager: filters out soft-deleted records.
    """
    def get_queryset(self):
        return super().get_queryset().filter(is_deleted=False)


class Patient(TimeStampedModel):
    """
    A patient record, stored as one document per patient.

    Contacts, the flat medical summary, tags, consent, communication
    preferences and insurance are JSON sub-documents. `version` is an
    optimistic-concurrency token bumped by every write through
    `PatientStore`.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.CharField(max_length=64, db_index=True)
    organization_id = models.CharField(max_length=64, blank=True, default="")
    clinic_id = models.CharField(max_length=64, blank=True, null=True)
    patient_number = models.CharField(max_length=32, blank=True, null=True)

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    middle_name = models.CharField(max_length=100, blank=True, null=True)
    date_of_birth = models.DateField()
    gender = models.CharField(max_length=10, choices=Gender.choices, default=Gender.UNKNOWN)

    contacts = models.JSONField(default=default_contacts, blank=True)
    medical = models.JSONField(default=default_medical, blank=True)
    tags = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True, default="")

    consent = models.JSONField(default=dict, blank=True)
    communication_preferences = models.JSONField(default=dict, blank=True)
    insurance = models.JSONField(default=list, blank=True)

    status = models.CharField(
        max_length=10,
        choices=PatientStatus.choices,
        default=PatientStatus.ACTIVE,
        db_index=True,
    )
    version = models.PositiveIntegerField(default=1)

    # Soft delete fields (merge leaves a permanent tombstone)
    is_deleted = models.BooleanField(default=False, db_index=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.CharField(max_length=64, blank=True, null=True)

    created_by = models.CharField(max_length=64, blank=True, null=True)
    updated_by = models.CharField(max_length=64, blank=True, null=True)

    objects = SoftDeleteManager()        # Default: excludes deleted
    all_objects = models.Manager()       # Includes deleted records

    class Meta:
        db_table = "patient"
        ordering = ["last_name", "first_name"]
        indexes = [
            models.Index(fields=["tenant_id", "is_deleted"], name="patient_tenant_deleted_idx"),
            models.Index(fields=["tenant_id", "last_name", "date_of_birth"], name="patient_tenant_name_dob_idx"),
        ]
        base_manager_name = "all_objects"
        default_manager_name = "objects"

    def __str__(self):
        return f"{self.first_name} {self.last_name} ({self.id})"

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p).strip()

    @property
    def age(self) -> int | None:
        if not self.date_of_birth:
            return None
        today = timezone.localdate()
        years = today.year - self.date_of_birth.year
        if (today.month, today.day) < (self.date_of_birth.month, self.date_of_birth.day):
            years -= 1
        return max(years, 0)

    @property
    def phone_numbers(self) -> list[str]:
        return [p.get("number") for p in (self.contacts or {}).get("phones", []) if p.get("number")]

    @property
    def email_addresses(self) -> list[str]:
        return [e.get("address") for e in (self.contacts or {}).get("emails", []) if e.get("address")]

    def save(self, *args, **kwargs):
        if kwargs.get("update_fields") is None:
            self.first_name = (self.first_name or "").strip()
            self.last_name = (self.last_name or "").strip()
            if self.middle_name:
                self.middle_name = self.middle_name.strip()
            self.contacts = normalize_contacts(self.contacts)
            self.medical = {**default_medical(), **(self.medical or {})}
        return super().save(*args, **kwargs)


class PatientRelationship(TimeStampedModel):
    """
    Link between two patients of the same tenant (family, guardian, ...).
    """

    class RelationshipType(models.TextChoices):
        PARENT = "parent", "Parent"
        CHILD = "child", "Child"
        SPOUSE = "spouse", "Spouse"
        SIBLING = "sibling", "Sibling"
        GUARDIAN = "guardian", "Guardian"
        OTHER = "other", "Other"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(max_length=64, db_index=True)

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name="relationships")
    related_patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name="related_to")
    relationship_type = models.CharField(max_length=16, choices=RelationshipType.choices)
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "patient_relationship"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.patient_id} -[{self.relationship_type}]-> {self.related_patient_id}"


class PatientTimelineEvent(models.Model):
    """
    Chronological activity entry shown on a patient's timeline.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(max_length=64, db_index=True)

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name="timeline_events")
    event_type = models.CharField(max_length=64)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    actor_id = models.CharField(max_length=64, blank=True, null=True)
    metadata = models.JSONField(default=dict, blank=True)
    occurred_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = "patient_timeline_event"
        ordering = ["-occurred_at"]
        indexes = [
            models.Index(fields=["tenant_id", "patient", "occurred_at"], name="timeline_patient_idx"),
        ]

    def __str__(self):
        return f"{self.event_type} @ {self.occurred_at:%Y-%m-%d %H:%M}"


class PatientMergeHistory(TimeStampedModel):
    """
    Audit trail for patient merge operations.
    Tracks which patients were merged and by whom.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(max_length=64, db_index=True)

    master_patient = models.ForeignKey(
        Patient,
        on_delete=models.SET_NULL,
        null=True,
        related_name="merge_history",
        help_text="The patient record that was kept.",
    )
    duplicate_patient_id = models.UUIDField(
        help_text="UUID of the patient that was merged into the master (now soft-deleted).",
    )
    duplicate_snapshot = models.JSONField(
        default=dict,
        help_text="Snapshot of the duplicate patient at time of merge.",
    )

    merged_by = models.CharField(max_length=64, blank=True, null=True)
    fields_updated = models.JSONField(default=list, help_text="Fields updated on the master patient.")
    references_reassigned = models.JSONField(default=dict, help_text="Downstream references moved to the master.")

    class Meta:
        db_table = "patient_merge_history"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant_id", "master_patient", "created_at"], name="merge_history_master_idx"),
            models.Index(fields=["duplicate_patient_id"], name="merge_history_duplicate_idx"),
        ]

    def __str__(self):
        return f"Merge: {self.duplicate_patient_id} -> {self.master_patient_id}"
