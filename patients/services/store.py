from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Optional
from uuid import UUID

from django.conf import settings
from django.db import connections
from django.db.models import Count, F, QuerySet
from django.db.models.functions import Lower, Substr
from django.utils import timezone

from ..models import Patient, PatientMergeHistory, PatientStatus, default_medical, normalize_contacts
from .errors import PatientConflictError, PatientNotFoundError, PatientValidationError

logger = logging.getLogger(__name__)


class MatchKey:
    PHONE = "phone"
    EMAIL = "email"
    NAME_DOB = "name_dob"


@dataclass(frozen=True)
class CandidateGroup:
    """
    Patients sharing one match key value, before hydration.
    """
    key: str
    member_ids: tuple[str, ...]


# Fields a caller may write through `PatientStore.update`.
UPDATABLE_FIELDS = frozenset({
    "patient_number",
    "clinic_id",
    "first_name",
    "last_name",
    "middle_name",
    "date_of_birth",
    "gender",
    "contacts",
    "medical",
    "tags",
    "notes",
    "consent",
    "communication_preferences",
    "insurance",
    "status",
})


def _coerce_id(patient_id: Any) -> Optional[UUID]:
    if isinstance(patient_id, UUID):
        return patient_id
    try:
        return UUID(str(patient_id))
    except (TypeError, ValueError):
        return None


def patient_snapshot(patient: Patient) -> dict[str, Any]:
    """
    JSON-safe copy of a patient record, kept on merge history.
    """
    return {
        "id": str(patient.id),
        "patient_number": patient.patient_number,
        "first_name": patient.first_name,
        "middle_name": patient.middle_name,
        "last_name": patient.last_name,
        "date_of_birth": patient.date_of_birth.isoformat() if patient.date_of_birth else None,
        "gender": patient.gender,
        "contacts": patient.contacts,
        "medical": patient.medical,
        "tags": patient.tags,
        "notes": patient.notes,
        "status": patient.status,
        "version": patient.version,
        "created_at": patient.created_at.isoformat() if patient.created_at else None,
    }


class PatientStore:
    """
    Tenant-scoped persistence for patient documents.

    Every query filters on `tenant_id`; a record owned by another tenant is
    reported exactly like a missing one. Writes bump `version` atomically
    and, when `expected_version` is given, only apply if the stored version
    still matches.
    """

    def __init__(self, *, name_prefix_length: Optional[int] = None):
        self.name_prefix_length = name_prefix_length or getattr(settings, "DUPLICATE_NAME_PREFIX_LENGTH", 3)

    # -------------------------
    # Reads
    # -------------------------

    def scoped(self, tenant_id: str, *, include_deleted: bool = False) -> QuerySet:
        manager = Patient.all_objects if include_deleted else Patient.objects
        return manager.filter(tenant_id=tenant_id)

    def find_by_id(self, patient_id: Any, tenant_id: str, *, include_deleted: bool = False) -> Patient:
        pk = _coerce_id(patient_id)
        if pk is None:
            raise PatientNotFoundError(patient_id)
        try:
            return self.scoped(tenant_id, include_deleted=include_deleted).get(pk=pk)
        except Patient.DoesNotExist:
            raise PatientNotFoundError(patient_id)

    def find_by_phone(self, number: str, tenant_id: str) -> list[Patient]:
        number = (number or "").strip()
        if not number:
            return []
        qs = self.scoped(tenant_id)
        if connections[qs.db].features.supports_json_field_contains:
            return list(qs.filter(contacts__phones__contains=[{"number": number}]))
        return [p for p in qs.iterator() if number in p.phone_numbers]

    def find_by_email(self, address: str, tenant_id: str) -> list[Patient]:
        address = (address or "").strip().lower()
        if not address:
            return []
        qs = self.scoped(tenant_id)
        if connections[qs.db].features.supports_json_field_contains:
            return list(qs.filter(contacts__emails__contains=[{"address": address}]))
        return [p for p in qs.iterator() if address in p.email_addresses]

    def find_many(self, patient_ids: Iterable[Any], tenant_id: str) -> list[Patient]:
        """
        Hydrate live members, preserving the order of `patient_ids`.
        """
        ids = [pk for pk in (_coerce_id(i) for i in patient_ids) if pk is not None]
        if not ids:
            return []
        by_id = {p.id: p for p in self.scoped(tenant_id).filter(pk__in=ids)}
        return [by_id[pk] for pk in dict.fromkeys(ids) if pk in by_id]

    # -------------------------
    # Writes
    # -------------------------

    def create(
        self,
        tenant_id: str,
        fields: dict[str, Any],
        *,
        organization_id: str = "",
        actor_id: Optional[str] = None,
    ) -> Patient:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise PatientValidationError({f: ["This field cannot be set."] for f in sorted(unknown)})
        patient = Patient(
            tenant_id=tenant_id,
            organization_id=organization_id,
            created_by=actor_id,
            updated_by=actor_id,
            **fields,
        )
        patient.save()
        return patient

    def _prepare(self, fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise PatientValidationError({f: ["This field cannot be updated."] for f in sorted(unknown)})
        data = dict(fields)
        if "contacts" in data:
            data["contacts"] = normalize_contacts(data["contacts"])
        if "medical" in data:
            data["medical"] = {**default_medical(), **(data["medical"] or {})}
        for name in ("first_name", "last_name"):
            if isinstance(data.get(name), str):
                data[name] = data[name].strip()
        return data

    def _conditional_update(
        self,
        qs: QuerySet,
        patient_id: Any,
        tenant_id: str,
        values: dict[str, Any],
        expected_version: Optional[int],
        *,
        include_deleted: bool = False,
    ) -> Patient:
        if expected_version is not None:
            qs = qs.filter(version=expected_version)
        rows = qs.update(**values, updated_at=timezone.now(), version=F("version") + 1)
        if rows == 0:
            # Not found wins over conflict; raises PatientNotFoundError if gone.
            current = self.find_by_id(patient_id, tenant_id, include_deleted=include_deleted)
            logger.warning(
                "Version conflict on patient %s (expected=%s, current=%s)",
                patient_id,
                expected_version,
                current.version,
            )
            raise PatientConflictError(patient_id, expected_version)
        return self.find_by_id(patient_id, tenant_id, include_deleted=True)

    def update(
        self,
        patient_id: Any,
        tenant_id: str,
        fields: dict[str, Any],
        *,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Patient:
        pk = _coerce_id(patient_id)
        if pk is None:
            raise PatientNotFoundError(patient_id)
        values = self._prepare(fields)
        values["updated_by"] = actor_id
        return self._conditional_update(
            self.scoped(tenant_id).filter(pk=pk), patient_id, tenant_id, values, expected_version
        )

    def soft_delete(
        self,
        patient_id: Any,
        tenant_id: str,
        actor_id: Optional[str],
        *,
        expected_version: Optional[int] = None,
    ) -> Patient:
        pk = _coerce_id(patient_id)
        if pk is None:
            raise PatientNotFoundError(patient_id)
        values = {
            "is_deleted": True,
            "deleted_at": timezone.now(),
            "deleted_by": actor_id,
            "status": PatientStatus.ARCHIVED,
            "updated_by": actor_id,
        }
        return self._conditional_update(
            self.scoped(tenant_id).filter(pk=pk), patient_id, tenant_id, values, expected_version
        )

    def restore(self, patient_id: Any, tenant_id: str, actor_id: Optional[str]) -> Patient:
        patient = self.find_by_id(patient_id, tenant_id, include_deleted=True)
        if not patient.is_deleted:
            raise PatientValidationError({"detail": ["Patient is not deleted."]})
        # A merged duplicate stays a tombstone; the master is the live identity.
        if PatientMergeHistory.objects.filter(tenant_id=tenant_id, duplicate_patient_id=patient.pk).exists():
            raise PatientValidationError({"detail": ["Merged records cannot be restored."]})
        values = {
            "is_deleted": False,
            "deleted_at": None,
            "deleted_by": None,
            "status": PatientStatus.ACTIVE,
            "updated_by": actor_id,
        }
        qs = self.scoped(tenant_id, include_deleted=True).filter(pk=patient.pk, is_deleted=True)
        return self._conditional_update(
            qs, patient_id, tenant_id, values, patient.version, include_deleted=True
        )

    # -------------------------
    # Duplicate candidates
    # -------------------------

    def aggregate_duplicate_candidates(self, tenant_id: str, match_key: str) -> list[CandidateGroup]:
        """
        Group active patients of a tenant by one match key and return the
        keys held by two or more distinct patients.

        Contact values are compared exactly as stored (no phone number
        normalisation).
        """
        if match_key == MatchKey.PHONE:
            return self._contact_candidates(tenant_id, "phones", "number")
        if match_key == MatchKey.EMAIL:
            return self._contact_candidates(tenant_id, "emails", "address")
        if match_key == MatchKey.NAME_DOB:
            return self._name_dob_candidates(tenant_id)
        raise ValueError(f"Unknown match key: {match_key}")

    def _contact_candidates(self, tenant_id: str, collection: str, value_key: str) -> list[CandidateGroup]:
        if connections[self.scoped(tenant_id).db].vendor == "postgresql":
            return self._contact_candidates_jsonb(tenant_id, collection, value_key)
        return self._contact_candidates_python(tenant_id, collection, value_key)

    def _contact_candidates_jsonb(self, tenant_id: str, collection: str, value_key: str) -> list[CandidateGroup]:
        """
        Unwind the contact array with `jsonb_array_elements` and group by
        value in the database. Members are ordered by creation time.
        """
        connection = connections[self.scoped(tenant_id).db]
        table = connection.ops.quote_name(Patient._meta.db_table)
        sql = f"""
            SELECT value, array_agg(pid ORDER BY created_at, pid)
            FROM (
                SELECT DISTINCT p.id::text AS pid, p.created_at, elem ->> %s AS value
                FROM {table} p
                CROSS JOIN LATERAL jsonb_array_elements(
                    CASE WHEN jsonb_typeof(p.contacts -> %s) = 'array'
                         THEN p.contacts -> %s ELSE '[]'::jsonb END
                ) AS elem
                WHERE p.tenant_id = %s AND p.is_deleted = false
            ) unwound
            WHERE value IS NOT NULL AND value <> ''
            GROUP BY value
            HAVING count(*) > 1
            ORDER BY min(created_at), value
        """
        with connection.cursor() as cursor:
            cursor.execute(sql, [value_key, collection, collection, tenant_id])
            rows = cursor.fetchall()
        return [CandidateGroup(key=value, member_ids=tuple(ids)) for value, ids in rows]

    def _contact_candidates_python(self, tenant_id: str, collection: str, value_key: str) -> list[CandidateGroup]:
        buckets: dict[str, list[str]] = defaultdict(list)
        rows = self.scoped(tenant_id).order_by("created_at", "id").values_list("id", "contacts")
        for pk, contacts in rows:
            seen = set()
            for entry in (contacts or {}).get(collection) or []:
                value = (entry or {}).get(value_key)
                if not value or value in seen:
                    continue
                seen.add(value)
                buckets[value].append(str(pk))
        return [
            CandidateGroup(key=value, member_ids=tuple(ids))
            for value, ids in buckets.items()
            if len(ids) > 1
        ]

    def _name_dob_candidates(self, tenant_id: str) -> list[CandidateGroup]:
        keyed = self.scoped(tenant_id).annotate(
            last_key=Lower("last_name"),
            first_key=Lower(Substr("first_name", 1, self.name_prefix_length)),
        )
        buckets = (
            keyed.order_by()
            .values("last_key", "first_key", "date_of_birth")
            .annotate(n=Count("id"))
            .filter(n__gt=1)
            .order_by("last_key", "first_key", "date_of_birth")
        )
        groups = []
        for bucket in buckets:
            member_ids = keyed.filter(
                last_key=bucket["last_key"],
                first_key=bucket["first_key"],
                date_of_birth=bucket["date_of_birth"],
            ).order_by("created_at", "id").values_list("id", flat=True)
            key = f"{bucket['last_key']}|{bucket['first_key']}|{bucket['date_of_birth'].isoformat()}"
            groups.append(CandidateGroup(key=key, member_ids=tuple(str(pk) for pk in member_ids)))
        return groups

    # -------------------------
    # Merge history
    # -------------------------

    def record_merge(
        self,
        *,
        tenant_id: str,
        master: Patient,
        duplicate: Patient,
        actor_id: Optional[str],
        fields_updated: list[str],
        references_reassigned: dict[str, Any],
    ) -> PatientMergeHistory:
        return PatientMergeHistory.objects.create(
            tenant_id=tenant_id,
            master_patient=master,
            duplicate_patient_id=duplicate.id,
            duplicate_snapshot=patient_snapshot(duplicate),
            merged_by=actor_id,
            fields_updated=fields_updated,
            references_reassigned=references_reassigned,
        )

    def merge_history(self, patient_id: Any, tenant_id: str) -> list[PatientMergeHistory]:
        """Merges where the patient was master or duplicate, newest first."""
        pk = _coerce_id(patient_id)
        if pk is None:
            return []
        qs = PatientMergeHistory.objects.filter(tenant_id=tenant_id)
        as_master = list(qs.filter(master_patient_id=pk))
        as_duplicate = list(qs.filter(duplicate_patient_id=pk))
        history = as_master + as_duplicate
        history.sort(key=lambda h: h.created_at, reverse=True)
        return history
