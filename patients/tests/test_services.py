"""
Tests for Patient Services.

Tests the tenant-scoped service functions the views call.
"""
from datetime import date
import uuid

from django.test import TestCase

from accounts.models import AuditAction, AuditEvent
from accounts.tenancy import TenantContext
from patients.models import Patient, PatientRelationship, PatientTimelineEvent
from patients.services.errors import PatientNotFoundError, PatientValidationError
from patients.services.patients import (
    add_relationship,
    find_duplicate_groups,
    get_merge_history,
    get_patient,
    list_patients,
    list_timeline,
    merge_patients,
    register_patient,
    restore_patient,
    soft_delete_patient,
    update_patient,
)
from patients.tests.helpers import TENANT_A, TENANT_B, make_patient


CTX_A = TenantContext(tenant_id=TENANT_A, organization_id="org-a", clinic_id="clinic-1", actor_id="actor-a")
CTX_B = TenantContext(tenant_id=TENANT_B, organization_id="org-b", actor_id="actor-b")


class RegisterPatientTests(TestCase):
    """Tests for register_patient service."""

    def test_register_sets_scope_from_context(self):
        patient = register_patient(
            ctx=CTX_A,
            payload={"first_name": "Ama", "last_name": "Mensah", "date_of_birth": date(1990, 5, 17)},
        )

        self.assertEqual(patient.tenant_id, TENANT_A)
        self.assertEqual(patient.organization_id, "org-a")
        self.assertEqual(patient.clinic_id, "clinic-1")
        self.assertEqual(patient.created_by, "actor-a")

    def test_register_records_timeline_and_audit(self):
        patient = register_patient(
            ctx=CTX_A,
            payload={"first_name": "Ama", "last_name": "Mensah", "date_of_birth": date(1990, 5, 17)},
        )

        self.assertTrue(
            PatientTimelineEvent.objects.filter(patient=patient, event_type="patient.created").exists()
        )
        event = AuditEvent.objects.get(action=AuditAction.PATIENT_CREATED)
        self.assertEqual(event.tenant_id, TENANT_A)
        self.assertEqual(event.metadata["patient_id"], str(patient.id))

    def test_register_rejects_unknown_fields(self):
        with self.assertRaises(PatientValidationError):
            register_patient(
                ctx=CTX_A,
                payload={"first_name": "Ama", "last_name": "Mensah", "date_of_birth": date(1990, 5, 17), "version": 9},
            )
        self.assertFalse(Patient.all_objects.exists())


class PatientLifecycleServiceTests(TestCase):
    """Tests for update, soft delete and restore services."""

    def setUp(self):
        self.patient = make_patient()

    def test_update_basic_fields(self):
        updated = update_patient(ctx=CTX_A, patient_id=self.patient.id, payload={"notes": "Prefers mornings"})

        self.assertEqual(updated.notes, "Prefers mornings")
        self.assertEqual(updated.updated_by, "actor-a")
        self.assertEqual(AuditEvent.objects.get(action=AuditAction.PATIENT_UPDATED).metadata["fields"], ["notes"])

    def test_empty_update_is_a_read(self):
        unchanged = update_patient(ctx=CTX_A, patient_id=self.patient.id, payload={})

        self.assertEqual(unchanged.version, self.patient.version)
        self.assertFalse(AuditEvent.objects.exists())

    def test_update_from_other_tenant_is_not_found(self):
        with self.assertRaises(PatientNotFoundError):
            update_patient(ctx=CTX_B, patient_id=self.patient.id, payload={"notes": "x"})

    def test_soft_delete_and_restore(self):
        soft_delete_patient(ctx=CTX_A, patient_id=self.patient.id)

        with self.assertRaises(PatientNotFoundError):
            get_patient(ctx=CTX_A, patient_id=self.patient.id)
        self.assertEqual(list_patients(ctx=CTX_A).count(), 0)
        self.assertEqual(list_patients(ctx=CTX_A, include_deleted=True).count(), 1)

        restored = restore_patient(ctx=CTX_A, patient_id=self.patient.id)

        self.assertFalse(restored.is_deleted)
        self.assertCountEqual(
            AuditEvent.objects.values_list("action", flat=True),
            [AuditAction.PATIENT_DELETED, AuditAction.PATIENT_RESTORED],
        )


class MergeServiceTests(TestCase):
    """Tests for merge_patients and merge history services."""

    def setUp(self):
        self.master = make_patient(phones=["555-1"])
        self.duplicate = make_patient(first_name="Amma", phones=["555-2"])

    def test_merge_is_audited(self):
        result = merge_patients(ctx=CTX_A, master_id=self.master.id, duplicate_id=self.duplicate.id)

        event = AuditEvent.objects.get(action=AuditAction.PATIENT_MERGED)
        self.assertEqual(event.metadata["master_patient_id"], str(self.master.id))
        self.assertEqual(event.metadata["duplicate_patient_id"], str(self.duplicate.id))
        self.assertEqual(event.metadata["merge_history_id"], result.merge_history_id)

    def test_merge_across_tenants_is_not_found(self):
        with self.assertRaises(PatientNotFoundError):
            merge_patients(ctx=CTX_B, master_id=self.master.id, duplicate_id=self.duplicate.id)
        self.assertFalse(AuditEvent.objects.exists())

    def test_history_is_visible_from_tombstone(self):
        merge_patients(ctx=CTX_A, master_id=self.master.id, duplicate_id=self.duplicate.id)

        self.assertEqual(len(get_merge_history(ctx=CTX_A, patient_id=self.duplicate.id)), 1)
        with self.assertRaises(PatientNotFoundError):
            get_merge_history(ctx=CTX_B, patient_id=self.duplicate.id)

    def test_duplicate_scan_is_audited(self):
        Patient.objects.filter(pk=self.duplicate.pk).update(
            contacts={"phones": [{"number": "555-1"}], "emails": [], "addresses": []}
        )

        groups = find_duplicate_groups(ctx=CTX_A)

        self.assertEqual(len(groups), 1)
        self.assertEqual(AuditEvent.objects.get(action=AuditAction.DUPLICATE_SCAN).metadata, {"groups": 1})


class RelationshipServiceTests(TestCase):
    def setUp(self):
        self.child = make_patient(first_name="Esi")
        self.parent = make_patient(first_name="Kofi")

    def test_add_relationship(self):
        link = add_relationship(
            ctx=CTX_A,
            patient_id=self.child.id,
            related_patient_id=self.parent.id,
            relationship_type=PatientRelationship.RelationshipType.PARENT,
        )

        self.assertEqual(link.tenant_id, TENANT_A)
        self.assertEqual(link.related_patient, self.parent)

    def test_relationship_to_unknown_patient_is_not_found(self):
        with self.assertRaises(PatientNotFoundError):
            add_relationship(
                ctx=CTX_A,
                patient_id=self.child.id,
                related_patient_id=uuid.uuid4(),
                relationship_type=PatientRelationship.RelationshipType.PARENT,
            )

    def test_timeline_of_other_tenant_is_not_found(self):
        with self.assertRaises(PatientNotFoundError):
            list_timeline(ctx=CTX_B, patient_id=self.child.id)
