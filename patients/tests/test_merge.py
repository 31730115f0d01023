"""
Tests for MergeCoordinator: ordering of the writes, tenant isolation,
best-effort reference reassignment and the merged event.
"""
import uuid
from unittest import mock

from django.test import TestCase, override_settings

from patients.events import PATIENT_MERGED, EventPublisher, patient_event
from patients.models import Patient, PatientMergeHistory, PatientRelationship, PatientTimelineEvent
from patients.services.errors import PatientConflictError, PatientNotFoundError, PatientValidationError
from patients.services.merge import MergeCoordinator, MergeRequest
from patients.services.references import RelationshipStore, TimelineStore
from patients.services.store import PatientStore
from patients.tests.helpers import TENANT_A, TENANT_B, make_patient

ACTOR = "actor-1"


def _coordinator(**kwargs):
    kwargs.setdefault("publisher", EventPublisher(asynchronous=False))
    return MergeCoordinator(**kwargs)


class MergeValidationTests(TestCase):
    def test_self_merge_is_rejected_before_any_read(self):
        store = PatientStore()
        coordinator = _coordinator(store=store)
        missing = uuid.uuid4()

        with mock.patch.object(store, "find_by_id") as find_by_id:
            with self.assertRaises(PatientValidationError):
                coordinator.merge(MergeRequest(missing, missing), TENANT_A, ACTOR)

        find_by_id.assert_not_called()

    def test_self_merge_with_string_and_uuid_forms_is_rejected(self):
        patient = make_patient()

        with self.assertRaises(PatientValidationError):
            _coordinator().merge(MergeRequest(str(patient.id), patient.id), TENANT_A, ACTOR)

    def test_malformed_id_is_a_validation_error(self):
        patient = make_patient()

        with self.assertRaises(PatientValidationError) as ctx:
            _coordinator().merge(MergeRequest(patient.id, "not-a-uuid"), TENANT_A, ACTOR)

        self.assertIn("duplicate_id", ctx.exception.errors)

    def test_missing_master_is_not_found(self):
        duplicate = make_patient()

        with self.assertRaises(PatientNotFoundError):
            _coordinator().merge(MergeRequest(uuid.uuid4(), duplicate.id), TENANT_A, ACTOR)

        self.assertFalse(Patient.all_objects.get(pk=duplicate.pk).is_deleted)

    def test_cross_tenant_merge_is_not_found_and_changes_nothing(self):
        master = make_patient(phones=["555-1"])
        foreign = make_patient(tenant_id=TENANT_B, phones=["555-2"])

        with self.assertRaises(PatientNotFoundError):
            _coordinator().merge(MergeRequest(master.id, foreign.id), TENANT_A, ACTOR)

        self.assertEqual(Patient.objects.get(pk=master.pk).version, master.version)
        self.assertFalse(Patient.all_objects.get(pk=foreign.pk).is_deleted)
        self.assertFalse(PatientMergeHistory.objects.exists())


class MergeTests(TestCase):
    def setUp(self):
        self.master = make_patient(
            phones=["555-1"],
            tags=["vip"],
            notes="Patient is anxious",
            medical={"allergies": ["peanuts"]},
        )
        self.duplicate = make_patient(
            first_name="Amma",
            phones=["555-1", "555-2"],
            emails=["ama@example.com"],
            tags=["ortho"],
            notes="Prefers morning slots",
            medical={"allergies": ["latex"]},
        )

    def test_merge_combines_onto_master_and_archives_duplicate(self):
        merged = _coordinator().merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertEqual(merged.pk, self.master.pk)
        self.assertGreater(merged.version, self.master.version)
        self.assertEqual(merged.phone_numbers, ["555-1", "555-2"])
        self.assertEqual(merged.email_addresses, ["ama@example.com"])
        self.assertEqual(set(merged.medical["allergies"]), {"peanuts", "latex"})
        self.assertEqual(merged.tags, ["vip", "ortho"])
        self.assertIn(f"--- Merged from patient {self.duplicate.id} ---", merged.notes)
        self.assertEqual(merged.updated_by, ACTOR)

        with self.assertRaises(PatientNotFoundError):
            PatientStore().find_by_id(self.duplicate.id, TENANT_A)
        tombstone = Patient.all_objects.get(pk=self.duplicate.pk)
        self.assertTrue(tombstone.is_deleted)
        self.assertEqual(tombstone.deleted_by, ACTOR)

    def test_non_merged_fields_of_master_are_kept(self):
        Patient.objects.filter(pk=self.master.pk).update(consent={"sms": True})
        Patient.objects.filter(pk=self.duplicate.pk).update(consent={"sms": False}, gender="male")

        merged = _coordinator().merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertEqual(merged.consent, {"sms": True})
        self.assertEqual(merged.first_name, "Ama")
        self.assertEqual(merged.gender, "unknown")

    def test_master_is_updated_before_duplicate_is_deleted(self):
        store = PatientStore()
        calls = []
        real_update, real_delete = store.update, store.soft_delete

        def update(*args, **kwargs):
            calls.append("update")
            return real_update(*args, **kwargs)

        def soft_delete(*args, **kwargs):
            calls.append("soft_delete")
            return real_delete(*args, **kwargs)

        with mock.patch.object(store, "update", side_effect=update), \
                mock.patch.object(store, "soft_delete", side_effect=soft_delete):
            _coordinator(store=store).merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertEqual(calls, ["update", "soft_delete"])

    def test_writes_are_guarded_by_the_versions_read(self):
        store = PatientStore()

        with mock.patch.object(store, "update", wraps=store.update) as update, \
                mock.patch.object(store, "soft_delete", wraps=store.soft_delete) as soft_delete:
            _coordinator(store=store).merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertEqual(update.call_args.kwargs["expected_version"], self.master.version)
        self.assertEqual(soft_delete.call_args.kwargs["expected_version"], self.duplicate.version)

    def test_concurrent_master_change_surfaces_as_conflict(self):
        store = PatientStore()
        real_find = store.find_by_id

        def find_then_race(patient_id, tenant_id, **kwargs):
            found = real_find(patient_id, tenant_id, **kwargs)
            if found.pk == self.duplicate.pk:
                # Another writer touches the master between read and write.
                Patient.objects.filter(pk=self.master.pk).update(version=found.version + 5)
            return found

        with mock.patch.object(store, "find_by_id", side_effect=find_then_race):
            with self.assertRaises(PatientConflictError):
                _coordinator(store=store).merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertFalse(Patient.all_objects.get(pk=self.duplicate.pk).is_deleted)

    def test_retry_after_crash_between_writes_is_safe(self):
        store = PatientStore()
        coordinator = _coordinator(store=store)

        with mock.patch.object(store, "soft_delete", side_effect=RuntimeError("process died")):
            with self.assertRaises(RuntimeError):
                coordinator.merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        half_merged = Patient.objects.get(pk=self.master.pk)
        self.assertEqual(half_merged.phone_numbers, ["555-1", "555-2"])

        merged = coordinator.merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertEqual(merged.phone_numbers, ["555-1", "555-2"])
        self.assertEqual(merged.tags, ["vip", "ortho"])
        self.assertEqual(merged.notes.count("--- Merged from patient"), 1)
        self.assertTrue(Patient.all_objects.get(pk=self.duplicate.pk).is_deleted)

    def test_merging_an_already_merged_duplicate_is_not_found(self):
        coordinator = _coordinator()
        coordinator.merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        with self.assertRaises(PatientNotFoundError):
            coordinator.merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

    def test_merged_duplicate_cannot_be_restored(self):
        _coordinator().merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        with self.assertRaises(PatientValidationError):
            PatientStore().restore(self.duplicate.id, TENANT_A, ACTOR)

        self.assertTrue(Patient.all_objects.get(pk=self.duplicate.pk).is_deleted)
        self.assertEqual(list(Patient.objects.filter(tenant_id=TENANT_A)), [self.master])

    def test_merge_history_is_recorded(self):
        result = _coordinator().merge_with_details(
            MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR
        )

        history = PatientMergeHistory.objects.get(pk=result.merge_history_id)
        self.assertEqual(history.master_patient_id, self.master.pk)
        self.assertEqual(history.duplicate_patient_id, self.duplicate.pk)
        self.assertEqual(history.merged_by, ACTOR)
        self.assertEqual(history.duplicate_snapshot["first_name"], "Amma")
        self.assertEqual(set(history.fields_updated), {"contacts", "medical", "tags", "notes"})
        self.assertEqual(history.references_reassigned, {"relationships": 0, "timeline": 0})


class MergeReferenceTests(TestCase):
    def setUp(self):
        self.master = make_patient(first_name="Ama")
        self.duplicate = make_patient(first_name="Amma")
        self.parent = make_patient(first_name="Kofi", last_name="Mensah")

    def test_relationships_and_timeline_move_to_master(self):
        relationships = RelationshipStore()
        link = relationships.create(
            tenant_id=TENANT_A,
            patient=self.parent,
            related_patient=self.duplicate,
            relationship_type=PatientRelationship.RelationshipType.PARENT,
        )
        entry = TimelineStore().record(
            tenant_id=TENANT_A, patient_id=self.duplicate.id, event_type="visit", title="Check-up"
        )

        result = _coordinator().merge_with_details(
            MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR
        )

        link.refresh_from_db()
        entry.refresh_from_db()
        self.assertEqual(link.related_patient_id, self.master.pk)
        self.assertEqual(entry.patient_id, self.master.pk)
        self.assertEqual(result.references_reassigned, {"relationships": 1, "timeline": 1})

    def test_link_between_master_and_duplicate_is_removed(self):
        RelationshipStore().create(
            tenant_id=TENANT_A,
            patient=self.master,
            related_patient=self.duplicate,
            relationship_type=PatientRelationship.RelationshipType.SIBLING,
        )

        _coordinator().merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertFalse(PatientRelationship.objects.filter(patient=self.master, related_patient=self.master).exists())
        self.assertFalse(PatientRelationship.objects.exists())

    def test_reassignment_failure_does_not_fail_the_merge(self):
        relationships = RelationshipStore()
        TimelineStore().record(
            tenant_id=TENANT_A, patient_id=self.duplicate.id, event_type="visit", title="Check-up"
        )

        with mock.patch.object(relationships, "reassign_owner", side_effect=RuntimeError("store down")):
            with self.assertLogs("patients.services.merge", level="WARNING") as logs:
                result = _coordinator(relationships=relationships).merge_with_details(
                    MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR
                )

        self.assertIsNone(result.references_reassigned["relationships"])
        self.assertEqual(result.references_reassigned["timeline"], 1)
        self.assertTrue(any("relationships" in line for line in logs.output))
        self.assertTrue(Patient.all_objects.get(pk=self.duplicate.pk).is_deleted)
        self.assertTrue(PatientMergeHistory.objects.filter(pk=result.merge_history_id).exists())

    def test_history_failure_propagates(self):
        store = PatientStore()

        with mock.patch.object(store, "record_merge", side_effect=RuntimeError("history down")):
            with self.assertRaises(RuntimeError):
                _coordinator(store=store).merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)


class MergeEventTests(TestCase):
    def setUp(self):
        self.master = make_patient(first_name="Ama")
        self.duplicate = make_patient(first_name="Amma")
        self.received = []

        def listener(sender, event_name, payload, **kwargs):
            self.received.append((event_name, payload))

        self.listener = listener
        patient_event.connect(listener, dispatch_uid="tests.merge_listener")
        self.addCleanup(patient_event.disconnect, dispatch_uid="tests.merge_listener")

    def test_synchronous_publisher_delivers_merged_event(self):
        _coordinator().merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertEqual(len(self.received), 1)
        event_name, payload = self.received[0]
        self.assertEqual(event_name, PATIENT_MERGED)
        self.assertEqual(payload["master_id"], str(self.master.id))
        self.assertEqual(payload["duplicate_id"], str(self.duplicate.id))
        self.assertEqual(payload["tenant_id"], TENANT_A)
        self.assertEqual(payload["organization_id"], self.master.organization_id)
        self.assertEqual(payload["actor_id"], ACTOR)
        self.assertIn("merged_at", payload)

    def test_merged_event_adds_timeline_entry_on_master(self):
        _coordinator().merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        entry = PatientTimelineEvent.objects.get(patient=self.master, event_type=PATIENT_MERGED)
        self.assertEqual(entry.metadata["duplicate_id"], str(self.duplicate.id))
        self.assertEqual(entry.actor_id, ACTOR)

    @override_settings(PATIENT_EVENTS_ASYNC=True)
    def test_async_publisher_waits_for_commit(self):
        coordinator = MergeCoordinator(publisher=EventPublisher())

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            coordinator.merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)
            self.assertEqual(self.received, [])

        self.assertEqual(len(callbacks), 1)
        self.assertEqual([name for name, _ in self.received], [PATIENT_MERGED])

    def test_failing_receiver_does_not_fail_the_merge(self):
        def broken(sender, event_name, payload, **kwargs):
            raise RuntimeError("receiver down")

        patient_event.connect(broken, dispatch_uid="tests.broken_listener")
        self.addCleanup(patient_event.disconnect, dispatch_uid="tests.broken_listener")

        merged = _coordinator().merge(MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR)

        self.assertEqual(merged.pk, self.master.pk)
        self.assertEqual(len(self.received), 1)

    def test_publisher_errors_are_swallowed(self):
        publisher = EventPublisher(asynchronous=False)

        with mock.patch("patients.events.dispatch_patient_event", side_effect=RuntimeError("bus down")):
            merged = _coordinator(publisher=publisher).merge(
                MergeRequest(self.master.id, self.duplicate.id), TENANT_A, ACTOR
            )

        self.assertTrue(Patient.all_objects.get(pk=self.duplicate.pk).is_deleted)
        self.assertEqual(merged.pk, self.master.pk)
