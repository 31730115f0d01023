import uuid
from unittest import mock

from django.test import TestCase

from patients.events import PATIENT_MERGED, EventPublisher, dispatch_patient_event, patient_event
from patients.models import PatientTimelineEvent
from patients.tasks import deliver_patient_event
from patients.tests.helpers import TENANT_A, make_patient


def _payload(master, duplicate_id=None):
    return {
        "master_id": str(master.id),
        "duplicate_id": str(duplicate_id or uuid.uuid4()),
        "tenant_id": TENANT_A,
        "organization_id": master.organization_id,
        "merged_at": "2026-01-01T00:00:00+00:00",
        "actor_id": "actor-1",
    }


class DispatchPatientEventTests(TestCase):
    def setUp(self):
        self.master = make_patient()

    def test_merged_event_is_recorded_on_master_timeline(self):
        payload = _payload(self.master)

        failures = dispatch_patient_event(PATIENT_MERGED, payload)

        self.assertEqual(failures, 0)
        entry = PatientTimelineEvent.objects.get(patient=self.master)
        self.assertEqual(entry.event_type, PATIENT_MERGED)
        self.assertEqual(entry.metadata["duplicate_id"], payload["duplicate_id"])

    def test_other_events_are_ignored_by_timeline_receiver(self):
        dispatch_patient_event("patient.updated", _payload(self.master))

        self.assertFalse(PatientTimelineEvent.objects.exists())

    def test_failing_receiver_is_counted_not_raised(self):
        def broken(sender, event_name, payload, **kwargs):
            raise RuntimeError("receiver down")

        patient_event.connect(broken, dispatch_uid="tests.broken")
        self.addCleanup(patient_event.disconnect, dispatch_uid="tests.broken")

        with self.assertLogs("patients.events", level="ERROR"):
            failures = dispatch_patient_event(PATIENT_MERGED, _payload(self.master))

        self.assertEqual(failures, 1)
        self.assertTrue(PatientTimelineEvent.objects.filter(patient=self.master).exists())

    def test_task_delivers_event(self):
        failures = deliver_patient_event.apply(args=(PATIENT_MERGED, _payload(self.master))).get()

        self.assertEqual(failures, 0)
        self.assertEqual(PatientTimelineEvent.objects.filter(patient=self.master).count(), 1)


class EventPublisherTests(TestCase):
    def setUp(self):
        self.master = make_patient()

    def test_async_publish_is_deferred_until_commit(self):
        publisher = EventPublisher(asynchronous=True)

        with mock.patch.object(deliver_patient_event, "delay") as delay:
            with self.captureOnCommitCallbacks(execute=True):
                publisher.publish(PATIENT_MERGED, _payload(self.master))
                delay.assert_not_called()

        delay.assert_called_once()
        self.assertEqual(delay.call_args.args[0], PATIENT_MERGED)

    def test_nothing_is_sent_while_transaction_is_open(self):
        publisher = EventPublisher(asynchronous=True)

        with mock.patch.object(deliver_patient_event, "delay") as delay:
            with self.captureOnCommitCallbacks(execute=False) as callbacks:
                publisher.publish(PATIENT_MERGED, _payload(self.master))

        self.assertEqual(len(callbacks), 1)
        delay.assert_not_called()

    def test_broker_failure_is_logged_not_raised(self):
        publisher = EventPublisher(asynchronous=True)

        with mock.patch.object(deliver_patient_event, "delay", side_effect=ConnectionError("broker down")):
            with self.assertLogs("patients.events", level="ERROR"):
                with self.captureOnCommitCallbacks(execute=True):
                    publisher.publish(PATIENT_MERGED, _payload(self.master))

    def test_sync_publish_dispatches_inline(self):
        EventPublisher(asynchronous=False).publish(PATIENT_MERGED, _payload(self.master))

        self.assertTrue(PatientTimelineEvent.objects.filter(patient=self.master).exists())
