"""
Patient domain events.

Payloads are ID-based (no names, phones or e-mails) so they can cross the
Celery broker and be consumed without touching patient PII.
"""
from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

PATIENT_MERGED = "patient.merged"

# Receivers get `event_name` and `payload` keyword arguments.
patient_event = Signal()


def dispatch_patient_event(event_name: str, payload: dict[str, Any]) -> int:
    """
    Deliver an event to in-process receivers. A failing receiver is logged
    and does not stop the others. Returns the number of failed receivers.
    """
    failures = 0
    for receiver, response in patient_event.send_robust(
        sender=None, event_name=event_name, payload=payload
    ):
        if isinstance(response, Exception):
            failures += 1
            logger.error(
                "Receiver %s failed for %s: %s",
                getattr(receiver, "__name__", receiver),
                event_name,
                response,
            )
    return failures


class EventPublisher:
    """
    Fire-and-forget publisher. `publish` never raises.
    """

    def __init__(self, *, asynchronous: bool | None = None):
        if asynchronous is None:
            asynchronous = getattr(settings, "PATIENT_EVENTS_ASYNC", True)
        self.asynchronous = asynchronous

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        try:
            if self.asynchronous:
                from .tasks import deliver_patient_event

                transaction.on_commit(lambda: self._enqueue(deliver_patient_event, event_name, payload))
            else:
                dispatch_patient_event(event_name, payload)
        except Exception as e:
            logger.error("Failed to publish %s: %s", event_name, e)

    @staticmethod
    def _enqueue(task, event_name: str, payload: dict[str, Any]) -> None:
        try:
            task.delay(event_name, payload)
        except Exception as e:
            logger.error("Failed to enqueue %s: %s", event_name, e)
