"""
Celery tasks for patient domain events.
"""
from __future__ import annotations

import logging

from celery import shared_task

from .events import dispatch_patient_event

logger = logging.getLogger(__name__)


@shared_task(ignore_result=True)
def deliver_patient_event(event_name: str, payload: dict) -> int:
    """
    Deliver a patient event to in-process receivers on a worker.

    Returns the number of receivers that failed.
    """
    failures = dispatch_patient_event(event_name, payload)
    logger.info(
        "Delivered %s for tenant %s (%d receiver failure(s))",
        event_name,
        payload.get("tenant_id"),
        failures,
    )
    return failures
