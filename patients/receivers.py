from __future__ import annotations

import logging

from django.dispatch import receiver

from .events import PATIENT_MERGED, patient_event
from .services.references import TimelineStore

logger = logging.getLogger(__name__)


@receiver(patient_event, dispatch_uid="patients.timeline_on_merge")
def record_merge_on_timeline(sender, event_name, payload, **kwargs):
    """
    Append a timeline entry on the surviving patient after a merge.
    """
    if event_name != PATIENT_MERGED:
        return
    TimelineStore().record(
        tenant_id=payload["tenant_id"],
        patient_id=payload["master_id"],
        event_type=PATIENT_MERGED,
        title="Patient record merged",
        description=f"Merged duplicate record {payload['duplicate_id']} into this patient.",
        actor_id=payload.get("actor_id"),
        metadata={"duplicate_id": payload["duplicate_id"], "merged_at": payload.get("merged_at")},
    )
    logger.info("Merge recorded on timeline of patient %s", payload["master_id"])
