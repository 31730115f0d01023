from __future__ import annotations

import logging
from typing import Any, Optional

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from ..models import PatientRelationship, PatientTimelineEvent

logger = logging.getLogger(__name__)


class RelationshipStore:
    """
    Patient-to-patient links. Both ends always belong to the same tenant.
    """

    def list_for_patient(self, patient_id: Any, tenant_id: str):
        return (
            PatientRelationship.objects.filter(tenant_id=tenant_id)
            .filter(Q(patient_id=patient_id) | Q(related_patient_id=patient_id))
            .select_related("patient", "related_patient")
        )

    def create(self, *, tenant_id: str, patient, related_patient, relationship_type: str, notes: str = ""):
        return PatientRelationship.objects.create(
            tenant_id=tenant_id,
            patient=patient,
            related_patient=related_patient,
            relationship_type=relationship_type,
            notes=notes,
        )

    @transaction.atomic
    def reassign_owner(self, old_patient_id: Any, new_patient_id: Any, tenant_id: str) -> int:
        """
        Repoint every link touching `old_patient_id` to `new_patient_id`.

        Links between the two patients would become self-links and are
        removed instead. Returns the number of rows touched.
        """
        qs = PatientRelationship.objects.filter(tenant_id=tenant_id)
        removed, _ = qs.filter(
            Q(patient_id=old_patient_id, related_patient_id=new_patient_id)
            | Q(patient_id=new_patient_id, related_patient_id=old_patient_id)
        ).delete()
        now = timezone.now()
        owned = qs.filter(patient_id=old_patient_id).update(patient_id=new_patient_id, updated_at=now)
        related = qs.filter(related_patient_id=old_patient_id).update(
            related_patient_id=new_patient_id, updated_at=now
        )
        return removed + owned + related


class TimelineStore:
    """
    Append-only patient activity timeline.
    """

    def list_for_patient(self, patient_id: Any, tenant_id: str):
        return PatientTimelineEvent.objects.filter(tenant_id=tenant_id, patient_id=patient_id)

    def record(
        self,
        *,
        tenant_id: str,
        patient_id: Any,
        event_type: str,
        title: str,
        description: str = "",
        actor_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PatientTimelineEvent:
        return PatientTimelineEvent.objects.create(
            tenant_id=tenant_id,
            patient_id=patient_id,
            event_type=event_type,
            title=title,
            description=description,
            actor_id=actor_id,
            metadata=metadata or {},
        )

    def reassign_owner(self, old_patient_id: Any, new_patient_id: Any, tenant_id: str) -> int:
        return PatientTimelineEvent.objects.filter(
            tenant_id=tenant_id, patient_id=old_patient_id
        ).update(patient_id=new_patient_id)
