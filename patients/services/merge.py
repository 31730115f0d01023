from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from ..events import PATIENT_MERGED, EventPublisher
from ..models import Patient
from .duplicates import DuplicateDetector, DuplicateGroup
from .errors import PatientValidationError
from .references import RelationshipStore, TimelineStore
from .resolver import MergeResolver
from .store import PatientStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeRequest:
    master_id: Any
    duplicate_id: Any


@dataclass
class MergeResult:
    master: Patient
    duplicate: Patient
    fields_updated: list[str]
    references_reassigned: dict[str, Any]
    merge_history_id: Optional[str] = None


def _parse_id(value: Any, field: str) -> UUID:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except (TypeError, ValueError):
        raise PatientValidationError({field: ["Must be a valid UUID."]})


class MergeCoordinator:
    """
    Folds a duplicate patient into a master patient.

    The master is updated before the duplicate is soft-deleted, and the two
    writes are separate store calls. Each is guarded by the version read in
    the same call, so a concurrent change surfaces as a retryable
    `PatientConflictError` instead of a lost update. If the process dies
    between the two writes, the master already holds the merged data and
    re-running the merge is safe.
    """

    def __init__(
        self,
        store: Optional[PatientStore] = None,
        resolver: Optional[MergeResolver] = None,
        relationships: Optional[RelationshipStore] = None,
        timeline: Optional[TimelineStore] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.store = store or PatientStore()
        self.resolver = resolver or MergeResolver()
        self.relationships = relationships or RelationshipStore()
        self.timeline = timeline or TimelineStore()
        self.publisher = publisher or EventPublisher()

    def merge(self, request: MergeRequest, tenant_id: str, actor_id: Optional[str]) -> Patient:
        return self.merge_with_details(request, tenant_id, actor_id).master

    def merge_with_details(self, request: MergeRequest, tenant_id: str, actor_id: Optional[str]) -> MergeResult:
        master_id = _parse_id(request.master_id, "master_id")
        duplicate_id = _parse_id(request.duplicate_id, "duplicate_id")
        if master_id == duplicate_id:
            raise PatientValidationError({"duplicate_id": ["Cannot merge a patient with itself."]})

        master = self.store.find_by_id(master_id, tenant_id)
        duplicate = self.store.find_by_id(duplicate_id, tenant_id)

        merged = self.resolver.combine(master, duplicate)
        fields_updated = merged.changed_fields(master)

        updated_master = self.store.update(
            master.id,
            tenant_id,
            merged.as_update(),
            actor_id=actor_id,
            expected_version=master.version,
        )
        self.store.soft_delete(duplicate.id, tenant_id, actor_id, expected_version=duplicate.version)

        references = self._reassign_references(duplicate.id, master.id, tenant_id)

        history = self.store.record_merge(
            tenant_id=tenant_id,
            master=updated_master,
            duplicate=duplicate,
            actor_id=actor_id,
            fields_updated=fields_updated,
            references_reassigned=references,
        )

        self.publisher.publish(
            PATIENT_MERGED,
            {
                "master_id": str(master.id),
                "duplicate_id": str(duplicate.id),
                "tenant_id": tenant_id,
                "organization_id": master.organization_id,
                "merged_at": timezone.now().isoformat(),
                "actor_id": actor_id,
            },
        )

        logger.info(
            "Patient %s merged into %s (tenant=%s, fields=%s)",
            duplicate.id,
            master.id,
            tenant_id,
            ",".join(fields_updated) or "-",
        )
        return MergeResult(
            master=updated_master,
            duplicate=duplicate,
            fields_updated=fields_updated,
            references_reassigned=references,
            merge_history_id=str(history.id),
        )

    def _reassign_references(self, old_id: Any, new_id: Any, tenant_id: str) -> dict[str, Any]:
        """
        Best-effort: a failing downstream store is logged and skipped.
        """
        moved: dict[str, Any] = {}
        for name, target in (("relationships", self.relationships), ("timeline", self.timeline)):
            try:
                with transaction.atomic():
                    moved[name] = target.reassign_owner(old_id, new_id, tenant_id)
            except Exception as e:
                logger.warning(
                    "Reassigning %s from patient %s to %s failed: %s",
                    name,
                    old_id,
                    new_id,
                    e,
                )
                moved[name] = None
        return moved

    def find_duplicates(self, tenant_id: str) -> list[DuplicateGroup]:
        return DuplicateDetector(self.store).scan(tenant_id)
