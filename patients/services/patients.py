# patients/services/patients.py

from __future__ import annotations

import logging
from typing import Any, Optional

from django.db import transaction

from accounts.audit import audit_log
from accounts.models import AuditAction
from accounts.tenancy import TenantContext

from ..events import EventPublisher
from ..models import Patient, PatientMergeHistory, PatientRelationship
from .duplicates import DuplicateDetector, DuplicateGroup, DuplicateMatch
from .errors import PatientValidationError
from .merge import MergeCoordinator, MergeRequest, MergeResult
from .references import RelationshipStore, TimelineStore
from .resolver import MergeResolver
from .store import PatientStore

logger = logging.getLogger(__name__)


def _log_patient_action(level: str, action: str, tenant_id: str, patient_id: Any = None):
    """
    Secure logging helper that logs only non-PII identifiers.
    Never logs patient names, phone numbers, or other sensitive data.
    """
    msg = f"{action}: tenant={tenant_id}"
    if patient_id:
        msg += f", id={patient_id}"
    getattr(logger, level)(msg)


def get_merge_coordinator() -> MergeCoordinator:
    store = PatientStore()
    return MergeCoordinator(
        store=store,
        resolver=MergeResolver(),
        relationships=RelationshipStore(),
        timeline=TimelineStore(),
        publisher=EventPublisher(),
    )


# =========================
# CRUD
# =========================

def list_patients(*, ctx: TenantContext, include_deleted: bool = False):
    return PatientStore().scoped(ctx.tenant_id, include_deleted=include_deleted)


def get_patient(*, ctx: TenantContext, patient_id: Any, include_deleted: bool = False) -> Patient:
    return PatientStore().find_by_id(patient_id, ctx.tenant_id, include_deleted=include_deleted)


@transaction.atomic
def register_patient(*, ctx: TenantContext, payload: dict[str, Any], request=None) -> Patient:
    """
    Create a patient in the caller's tenant. Duplicate checking is a
    separate, explicit step (see `find_duplicates_for_patient`).
    """
    data = dict(payload)
    if ctx.clinic_id and not data.get("clinic_id"):
        data["clinic_id"] = ctx.clinic_id

    patient = PatientStore().create(
        ctx.tenant_id,
        data,
        organization_id=ctx.organization_id,
        actor_id=ctx.actor_id,
    )
    TimelineStore().record(
        tenant_id=ctx.tenant_id,
        patient_id=patient.id,
        event_type="patient.created",
        title="Patient registered",
        actor_id=ctx.actor_id,
    )

    _log_patient_action("info", "Patient registered", ctx.tenant_id, patient.id)
    audit_log(
        action=AuditAction.PATIENT_CREATED,
        tenant_id=ctx.tenant_id,
        request=request,
        success=True,
        metadata={"patient_id": str(patient.id)},
    )
    return patient


def update_patient(
    *,
    ctx: TenantContext,
    patient_id: Any,
    payload: dict[str, Any],
    expected_version: Optional[int] = None,
    request=None,
) -> Patient:
    """
    Partial update. When `expected_version` is given the write only applies
    if nobody changed the record since it was read.
    """
    if not isinstance(payload, dict):
        raise PatientValidationError({"detail": ["Payload must be an object."]})
    if not payload:
        return get_patient(ctx=ctx, patient_id=patient_id)

    patient = PatientStore().update(
        patient_id,
        ctx.tenant_id,
        payload,
        actor_id=ctx.actor_id,
        expected_version=expected_version,
    )

    _log_patient_action("info", "Patient updated", ctx.tenant_id, patient.id)
    audit_log(
        action=AuditAction.PATIENT_UPDATED,
        tenant_id=ctx.tenant_id,
        request=request,
        success=True,
        metadata={"patient_id": str(patient.id), "fields": sorted(payload)},
    )
    return patient


def soft_delete_patient(*, ctx: TenantContext, patient_id: Any, request=None) -> Patient:
    """Soft delete a patient record (audit-friendly)."""
    patient = PatientStore().soft_delete(patient_id, ctx.tenant_id, ctx.actor_id)

    _log_patient_action("warning", "Patient soft-deleted", ctx.tenant_id, patient.id)
    audit_log(
        action=AuditAction.PATIENT_DELETED,
        tenant_id=ctx.tenant_id,
        request=request,
        success=True,
        metadata={"patient_id": str(patient.id)},
    )
    return patient


def restore_patient(*, ctx: TenantContext, patient_id: Any, request=None) -> Patient:
    """Restore a soft-deleted patient record."""
    patient = PatientStore().restore(patient_id, ctx.tenant_id, ctx.actor_id)

    _log_patient_action("info", "Patient restored", ctx.tenant_id, patient.id)
    audit_log(
        action=AuditAction.PATIENT_RESTORED,
        tenant_id=ctx.tenant_id,
        request=request,
        success=True,
        metadata={"patient_id": str(patient.id)},
    )
    return patient


# =========================
# Duplicate Detection
# =========================

def find_duplicate_groups(*, ctx: TenantContext, request=None) -> list[DuplicateGroup]:
    groups = get_merge_coordinator().find_duplicates(ctx.tenant_id)
    audit_log(
        action=AuditAction.DUPLICATE_SCAN,
        tenant_id=ctx.tenant_id,
        request=request,
        success=True,
        metadata={"groups": len(groups)},
    )
    return groups


def find_duplicates_for_patient(*, ctx: TenantContext, patient_id: Any) -> list[DuplicateMatch]:
    return DuplicateDetector(PatientStore()).find_duplicates_for_patient(patient_id, ctx.tenant_id)


# =========================
# Patient Merge
# =========================

def merge_patients(*, ctx: TenantContext, master_id: Any, duplicate_id: Any, request=None) -> MergeResult:
    """
    Merge `duplicate_id` into `master_id`. The master survives; the
    duplicate becomes a tombstone.
    """
    result = get_merge_coordinator().merge_with_details(
        MergeRequest(master_id=master_id, duplicate_id=duplicate_id),
        ctx.tenant_id,
        ctx.actor_id,
    )

    _log_patient_action(
        "info",
        f"Patient merge completed (duplicate={result.duplicate.id})",
        ctx.tenant_id,
        result.master.id,
    )
    audit_log(
        action=AuditAction.PATIENT_MERGED,
        tenant_id=ctx.tenant_id,
        request=request,
        success=True,
        metadata={
            "master_patient_id": str(result.master.id),
            "duplicate_patient_id": str(result.duplicate.id),
            "fields_updated": result.fields_updated,
            "merge_history_id": result.merge_history_id,
        },
    )
    return result


def get_merge_history(*, ctx: TenantContext, patient_id: Any) -> list[PatientMergeHistory]:
    """Return merge history where the patient was master or duplicate."""
    # Tombstones keep their history visible.
    patient = get_patient(ctx=ctx, patient_id=patient_id, include_deleted=True)
    return PatientStore().merge_history(patient.id, ctx.tenant_id)


# =========================
# Relationships / Timeline
# =========================

def list_relationships(*, ctx: TenantContext, patient_id: Any):
    patient = get_patient(ctx=ctx, patient_id=patient_id)
    return RelationshipStore().list_for_patient(patient.id, ctx.tenant_id)


@transaction.atomic
def add_relationship(
    *,
    ctx: TenantContext,
    patient_id: Any,
    related_patient_id: Any,
    relationship_type: str,
    notes: str = "",
) -> PatientRelationship:
    store = PatientStore()
    patient = store.find_by_id(patient_id, ctx.tenant_id)
    related = store.find_by_id(related_patient_id, ctx.tenant_id)
    if patient.id == related.id:
        raise PatientValidationError({"related_patient_id": ["A patient cannot be related to itself."]})

    relationship = RelationshipStore().create(
        tenant_id=ctx.tenant_id,
        patient=patient,
        related_patient=related,
        relationship_type=relationship_type,
        notes=notes,
    )
    _log_patient_action("info", "Relationship added", ctx.tenant_id, patient.id)
    return relationship


def list_timeline(*, ctx: TenantContext, patient_id: Any):
    patient = get_patient(ctx=ctx, patient_id=patient_id)
    return TimelineStore().list_for_patient(patient.id, ctx.tenant_id)
