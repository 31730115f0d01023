from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import Patient
from .store import MatchKey, PatientStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateGroup:
    """
    Two or more live patients of one tenant sharing a match key.
    `patient_ids` is sorted so equal member sets compare equal.
    """
    tenant_id: str
    match_type: str
    patient_ids: tuple[str, ...]
    patients: list[Patient] = field(default_factory=list, compare=False)

    @property
    def dedup_key(self) -> str:
        return ",".join(self.patient_ids)


@dataclass
class DuplicateMatch:
    """A single suspected duplicate of one patient, with the reasons it matched."""
    patient: Patient
    reasons: list[str] = field(default_factory=list)


def _name_dob_key(patient: Patient, prefix_length: int) -> tuple[str, str, Any]:
    return (
        (patient.last_name or "").lower(),
        (patient.first_name or "")[:prefix_length].lower(),
        patient.date_of_birth,
    )


class DuplicateDetector:
    """
    Finds groups of patients in a tenant that look like the same person.

    Three passes run in order (phone, email, name + date of birth). Groups
    from different passes are only collapsed when their member sets are
    identical; partially overlapping groups are reported separately, so
    one patient can appear in more than one group.
    """

    passes = (MatchKey.PHONE, MatchKey.EMAIL, MatchKey.NAME_DOB)

    def __init__(self, store: Optional[PatientStore] = None):
        self.store = store or PatientStore()

    def scan(self, tenant_id: str) -> list[DuplicateGroup]:
        groups: dict[str, DuplicateGroup] = {}

        for match_type in self.passes:
            for candidate in self.store.aggregate_duplicate_candidates(tenant_id, match_type):
                members = self.store.find_many(candidate.member_ids, tenant_id)
                if len(members) < 2:
                    continue
                group = DuplicateGroup(
                    tenant_id=tenant_id,
                    match_type=match_type,
                    patient_ids=tuple(sorted(str(p.id) for p in members)),
                    patients=members,
                )
                # First pass to report a member set wins.
                groups.setdefault(group.dedup_key, group)

        logger.info("Duplicate scan for tenant %s found %d group(s)", tenant_id, len(groups))
        return list(groups.values())

    def find_duplicates_for_patient(self, patient_id: Any, tenant_id: str) -> list[DuplicateMatch]:
        """
        Live patients sharing an exact phone, e-mail, or name + date of birth
        key with the given patient.
        """
        patient = self.store.find_by_id(patient_id, tenant_id)
        matches: dict[Any, DuplicateMatch] = {}

        def add(other: Patient, reason: str) -> None:
            if other.id == patient.id:
                return
            match = matches.setdefault(other.id, DuplicateMatch(patient=other))
            if reason not in match.reasons:
                match.reasons.append(reason)

        for number in patient.phone_numbers:
            for other in self.store.find_by_phone(number, tenant_id):
                add(other, MatchKey.PHONE)
        for address in patient.email_addresses:
            for other in self.store.find_by_email(address, tenant_id):
                add(other, MatchKey.EMAIL)

        prefix = self.store.name_prefix_length
        key = _name_dob_key(patient, prefix)
        same_dob = self.store.scoped(tenant_id).filter(
            date_of_birth=patient.date_of_birth,
            last_name__iexact=patient.last_name,
        )
        for other in same_dob:
            if _name_dob_key(other, prefix) == key:
                add(other, MatchKey.NAME_DOB)

        return sorted(matches.values(), key=lambda m: (-len(m.reasons), str(m.patient.id)))
