from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Optional

from ..models import Patient

MEDICAL_LISTS = ("allergies", "medications", "conditions", "flags")


def merged_notes_block(duplicate_id: Any, duplicate_notes: str) -> str:
    return f"--- Merged from patient {duplicate_id} ---\n{duplicate_notes}"


def _union_by(
    primary: Iterable[dict],
    secondary: Iterable[dict],
    key: Callable[[dict], Hashable],
) -> list[dict]:
    """
    Primary entries in order, then secondary entries whose key is not present.
    """
    result = [copy.deepcopy(item) for item in primary or []]
    seen = {key(item) for item in result}
    for item in secondary or []:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(copy.deepcopy(item))
    return result


def _union(primary: Iterable[Any], secondary: Iterable[Any]) -> list[Any]:
    return list(dict.fromkeys([*(primary or []), *(secondary or [])]))


@dataclass(frozen=True)
class MergedFields:
    """
    The fields a merge writes onto the master. `notes` is None when the
    master's notes stay as they are.
    """
    contacts: dict[str, Any]
    medical: dict[str, Any]
    tags: list[str]
    notes: Optional[str] = None

    def as_update(self) -> dict[str, Any]:
        data = {
            "contacts": self.contacts,
            "medical": self.medical,
            "tags": self.tags,
        }
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    def changed_fields(self, master: Patient) -> list[str]:
        return [name for name, value in self.as_update().items() if getattr(master, name) != value]


class MergeResolver:
    """
    Combines a duplicate patient's data into the master's.

    Pure and deterministic: inputs are never mutated, and only contacts,
    the flat medical summary, tags and notes are produced. Identity,
    consent, preferences and insurance always stay as the master has them.
    """

    def combine(self, master: Patient, duplicate: Patient) -> MergedFields:
        return MergedFields(
            contacts=self._merge_contacts(master.contacts or {}, duplicate.contacts or {}),
            medical=self._merge_medical(master.medical or {}, duplicate.medical or {}),
            tags=_union(master.tags, duplicate.tags),
            notes=self._merge_notes(master.notes or "", duplicate.notes or "", duplicate.id),
        )

    def _merge_contacts(self, master: dict, duplicate: dict) -> dict[str, Any]:
        merged = copy.deepcopy(master)
        merged["phones"] = _union_by(
            master.get("phones"), duplicate.get("phones"), key=lambda p: p.get("number")
        )
        merged["emails"] = _union_by(
            master.get("emails"), duplicate.get("emails"), key=lambda e: e.get("address")
        )
        merged["addresses"] = _union_by(
            master.get("addresses"),
            duplicate.get("addresses"),
            key=lambda a: (a.get("street"), a.get("city")),
        )
        return merged

    def _merge_medical(self, master: dict, duplicate: dict) -> dict[str, Any]:
        merged = copy.deepcopy(master)
        for name in MEDICAL_LISTS:
            merged[name] = _union(master.get(name), duplicate.get(name))
        return merged

    def _merge_notes(self, master_notes: str, duplicate_notes: str, duplicate_id: Any) -> Optional[str]:
        if not duplicate_notes.strip():
            return None
        if not master_notes.strip():
            return duplicate_notes
        block = merged_notes_block(duplicate_id, duplicate_notes)
        # Already merged (e.g. a retried merge): leave the notes untouched.
        if block in master_notes or master_notes == duplicate_notes:
            return None
        return f"{master_notes}\n\n{block}"
