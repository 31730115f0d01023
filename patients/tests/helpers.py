from __future__ import annotations

from datetime import date
from typing import Any

from accounts.models import CustomUser, UserRole
from patients.models import Patient

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


def phone(number: str, **extra) -> dict[str, Any]:
    return {"type": "mobile", "number": number, "is_primary": False, "is_active": True, **extra}


def email(address: str, **extra) -> dict[str, Any]:
    return {"type": "personal", "address": address, "is_primary": False, "is_verified": False, **extra}


def address(street: str, city: str, **extra) -> dict[str, Any]:
    return {"street": street, "city": city, "state": "", "postal_code": "", "country": "", **extra}


def make_patient(
    *,
    tenant_id: str = TENANT_A,
    first_name: str = "Ama",
    last_name: str = "Mensah",
    date_of_birth: date = date(1990, 5, 17),
    phones: list[str] | None = None,
    emails: list[str] | None = None,
    addresses: list[dict] | None = None,
    save: bool = True,
    **fields,
) -> Patient:
    patient = Patient(
        tenant_id=tenant_id,
        organization_id=fields.pop("organization_id", f"org-{tenant_id}"),
        first_name=first_name,
        last_name=last_name,
        date_of_birth=date_of_birth,
        contacts={
            "phones": [phone(n) for n in phones or []],
            "emails": [email(e) for e in emails or []],
            "addresses": addresses or [],
        },
        **fields,
    )
    if save:
        patient.save()
    return patient


def make_user(
    email_address: str,
    *,
    role: str = UserRole.ADMIN,
    tenant_id: str = TENANT_A,
    password: str = "testpass123",
) -> CustomUser:
    return CustomUser.objects.create_user(
        email=email_address,
        password=password,
        user_role=role,
        first_name="Staff",
        last_name="User",
        tenant_id=tenant_id,
        organization_id=f"org-{tenant_id}",
    )
