from __future__ import annotations

from typing import Any


class PatientServiceError(Exception):
    """Base error for patient service operations."""
    code = "patient_error"


class PatientValidationError(PatientServiceError):
    """
    Validation error that carries a dict compatible with DRF ValidationError.
    """
    code = "validation_error"

    def __init__(self, errors: dict[str, Any], message: str = "Patient validation error"):
        super().__init__(message)
        self.errors = errors


class PatientNotFoundError(PatientServiceError):
    """
    Missing, soft-deleted, or owned by another tenant. The three cases are
    deliberately indistinguishable to callers.
    """
    code = "not_found"

    def __init__(self, patient_id: Any = None):
        super().__init__("Patient not found.")
        self.patient_id = patient_id


class PatientConflictError(PatientServiceError):
    """
    The record changed since it was read (version mismatch). Safe to retry
    after re-reading.
    """
    code = "conflict"
    retryable = True

    def __init__(self, patient_id: Any, expected_version: int | None = None):
        super().__init__("Patient record was modified concurrently. Reload and retry.")
        self.patient_id = patient_id
        self.expected_version = expected_version
